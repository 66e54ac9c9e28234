from datetime import datetime

from sqlalchemy import DateTime, Integer, LargeBinary, String, func
from sqlalchemy.orm import Mapped, mapped_column

from belief_blueprint.db import Base

class Blob(Base):
    __tablename__ = "blobs"

    # e.g. "licenses/cus_123.json", "reports/acme/rpt-1761561067344.html"
    pathname: Mapped[str] = mapped_column(String(512), primary_key=True)

    content_type: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="application/octet-stream"
    )

    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Blob pathname={self.pathname} size={self.size} type={self.content_type}>"
