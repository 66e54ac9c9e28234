# Blob list cursor is the last pathname of the previous page.
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from belief_blueprint.models import Blob

logger = logging.getLogger(__name__)

@dataclass
class BlobItem:
    pathname: str
    url: str
    size: int
    uploaded_at: datetime
    content_type: str = "application/octet-stream"

@dataclass
class BlobPage:
    blobs: List[BlobItem] = field(default_factory=list)
    cursor: Optional[str] = None

def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)

class BlobStore:
    def __init__(self, public_base_url: str = ""):
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, pathname: str) -> str:
        return f"{self.public_base_url}/blobs/{quote(pathname)}"

    async def put(self, pathname: str, data: bytes | str, content_type: str = "application/octet-stream") -> BlobItem:
        raise NotImplementedError

    async def get(self, pathname: str) -> Optional[bytes]:
        raise NotImplementedError

    async def head(self, pathname: str) -> Optional[BlobItem]:
        raise NotImplementedError

    async def list(self, prefix: str = "", limit: int = 1000, cursor: Optional[str] = None) -> BlobPage:
        raise NotImplementedError

    async def put_json(self, pathname: str, obj: Any) -> BlobItem:
        return await self.put(pathname, json.dumps(obj, indent=2, default=str), "application/json")

    async def get_json(self, pathname: str) -> Any:
        """Parsed JSON at ``pathname``, None when absent. Malformed JSON raises ValueError."""
        raw = await self.get(pathname)
        if raw is None:
            return None
        return json.loads(raw.decode("utf-8"))

class MemoryBlobStore(BlobStore):
    def __init__(self, public_base_url: str = ""):
        super().__init__(public_base_url)
        self._blobs: Dict[str, tuple[bytes, str, datetime]] = {}

    async def put(self, pathname, data, content_type="application/octet-stream"):
        body = _as_bytes(data)
        now = datetime.now(timezone.utc)
        self._blobs[pathname] = (body, content_type, now)
        return BlobItem(pathname, self.url_for(pathname), len(body), now, content_type)

    async def get(self, pathname):
        hit = self._blobs.get(pathname)
        return hit[0] if hit else None

    async def head(self, pathname):
        hit = self._blobs.get(pathname)
        if hit is None:
            return None
        body, content_type, uploaded_at = hit
        return BlobItem(pathname, self.url_for(pathname), len(body), uploaded_at, content_type)

    async def list(self, prefix="", limit=1000, cursor=None):
        names = sorted(
            p for p in self._blobs
            if p.startswith(prefix) and (cursor is None or p > cursor)
        )
        page = names[:limit]
        blobs = []
        for p in page:
            body, content_type, uploaded_at = self._blobs[p]
            blobs.append(BlobItem(p, self.url_for(p), len(body), uploaded_at, content_type))
        next_cursor = page[-1] if len(names) > limit else None
        return BlobPage(blobs=blobs, cursor=next_cursor)

class SqlBlobStore(BlobStore):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], public_base_url: str = ""):
        super().__init__(public_base_url)
        self._sessionmaker = sessionmaker

    def _item(self, row: Blob) -> BlobItem:
        return BlobItem(row.pathname, self.url_for(row.pathname), row.size, row.uploaded_at, row.content_type)

    async def put(self, pathname, data, content_type="application/octet-stream"):
        body = _as_bytes(data)
        async with self._sessionmaker() as db:
            row = await db.merge(Blob(
                pathname=pathname,
                content_type=content_type,
                body=body,
                size=len(body),
                uploaded_at=datetime.now(timezone.utc),
            ))
            await db.commit()
            logger.debug("blob written: %s (%d bytes)", pathname, len(body))
            return self._item(row)

    async def get(self, pathname):
        async with self._sessionmaker() as db:
            row = await db.get(Blob, pathname)
            return row.body if row else None

    async def head(self, pathname):
        async with self._sessionmaker() as db:
            row = await db.get(Blob, pathname)
            return self._item(row) if row else None

    async def list(self, prefix="", limit=1000, cursor=None):
        stmt = select(Blob).where(Blob.pathname.startswith(prefix, autoescape=True))
        if cursor:
            stmt = stmt.where(Blob.pathname > cursor)
        stmt = stmt.order_by(Blob.pathname).limit(limit + 1)

        async with self._sessionmaker() as db:
            res = await db.execute(stmt)
            rows = list(res.scalars().all())

        page = rows[:limit]
        next_cursor = page[-1].pathname if len(rows) > limit else None
        return BlobPage(blobs=[self._item(r) for r in page], cursor=next_cursor)
