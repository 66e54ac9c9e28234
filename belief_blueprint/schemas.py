from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# =========================
# CONTENT
# =========================
class ScanBody(BaseModel):
    situation: str = Field("", max_length=2000)
    emotion: str = Field("", max_length=500)
    anonId: Optional[str] = Field(None, max_length=128)

class ReframeBody(BaseModel):
    belief: str = Field(..., min_length=1, max_length=500)
    context: str = Field("", max_length=2000)

class PlanBody(BaseModel):
    belief: str = Field(..., min_length=1, max_length=500)
    goal: str = Field(..., min_length=1, max_length=500)

class IngestBody(BaseModel):
    questionnaire_id: str = Field(..., min_length=1, max_length=128)
    responses: Dict[str, Any]
    metadata: Optional[Dict[str, Any]] = None

class QA(BaseModel):
    q: str = Field("", max_length=2000)
    a: str = Field(..., max_length=5000)

class AnalysisOptions(BaseModel):
    depth: Literal["standard", "deep"] = "standard"
    gentle_mode: bool = False

class AnalysisBody(BaseModel):
    questionnaire_id: Optional[str] = Field(None, max_length=128)
    responses: List[QA] = Field(..., min_length=1, max_length=200)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)

class ReportMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(None, max_length=200)
    prepared_for: Optional[str] = Field(None, max_length=200)
    prepared_by: Optional[str] = Field(None, max_length=200)
    footer_note: Optional[str] = Field(None, max_length=500)

class ReportBody(BaseModel):
    analysis_payload: Dict[str, Any]
    report_meta: Optional[ReportMeta] = None

# =========================
# BILLING
# =========================
class CheckoutBody(BaseModel):
    interval: Literal["month", "year"] = "month"
    currency: Literal["INR", "USD"] = "INR"
    email: str = Field(..., min_length=3, max_length=320, pattern=r"@")
    mode: Literal["subscription", "payment"] = "subscription"

class PortalBody(BaseModel):
    returnUrl: str = Field(..., pattern=r"^https?://", max_length=2000)
    customerId: Optional[str] = Field(None, max_length=128)
    sessionId: Optional[str] = Field(None, max_length=256)

# =========================
# ADMIN
# =========================
class RevokeBody(BaseModel):
    customerId: Optional[str] = Field(None, max_length=128)
    license: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=320)
