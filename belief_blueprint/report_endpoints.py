import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from belief_blueprint import config, report_paths, reports
from belief_blueprint.blob_store import BlobStore
from belief_blueprint.deps import get_store, reports_rate_limit, require_access
from belief_blueprint.schemas import ReportBody

logger = logging.getLogger(__name__)

router = APIRouter()

def public_origin(request: Request) -> str:
    base = config.DOMAIN or ""
    if not base:
        proto = request.headers.get("x-forwarded-proto") or request.url.scheme
        base = f"{proto}://{request.url.netloc}"
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    return base.rstrip("/")

@router.post("/api/analysis/beliefs/report", dependencies=[Depends(require_access(allow_trial=True))])
async def create_report(body: ReportBody, request: Request, store: BlobStore = Depends(get_store)):
    meta = body.report_meta.model_dump(exclude_none=True) if body.report_meta else {}
    stored = await reports.store_report(store, body.analysis_payload, meta, request.app.state.clock())
    return {
        "ok": True,
        "endpoint": "analysis/beliefs/report",
        "report_id": stored.report_id,
        "report_json_url": stored.json_url,
        "report_html_url": stored.html_url,
        "viewer_url": f"{public_origin(request)}/report/view/{stored.report_id}",
    }

# rate limit runs before the gate so denied callers are counted too
@router.get("/api/reports/list", dependencies=[Depends(reports_rate_limit), Depends(require_access())])
async def list_reports(
    request: Request,
    owner: str = "",
    limit: int = Query(reports.LIST_PAGE_MAX, ge=1, le=reports.LIST_PAGE_MAX),
    cursor: Optional[str] = None,
    store: BlobStore = Depends(get_store),
):
    items, next_cursor = await reports.list_reports(store, public_origin(request), owner, limit, cursor)
    return {"ok": True, "items": items, "cursor": next_cursor}

@router.get("/report/view/{report_id}")
async def view_report(report_id: str, store: BlobStore = Depends(get_store)):
    if not report_paths.is_report_id(report_id):
        raise HTTPException(status_code=400, detail="Invalid reportId")

    pathname = await reports.find_report_html(store, report_id)
    body = await store.get(pathname) if pathname else None
    if body is None:
        raise HTTPException(status_code=404, detail="Report HTML not found")

    return Response(
        content=body,
        media_type="text/html; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff", "Cache-Control": "no-store"},
    )

@router.get("/blobs/{pathname:path}")
async def get_blob(pathname: str, store: BlobStore = Depends(get_store)):
    # license, trial and webhook state is never served; only generated reports are public
    if not pathname.startswith(report_paths.REPORTS_PREFIX):
        raise HTTPException(status_code=404, detail="Not found")

    item = await store.head(pathname)
    body = await store.get(pathname) if item else None
    if item is None or body is None:
        raise HTTPException(status_code=404, detail="Not found")
    return Response(content=body, media_type=item.content_type)
