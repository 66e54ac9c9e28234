import hashlib
import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from belief_blueprint import config
from belief_blueprint.access import license_key_from
from belief_blueprint.billing import BillingError
from belief_blueprint.blob_store import BlobStore
from belief_blueprint.deps import get_licenses, get_store, is_debug
from belief_blueprint.libraries import pro_theme_keys
from belief_blueprint.licenses import LicenseResolver, Resolved, email_index_path, latest_path, plan_subscription, resolve_by_key
from belief_blueprint.schemas import RevokeBody
from belief_blueprint.trials import iso

logger = logging.getLogger(__name__)

router = APIRouter()

FREE_FEATURES = ["beliefs_scan", "themes_preview", "tips_only"]
PRO_FEATURES = ["beliefs_scan", "beliefs_reframe", "actions_plan", "libraries_full", "exports_pdf"]
PRO_NOTE = "This toolkit is part of Pro. Unlock to access."

# =========================
# LICENSE STATUS
# =========================
def _free_status(error: str | None = None) -> dict:
    payload = {
        "status": "inactive",
        "plan": "free",
        "expiresAt": None,
        "features": FREE_FEATURES,
        "note": PRO_NOTE,
        "proThemes": pro_theme_keys(),
    }
    if error:
        payload["error"] = error
    return payload

@router.get("/api/license/status")
async def license_status(request: Request, licenses: LicenseResolver = Depends(get_licenses)):
    key = license_key_from(request)
    if not key:
        return _free_status()

    parsed = resolve_by_key(key)
    if not isinstance(parsed, Resolved):
        return _free_status("LEGACY_LICENSE_FORMAT")

    check = await licenses.has_active_subscription(parsed.customer_id)
    if check.failed:
        # display-only endpoint: degrade to the free view, the gate still fails closed
        return _free_status("STATUS_CHECK_FAILED")

    plan_sub = plan_subscription(check.subscriptions)
    sub = plan_sub or check.subscription
    expires_at = None
    if sub is not None and sub.current_period_end:
        expires_at = iso(datetime.fromtimestamp(sub.current_period_end, tz=timezone.utc))

    payload = {
        "status": "active" if check.active else "inactive",
        "plan": "pro" if plan_sub is not None else "free",
        "expiresAt": expires_at,
        "features": PRO_FEATURES if check.active else FREE_FEATURES,
        "proThemes": pro_theme_keys(),
    }
    if not check.active:
        payload["note"] = PRO_NOTE
    return payload

# =========================
# ADMIN
# =========================
def _hash_prefix(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:12]

def require_admin(request: Request) -> None:
    admin_token = (config.ADMIN_TOKEN or "").strip()
    provided = (request.query_params.get("token") or "").strip() or (request.headers.get("x-admin-token") or "").strip()

    diag = {}
    if is_debug(request):
        diag = {"debug": {
            "provided_len": len(provided),
            "admin_len": len(admin_token),
            "provided_hash_prefix": _hash_prefix(provided),
            "admin_hash_prefix": _hash_prefix(admin_token),
            "path": request.url.path,
            "env_present": bool(config.ADMIN_TOKEN),
        }}

    if not admin_token:
        raise HTTPException(status_code=500, detail={"error": "ADMIN_TOKEN not set", **diag})
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), admin_token.encode("utf-8")):
        logger.warning("admin auth failed on %s", request.url.path)
        raise HTTPException(status_code=401, detail={"error": "Unauthorized", **diag})

@router.get("/api/admin/license", dependencies=[Depends(require_admin)])
async def admin_license(customerId: str = "", email: str = "", store: BlobStore = Depends(get_store)):
    customerId, email = customerId.strip(), email.strip()
    if customerId:
        source, path = "customerId", latest_path(customerId)
    elif email:
        source, path = "email", email_index_path(email)
    else:
        raise HTTPException(status_code=400, detail="Provide ?customerId=cus_... or ?email=name@example.com")

    record = await store.get_json(path)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Not found for {source}")
    return {"source": source, "record": record}

@router.post("/api/admin/license/revoke", dependencies=[Depends(require_admin)])
async def admin_revoke(body: RevokeBody, licenses: LicenseResolver = Depends(get_licenses)):
    customer_id = (body.customerId or "").strip()

    if not customer_id and body.license:
        parsed = resolve_by_key(body.license)
        if not isinstance(parsed, Resolved):
            raise HTTPException(status_code=400, detail="LEGACY_LICENSE_FORMAT")
        customer_id = parsed.customer_id

    if not customer_id and body.email:
        record = await licenses.find_license_by_email(body.email)
        if record is None:
            raise HTTPException(status_code=404, detail="No license found for email")
        customer_id = record.customerId

    if not customer_id:
        raise HTTPException(status_code=400, detail="Provide customerId, license or email")

    try:
        revoked = await licenses.revoke(customer_id)
    except BillingError as e:
        logger.error("revoke failed for %s: %s", customer_id, e)
        raise HTTPException(status_code=502, detail="Billing provider error")

    logger.info("revoked %d subscriptions for %s", len(revoked), customer_id)
    return {
        "ok": True,
        "customerId": customer_id,
        "revokedSubscriptions": [{"id": s.id, "status": s.status} for s in revoked],
    }
