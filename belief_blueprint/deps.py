from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import Depends, Request

from belief_blueprint import config
from belief_blueprint.access import AccessDenied, AccessGate, AccessVerdict, DenyReason, hints_from_request
from belief_blueprint.billing import StripeClient
from belief_blueprint.blob_store import BlobStore
from belief_blueprint.licenses import LicenseResolver
from belief_blueprint.rate_limit import WindowCounter
from belief_blueprint.trials import TrialTracker

logger = logging.getLogger(__name__)

def get_store(request: Request) -> BlobStore:
    return request.app.state.blob_store

def get_billing(request: Request) -> StripeClient:
    return request.app.state.billing

def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock

def get_rate_counter(request: Request) -> WindowCounter:
    return request.app.state.rate_counter

def get_licenses(
    billing: StripeClient = Depends(get_billing),
    store: BlobStore = Depends(get_store),
    clock=Depends(get_clock),
) -> LicenseResolver:
    return LicenseResolver(billing, store, clock)

def get_trials(store: BlobStore = Depends(get_store), clock=Depends(get_clock)) -> TrialTracker:
    return TrialTracker(store, clock, config.TRIAL_DAYS)

def get_gate(
    licenses: LicenseResolver = Depends(get_licenses),
    trials: TrialTracker = Depends(get_trials),
) -> AccessGate:
    return AccessGate(licenses, trials)

def client_ip(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real:
        return real.strip()
    return request.client.host if request.client else "unknown"

def is_debug(request: Request) -> bool:
    return request.query_params.get("debug") == "1"

async def enforce_access(request: Request, gate: AccessGate, *, allow_trial: bool) -> AccessVerdict:
    """Allowed verdict, or ``AccessDenied``. A crashing check denies with PAYWALL_ERROR."""
    try:
        verdict = await gate.check_access(hints_from_request(request), allow_trial=allow_trial)
    except Exception as e:
        logger.exception("access check crashed on %s", request.url.path)
        verdict = AccessVerdict.deny(DenyReason.PAYWALL_ERROR, diagnostic=repr(e))

    if not verdict.allowed:
        logger.info("access denied on %s: %s", request.url.path, verdict.reason.value)
        raise AccessDenied(verdict, debug=is_debug(request))
    return verdict

def require_access(allow_trial: bool = False):
    async def dependency(request: Request, gate: AccessGate = Depends(get_gate)) -> AccessVerdict:
        return await enforce_access(request, gate, allow_trial=allow_trial)

    return dependency

def reports_rate_limit(request: Request, counter: WindowCounter = Depends(get_rate_counter)) -> None:
    ip = client_ip(request)
    d = counter.hit(f"reports-list:{ip}", config.REPORTS_RATE_WINDOW_SECONDS, config.REPORTS_RATE_LIMIT)
    if not d.allowed:
        logger.warning("rate limited %s on reports list (%d requests)", ip, d.count)
        raise AccessDenied(AccessVerdict.deny(DenyReason.RATE_LIMITED), retry_after=d.retry_after)
