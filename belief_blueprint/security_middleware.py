from __future__ import annotations
import logging
import uuid
from typing import Callable, Awaitable
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from belief_blueprint import config
from belief_blueprint.access import AccessVerdict, DenyReason, deny_body, hints_from_request
from belief_blueprint.trials import compute_trial, cookie_max_age, issue_trial_cookie, read_trial_cookie

logger = logging.getLogger(__name__)

# /api/ paths the cookie trial never blocks
TRIAL_GATE_ALLOWLIST = (
    "/api/trial/",
    "/api/license/status",
    "/api/stripe/",
    "/api/admin/",
)
# free content; still starts the cookie trial
TRIAL_GATE_FREE_ROUTES = (
    "/api/beliefs/scan",
    "/api/libraries/themes",
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}
HSTS = "max-age=31536000; includeSubDomains"
# routes whose answers depend on who is asking
NO_STORE_PREFIXES = ("/api/", "/report/view/")
REQUEST_ID_MAX = 128

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, is_prod: bool):
        super().__init__(app)
        self.headers = dict(SECURITY_HEADERS)
        # HSTS only in prod behind HTTPS
        if is_prod:
            self.headers["Strict-Transport-Security"] = HSTS

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "")[:REQUEST_ID_MAX] or uuid.uuid4().hex
        request.state.request_id = rid
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response

class MaxBodySizeMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl and cl.isdigit() and int(cl) > self.max_bytes:
            logger.warning("rejected %s body on %s", cl, request.url.path)
            return JSONResponse({"error": "PAYLOAD_TOO_LARGE", "message": "Payload too large"}, status_code=413)
        return await call_next(request)

def set_trial_cookie(response: Response, started_at) -> None:
    response.set_cookie(
        config.TRIAL_COOKIE_NAME,
        issue_trial_cookie(started_at),
        max_age=cookie_max_age(config.TRIAL_DAYS),
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )

class TrialGateMiddleware(BaseHTTPMiddleware):
    """Anonymous cookie trial for /api/ routes.

    First contact starts the trial and lets the request through. Once the
    cookie trial has expired, only free routes and requests that identify
    themselves (license key or email) get past; the route's own gate then
    decides for that identity.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api/") or path.startswith(TRIAL_GATE_ALLOWLIST):
            return await call_next(request)

        now = request.app.state.clock()
        started_at = read_trial_cookie(request.cookies.get(config.TRIAL_COOKIE_NAME))
        if started_at is None:
            response = await call_next(request)
            set_trial_cookie(response, now)
            return response

        trial = compute_trial(started_at, now, config.TRIAL_DAYS)
        hints = hints_from_request(request)
        if trial.active or hints.license_key or hints.email or path in TRIAL_GATE_FREE_ROUTES:
            return await call_next(request)

        logger.info("cookie trial expired on %s", path)
        verdict = AccessVerdict.deny(DenyReason.TRIAL_EXPIRED, trial=trial)
        return JSONResponse(deny_body(verdict), status_code=verdict.status_code)
