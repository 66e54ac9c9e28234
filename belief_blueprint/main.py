import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from belief_blueprint import config
from belief_blueprint.access import AccessDenied
from belief_blueprint.belief_endpoints import router as belief_router
from belief_blueprint.billing import StripeClient
from belief_blueprint.blob_store import BlobStore, MemoryBlobStore, SqlBlobStore
from belief_blueprint.db import create_tables, make_engine, make_sessionmaker
from belief_blueprint.license_endpoints import router as license_router
from belief_blueprint.licenses import utc_now
from belief_blueprint.rate_limit import WindowCounter
from belief_blueprint.report_endpoints import router as report_router
from belief_blueprint.security_middleware import (
    MaxBodySizeMiddleware,
    RequestIdMiddleware,
    SecurityHeadersMiddleware,
    TrialGateMiddleware,
)
from belief_blueprint.stripe_endpoints import router as stripe_router
from belief_blueprint.trial_endpoints import router as trial_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = app.state.engine
    if engine is not None:
        await create_tables(engine)
    yield
    if engine is not None:
        await engine.dispose()

def create_app(
    *,
    blob_store: Optional[BlobStore] = None,
    billing: Optional[StripeClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
    rate_counter: Optional[WindowCounter] = None,
) -> FastAPI:
    config.validate_settings()

    app = FastAPI(title="Belief Blueprint API", lifespan=lifespan)

    app.state.engine = None
    if blob_store is None:
        if config.DATABASE_URL:
            app.state.engine = make_engine(config.DATABASE_URL, pool_pre_ping=True)
            blob_store = SqlBlobStore(make_sessionmaker(app.state.engine), config.PUBLIC_BASE_URL)
        else:
            logger.warning("DATABASE_URL not set; blobs are kept in memory")
            blob_store = MemoryBlobStore(config.PUBLIC_BASE_URL)

    app.state.clock = clock or utc_now
    app.state.blob_store = blob_store
    app.state.billing = billing or StripeClient()
    app.state.rate_counter = rate_counter or WindowCounter(app.state.clock)

    # =========================
    # MIDDLEWARE (last added runs first)
    # =========================
    app.add_middleware(TrialGateMiddleware)
    app.add_middleware(MaxBodySizeMiddleware, max_bytes=config.MAX_BODY_BYTES)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, is_prod=config.IS_PROD)
    if config.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.ALLOWED_ORIGINS,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "X-License-Key", "X-Admin-Token", "X-Request-Id"],
        )
    if config.ALLOWED_HOSTS:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=config.ALLOWED_HOSTS)

    # =========================
    # ERRORS
    # =========================
    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied):
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return JSONResponse(exc.body(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", "-")
        logger.exception("unhandled error on %s (request %s)", request.url.path, rid)
        return JSONResponse(
            {"error": "INTERNAL_ERROR", "message": "Something went wrong. Please try again shortly."},
            status_code=500,
        )

    # =========================
    # ROUTES
    # =========================
    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(trial_router)
    app.include_router(license_router)
    app.include_router(stripe_router)
    app.include_router(belief_router)
    app.include_router(report_router)
    return app

app = create_app()

def run():
    import uvicorn

    uvicorn.run("belief_blueprint.main:app", host="0.0.0.0", port=8000, log_level=config.LOG_LEVEL.lower())
