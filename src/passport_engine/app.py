"""FastAPI application factory for Passport-Engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from passport_engine.common.config import get_settings
from passport_engine.common.exceptions import PassportError
from passport_engine.common.logging import setup_logging
from passport_engine.common.schemas import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "rate_limit_exceeded": 429,
    "invalid_otp": 400,
    "validation_error": 400,
    "self_verification": 400,
    "self_report": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "invalid_state": 409,
    "duplicate_evidence": 409,
    "delivery_failed": 503,
}


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from passport_engine.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        scheduler = None
        if settings.scheduler_enabled:
            from passport_engine.trustscore.scheduler import create_scheduler
            scheduler = create_scheduler()
            scheduler.start()
            logger.info("Scheduler started")
        app.state.scheduler = scheduler
        yield
        # Shutdown
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PassportError)
    async def passport_error_handler(request: Request, exc: PassportError):
        status = STATUS_BY_CODE.get(exc.code, 400)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
        return JSONResponse(status_code=status, content=ErrorResponse.from_error(exc).model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health():
        from passport_engine.deps import get_db
        if await get_db().ping():
            return HealthResponse(version=settings.api_version)
        return HealthResponse(status="degraded", version=settings.api_version, database="unavailable")

    @app.get("/health/scheduler")
    async def scheduler_health():
        from passport_engine.trustscore.scheduler import scheduler_status
        return scheduler_status(app.state.scheduler)

    # Mount routers
    from passport_engine.auth.router import router as auth_router
    from passport_engine.identity.router import router as identity_router
    from passport_engine.evidence.router import router as evidence_router
    from passport_engine.verification.router import router as verification_router
    from passport_engine.reports.router import router as reports_router
    from passport_engine.trustscore.router import router as trustscore_router
    from passport_engine.risk.router import router as risk_router
    from passport_engine.audit.router import router as audit_router

    prefix = settings.api_prefix
    app.include_router(auth_router, prefix=prefix, tags=["auth"])
    app.include_router(identity_router, prefix=prefix, tags=["identity"])
    app.include_router(evidence_router, prefix=prefix, tags=["evidence"])
    app.include_router(verification_router, prefix=prefix, tags=["verification"])
    app.include_router(reports_router, prefix=prefix, tags=["reports"])
    app.include_router(trustscore_router, prefix=prefix, tags=["trustscore"])
    app.include_router(risk_router, prefix=prefix, tags=["risk"])
    app.include_router(audit_router, prefix=prefix, tags=["audit"])

    return app
