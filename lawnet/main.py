"""
Main FastAPI application for the Law Network access service.
Serves submissions intake/review, access check/grant/revoke, the SSE live-update stream,
plan tiers, audit, health and metrics.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from lawnet.api.routes import access, admin, health, plans, submissions
from lawnet.core.config import settings
from lawnet.core.errors import AccessServiceError, TransientStoreError
from lawnet.core.logging import configure_logging
from lawnet.db.session import SessionLocal
from lawnet.services.live_updates.hub import hub
from lawnet.services.live_updates.listener import RedisEventListener
from lawnet.services.plan_tiers.service import PlanTierService
from lawnet.utils.metrics import router as metrics_router

logger = logging.getLogger(__name__)


def seed_plan_tiers() -> None:
    db = SessionLocal()
    try:
        PlanTierService(db).seed_default_tiers()
        db.commit()
    except SQLAlchemyError:
        logger.exception("plan_tier_seed_failed")
        db.rollback()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    hub.bind_loop(asyncio.get_running_loop())
    await asyncio.to_thread(seed_plan_tiers)
    listener = None
    if settings.live_updates_backend == "redis":
        listener = RedisEventListener(hub)
        listener.start()
    logger.info("app_started", extra={"status": settings.live_updates_backend})
    try:
        yield
    finally:
        if listener is not None:
            await listener.stop()
        hub.close_all()
        hub.bind_loop(None)


app = FastAPI(
    title="Law Network Access API",
    description="Paywall access grants: submissions, approvals, live updates",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    started = time.monotonic()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    if not request.url.path.endswith("/stream"):
        logger.info(
            "http_request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
    return response


@app.exception_handler(AccessServiceError)
async def access_service_error_handler(request: Request, exc: AccessServiceError):
    if exc.status_code >= 500:
        logger.warning("request_failed", extra={"path": request.url.path, "error": exc.message})
    headers = {}
    if isinstance(exc, TransientStoreError):
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.message, "code": exc.code},
        headers=headers,
    )


# Routers
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(submissions.router)
app.include_router(access.router)
app.include_router(plans.router)
app.include_router(admin.router)
app.include_router(metrics_router)
