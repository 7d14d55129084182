import logging
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.middleware import SlowAPIMiddleware

from mundapdari.config import settings
from mundapdari.core.encryption import get_phone_cipher
from mundapdari.core.exceptions import register_exception_handlers
from mundapdari.core.rate_limit import limiter
from mundapdari.core.redis_client import close_redis, get_redis
from mundapdari.core.responses import error_body
from mundapdari.database import async_session
from mundapdari.routers import answers, auth, health, questions
from mundapdari.services.notification_service import NotificationService
from mundapdari.services.scheduler import SchedulerService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Lifespan context manager
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: runs on startup and shutdown."""
    notifications: NotificationService = app.state.notifications
    notifications.redis = await get_redis()
    if notifications.available:
        notifications.start_worker()
    else:
        logger.warning("Redis unavailable, notifications are logged only")

    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = SchedulerService(async_session, notifications)
        app.state.scheduler.start()

    logger.info("%s %s started (%s)", settings.APP_NAME, settings.VERSION, settings.ENVIRONMENT)
    yield

    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
        app.state.scheduler = None
    await notifications.close()
    await close_redis()
    logger.info("%s shutting down", settings.APP_NAME)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

# Set here so the service exists even when the lifespan does not run
app.state.notifications = NotificationService(async_session, get_phone_cipher())
app.state.scheduler = None


MAX_BODY_SIZE = 10 * 1024 * 1024  # 10 MB


# -- Middleware ---------------------------------------------------------------
@app.middleware("http")
async def limit_request_body(request: Request, call_next):
    """Reject requests with Content-Length exceeding the limit."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_SIZE:
        return JSONResponse(
            status_code=413,
            content=error_body("Request body too large"),
        )
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with an id and log method, path, status and timing."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    level = logging.INFO
    if response.status_code >= 500:
        level = logging.ERROR
    elif response.status_code >= 400:
        level = logging.WARNING
    logger.log(
        level, "%s %s -> %d (%.1f ms) [%s]",
        request.method, request.url.path, response.status_code, elapsed * 1000, request_id,
    )
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning("Slow request: %s %s took %.2fs", request.method, request.url.path, elapsed)

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def fix_redirect_scheme(request: Request, call_next):
    """Ensure redirects use https when behind a TLS-terminating reverse proxy."""
    if request.headers.get("x-forwarded-proto") == "https":
        request.scope["scheme"] = "https"
    return await call_next(request)


app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# -- Rate limiting ------------------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

register_exception_handlers(app)


@app.get("/", tags=["Health"])
async def root():
    return {
        "success": True,
        "message": f"Welcome to {settings.APP_NAME}",
        "data": {
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "api": settings.API_PREFIX,
            "health": f"{settings.API_PREFIX}/health",
        },
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(auth.router, prefix=settings.API_PREFIX)
app.include_router(questions.router, prefix=settings.API_PREFIX)
app.include_router(answers.router, prefix=settings.API_PREFIX)
