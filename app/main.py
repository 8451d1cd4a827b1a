import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.db.init import init_db
from app.routers import admin, billing, credits, features, notifications, queue
from app.services.registry import build_services

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Prosper With Purpose API",
    version="1.0.0",
)
app.state.services = build_services(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(features.router, prefix="/v1/features", tags=["features"])
app.include_router(queue.router, prefix="/v1/queue", tags=["queue"])
app.include_router(queue.internal_router, prefix="/v1/internal/queue", tags=["internal"])
app.include_router(notifications.router, prefix="/v1/notifications", tags=["notifications"])
app.include_router(billing.router, prefix="/v1/billing", tags=["billing"])
app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    if settings.store_backend == "mongo":
        await init_db()
        log.info("startup", msg="DB connected")
    await app.state.services.start()
    log.info("startup", msg="Change feed started", realtime_backend=settings.realtime_backend)


@app.on_event("shutdown")
async def shutdown():
    await app.state.services.stop()


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok", "realtime_connected": app.state.services.notifier.connected}
