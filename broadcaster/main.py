"""
FastAPI application main module.
Wires the send queue, the shared throttle state and the send workers into the app lifespan.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import uuid
import os
from contextlib import asynccontextmanager

from broadcaster.api.v1 import api_router
from broadcaster.utils import setup_logging, get_logger
from broadcaster.jobs.worker_send import SendWorker, create_queue
from broadcaster.services.send_pipeline import build_send_pipeline
from broadcaster.services.throttle_state import create_throttle_state, retry_after_utc, is_throttled
from broadcaster.database import engine, Base, SessionLocal
from broadcaster.config import QUEUE_SETTINGS
import broadcaster.models.db  # noqa: F401  registers every table on Base.metadata

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/broadcaster.log"),
    enable_console=True
)

logger = get_logger(__name__)

_worker: SendWorker | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")

    global _worker
    queue = None
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)

        queue = create_queue()
        throttle_state = create_throttle_state()
        # Endpoints reach the queue through app.state to avoid importing main
        app.state.send_queue = queue  # type: ignore[attr-defined]
        app.state.throttle_state = throttle_state  # type: ignore[attr-defined]

        pipeline = build_send_pipeline(queue, session_factory=SessionLocal, throttle_state=throttle_state)
        _worker = SendWorker(queue, pipeline, throttle_state=throttle_state)
        _worker.start()
        logger.info("Send queue + workers started", queue_backend=type(queue).__name__)
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _worker:
            _worker.stop()
        if queue is not None:
            queue.shutdown()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Notification Broadcaster",
    description="""
    Broadcasts bot notifications to many recipients through a work queue.

    ## Features
    * **Drafts** - create notifications and send them to a recipient list
    * **Per-recipient send jobs** - one queued job per recipient, retried by the queue
    * **Global throttle backoff** - one shared retry-after window across all workers
    * **Delivery reporting** - succeeded / failed / throttled / not-found counts per notification
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning("Request validation failed", errors=exc.errors(), request_id=request_id, url=str(request.url))
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": exc.errors(),
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail, request_id=request_id)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "notification-broadcaster",
        "version": "1.0.0",
        "timestamp": time.time(),
        "queue_backend": "redis" if QUEUE_SETTINGS.get("use_redis", False) else "memory",
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check(request: Request):
    """Database, queue and throttle window status."""
    health_status = {
        "status": "healthy",
        "service": "notification-broadcaster",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    queue = getattr(request.app.state, "send_queue", None)
    if queue is not None:
        snap = queue.snapshot()
        health_status["checks"]["queue"] = {
            k: v for k, v in snap.items() if k in {"depth", "ready", "scheduled", "dead_letter", "redis_active"}
        }

    throttle_state = getattr(request.app.state, "throttle_state", None)
    if throttle_state is not None:
        until = retry_after_utc(throttle_state)
        health_status["checks"]["throttle"] = {
            "throttled": is_throttled(throttle_state),
            "retry_after": until.isoformat() if until else None,
        }

    return health_status


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Notification Broadcaster API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")
