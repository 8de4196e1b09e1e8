"""
FastAPI application entry point with health check route.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from waitline import __version__
from waitline.api.dependencies import get_queue_service, reset_queue_service
from waitline.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    queue_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from waitline.api.routes import merchants, queues
from waitline.jobs.scheduler import SchedulerManager
from waitline.lib.logging import get_logger, set_correlation_id
from waitline.lib.metrics import get_metrics_collector
from waitline.lib.settings import settings
from waitline.models.errors import QueueError

logger = get_logger(__name__)


# Correlation ID middleware
class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation_id to all requests for distributed tracing.
    Accepts X-Correlation-ID from incoming requests or generates a new one.
    """

    async def dispatch(self, request: Request, call_next):
        # Get correlation ID from header or generate new one
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        # Store in request state for access in route handlers
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        logger.info(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }
        )

        response = await call_next(request)

        # Add correlation ID to response headers
        response.headers["X-Correlation-ID"] = correlation_id

        logger.info(
            "Response sent",
            extra={"status_code": response.status_code},
        )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Starts the APScheduler timer backend inside the running loop and cancels
    every outstanding notification timer on shutdown.
    """
    logger.info(f"{settings.app_name} starting up...")
    service = app.dependency_overrides.get(get_queue_service, get_queue_service)()
    if isinstance(service.timers, SchedulerManager):
        service.timers.start()

    yield

    logger.info(f"{settings.app_name} shutting down...")
    service.shutdown()
    if isinstance(service.timers, SchedulerManager):
        service.timers.shutdown(wait=False)
    reset_queue_service()


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Restaurant waitlist queues with timed customer notifications",
    lifespan=lifespan,
)


# CORS middleware - configure allowed origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # React dev server
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Correlation ID middleware
app.add_middleware(CorrelationIdMiddleware)


# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(QueueError, queue_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


# Include routers
app.include_router(queues.router)
app.include_router(merchants.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Metrics exposed:
    - queue_notifications_sent_total: Messages by notification type, channel, status
    - queue_events_total: Queue lifecycle events by type
    - queue_no_shows_total: Entries released by the no-show timer
    - queue_timers_fired_total / queue_timers_cancelled_total: Timer activity

    Returns:
        Prometheus text format metrics
    """
    metrics = get_metrics_collector()
    return Response(
        content=metrics.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
