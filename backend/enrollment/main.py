"""
Activity Enrollment API - application entry point.

Capacity-bounded enrollment for scheduled activities. Participant counters
only move through conditional UPDATEs inside one transaction per operation;
Redis caches listings and is optional. Run with
`uvicorn enrollment.main:app` from the backend directory.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from enrollment.api.middleware import RequestLoggingMiddleware
from enrollment.api.router import api_router
from enrollment.core.config import get_settings
from enrollment.core.exceptions import EnrollmentError
from enrollment.core.logging import get_logger, setup_logging
from enrollment.core.metrics import metrics_endpoint
from enrollment.services.cache_service import close_redis, get_cache_stats, get_redis

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    if await get_redis():
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Serving listings without cache")

    yield

    await close_redis()
    logger.info("application_shutdown")


async def enrollment_error_handler(request: Request, exc: EnrollmentError) -> JSONResponse:
    """Render every domain error as {"kind", "message"} with its HTTP status."""
    if exc.status_code >= 500:
        logger.error("request_error", kind=exc.kind, error=exc.message)
    else:
        logger.info("request_rejected", kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def health_check():
    """Liveness for Docker and load balancers, with cache status."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": await get_cache_stats(),
    }


async def metrics():
    return metrics_endpoint()


async def root():
    return {"message": f"Welcome to {settings.APP_NAME}", "version": settings.APP_VERSION, "docs": "/docs"}


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Capacity-bounded activity enrollment API",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)
    application.add_exception_handler(EnrollmentError, enrollment_error_handler)

    application.include_router(api_router)
    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    application.add_api_route("/metrics", metrics, methods=["GET"], tags=["Health"], include_in_schema=False)
    application.add_api_route("/", root, methods=["GET"], tags=["Root"])
    return application


app = create_app()
