"""
TableBook Reservations API - Main Application Entry Point

Multi-branch restaurant table reservations:
- Double-booking-safe table reservation with optimistic locking
- Payment settlement reconciled across verify, webhook and refund channels
- Offer redemption with atomic usage caps
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tablebook.api.middleware import RequestLoggingMiddleware
from tablebook.api.router import api_router
from tablebook.core.config import get_settings
from tablebook.core.exceptions import TableBookError, tablebook_error_handler
from tablebook.core.logging import get_logger, setup_logging
from tablebook.core.metrics import metrics_endpoint
from tablebook.infrastructure.redis_client import close_redis, get_redis, redis_status
from tablebook.services.gateway_factory import close_gateway, get_gateway

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_gateway=settings.PAYMENT_GATEWAY,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Booking events will be logged only")

    gateway = get_gateway()
    logger.info("payment_gateway_ready", gateway=gateway.name)

    yield

    await close_gateway()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Restaurant table reservations with gateway-reconciled payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(TableBookError, tablebook_error_handler)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_status(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()
