"""
FastAPI application for the election platform API.

Serves draft publishing, election management, lotteries, security/audit,
content creator tools, API key administration and the API-key gated
public API.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .api_key_auth import api_key_middleware
from .config import settings
from .database import database
from .errors import register_exception_handlers
from .metrics import request_counter, request_duration
from .models import HealthResponse
from .routers import admin_api, content_creator, elections, lottery, public_api, security
from .throttling import limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Redis client backing the IP limiter, when configured
redis_client: Optional[redis.Redis] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global redis_client

    # Startup
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    try:
        await database.initialize()

        if settings.redis_url:
            redis_client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await redis_client.ping()
            logger.info("Redis rate-limit store connection established")

        logger.info(f"{settings.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")

    try:
        if redis_client:
            await redis_client.aclose()
            redis_client = None
        await database.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI app
app = FastAPI(
    title="Election Platform API",
    description="API for creating, publishing and auditing elections",
    version=settings.API_VERSION,
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

app.middleware("http")(api_key_middleware)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration and outcome."""
    started = time.perf_counter()
    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    request_duration.labels(method=request.method, endpoint=endpoint).observe(
        time.perf_counter() - started
    )
    request_counter.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    return response


# Add CORS middleware; registered last so it is the outermost layer
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

app.include_router(elections.router)
app.include_router(lottery.router)
app.include_router(security.router)
app.include_router(content_creator.router)
app.include_router(admin_api.router)
app.include_router(public_api.router)


@app.get(
    f"{settings.api_prefix}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check() -> HealthResponse:
    """
    Check health of the service and its dependencies.

    Verifies connections to:
    - PostgreSQL
    - Redis, when it backs the IP rate limiter

    Returns overall health status and individual service statuses.
    """
    services = {}

    # Check PostgreSQL
    postgres_healthy = await database.check_health()
    services["postgresql"] = "connected" if postgres_healthy else "disconnected"

    # Check rate-limit store
    if redis_client is None:
        services["rate_limit_store"] = "memory"
    else:
        try:
            await redis_client.ping()
            services["rate_limit_store"] = "connected"
        except Exception as e:
            logger.error(f"Redis health check error: {e}")
            services["rate_limit_store"] = "disconnected"

    all_healthy = all(
        state in ("connected", "memory") for state in services.values()
    )

    overall_status = "healthy" if all_healthy else "unhealthy"
    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    response = HealthResponse(
        status=overall_status,
        services=services,
        timestamp=datetime.now(timezone.utc)
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "status": "running",
        "endpoints": {
            "elections": f"{settings.api_prefix}/elections",
            "lottery": f"{settings.api_prefix}/lottery",
            "security": f"{settings.api_prefix}/security",
            "content_creator": f"{settings.api_prefix}/content-creator",
            "admin_api_keys": f"{settings.api_prefix}/admin/api-keys",
            "public": f"{settings.api_prefix}/public",
            "health": f"{settings.api_prefix}/health",
            "metrics": "/metrics"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.election_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
