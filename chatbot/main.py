"""Beans chatbot API service.

FastAPI application exposing the coffee recommendation pipeline.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from chatbot.models import ErrorResponse, HealthResponse
from chatbot.routers import admin as admin_router
from chatbot.routers import chatbot as chatbot_router
from libs.caching.redis_client import close_redis_client
from libs.caching.redis_client import health_check as redis_health_check
from libs.common.settings import get_settings

SERVICE_VERSION = "0.1.0"
MAX_REQUEST_BYTES = 64 * 1024


def configure_logging(log_level: str = "INFO"):
    """Configure structured logging once per process."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared Redis pool on shutdown."""
    yield
    await close_redis_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Beans Chatbot API",
        description="Conversational coffee recommendations over a product knowledge graph",
        version=SERVICE_VERSION,
        default_response_class=ORJSONResponse,
        debug=settings.debug,
        lifespan=lifespan,
    )

    cors_origins = ["*"] if settings.is_development else settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False if settings.is_development else True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Cache", "X-Trace-ID", "Retry-After"],
    )

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        """Limit request body size to prevent abuse."""
        if request.method in ["POST", "PUT", "PATCH"]:
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_BYTES:
                return ORJSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content=ErrorResponse(
                        error_code="REQUEST_TOO_LARGE",
                        message=f"Request body too large. Maximum size: {MAX_REQUEST_BYTES} bytes",
                    ).model_dump(exclude_none=True),
                )
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and structured data."""
        start_time = time.time()
        request_id = f"req_{int(start_time * 1000000)}"
        request.state.request_id = request_id

        logger.info("Request started", request_id=request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                request_id=request_id,
                error=str(e),
                process_time_ms=round((time.time() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(chatbot_router.router, prefix="/api", tags=["Chatbot"])

    # Maintenance endpoints (development only)
    if settings.is_development:
        app.include_router(admin_router.router, prefix="/api/admin", tags=["Admin"])
    else:
        logger.info("Admin endpoints disabled outside development")

    @app.get("/healthz", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        """Liveness check."""
        return HealthResponse(status="healthy", service="chatbot", version=SERVICE_VERSION, timestamp=time.time())

    @app.get("/readyz", response_model=HealthResponse, tags=["Health"])
    async def readiness() -> HealthResponse:
        """Readiness check. Ready when Redis answers a ping."""
        redis_ok = await redis_health_check()
        return HealthResponse(
            status="ready" if redis_ok else "not_ready",
            service="chatbot",
            version=SERVICE_VERSION,
            timestamp=time.time(),
            details={"redis": redis_ok},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development only
    uvicorn.run("chatbot.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
