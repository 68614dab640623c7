import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from campaign_insights.config import Settings, get_settings
from campaign_insights.errors import ConfigurationError, UpstreamError, ValidationError
from campaign_insights.models.schemas import ErrorResponse
from campaign_insights.routers import campaigns_router
from campaign_insights.services.brands import (
    BrandConnectionStore,
    CachedBrandConnectionStore,
    SettingsBrandConnectionStore,
)
from campaign_insights.services.cache import TTLCache

settings = get_settings()

# Configure structured logging
def setup_logging(log_level: str = "info") -> None:
    """Configure structured logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

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
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

setup_logging(settings.log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup/shutdown and drop cached lookups on the way out."""
    logger.info(
        "campaign_insights_started",
        graph_api_version=app.state.settings.graph_api_version,
        brands_configured=len(app.state.settings.brand_connections),
    )

    yield

    app.state.cache.invalidate()
    logger.info("campaign_insights_stopped")


def _error_response(status_code: int, error: str, detail: str, upstream_status: Optional[int] = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, upstream_status=upstream_status)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.warning("configuration_error", path=str(request.url.path), error=str(exc))
        return _error_response(401, "configuration_error", str(exc))

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("validation_error", path=str(request.url.path), error=str(exc))
        return _error_response(400, "validation_error", str(exc))

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        logger.error("upstream_error", path=str(request.url.path), error=str(exc), **exc.log_context())
        platform_error = exc.platform_error or {}
        detail = platform_error.get("message") or str(exc)
        return _error_response(502, "upstream_error", detail, upstream_status=exc.status)


def create_app(
    settings: Optional[Settings] = None,
    brand_store: Optional[BrandConnectionStore] = None,
    graph_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Campaign Insights API",
        description="Campaign performance aggregation over the Meta Graph API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Process-scoped state shared by every request
    cache = TTLCache(ttl_seconds=settings.cache_ttl_seconds)
    app.state.settings = settings
    app.state.cache = cache
    app.state.brand_store = brand_store or CachedBrandConnectionStore(
        SettingsBrandConnectionStore(settings.brand_connections), cache
    )
    app.state.graph_transport = graph_transport

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(campaigns_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "graph_api_version": settings.graph_api_version}

    return app


app = create_app(settings)
