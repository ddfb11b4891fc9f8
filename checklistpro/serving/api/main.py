"""
FastAPI Application Factory

Creates and configures the storefront API application: middleware, routers
and the error envelope.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from checklistpro.config import get_settings
from checklistpro.errors import AppError, AuthError, InternalError
from checklistpro.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from checklistpro.serving.api.routes import (
    admin_router,
    analytics_router,
    auth_router,
    categories_router,
    downloads_router,
    health_router,
    orders_router,
    payments_router,
    products_router,
    uploads_router,
)

settings = get_settings()
logger = structlog.get_logger(__name__)

API_PREFIX = "/api"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail if isinstance(exc.detail, str) else "Request failed"},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content=InternalError().to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def create_api_app(lifespan=None, rate_limit: Optional[int] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        lifespan: Optional lifespan context manager
        rate_limit: Override the configured requests-per-window limit

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="ChecklistPro API",
        description="Storefront API for downloadable business checklists",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=rate_limit or settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
        exempt_paths=(f"{API_PREFIX}/health", f"{API_PREFIX}/metrics"),
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    # API routes
    app.include_router(health_router, prefix=API_PREFIX, tags=["Health"])
    app.include_router(auth_router, prefix=f"{API_PREFIX}/auth", tags=["Auth"])
    app.include_router(products_router, prefix=f"{API_PREFIX}/products", tags=["Products"])
    app.include_router(categories_router, prefix=f"{API_PREFIX}/categories", tags=["Categories"])
    app.include_router(orders_router, prefix=f"{API_PREFIX}/orders", tags=["Orders"])
    app.include_router(downloads_router, prefix=f"{API_PREFIX}/downloads", tags=["Downloads"])
    app.include_router(payments_router, prefix=f"{API_PREFIX}/payments", tags=["Payments"])
    app.include_router(analytics_router, prefix=f"{API_PREFIX}/analytics", tags=["Analytics"])
    app.include_router(admin_router, prefix=f"{API_PREFIX}/admin", tags=["Admin"])
    app.include_router(uploads_router, prefix=f"{API_PREFIX}/uploads", tags=["Uploads"])

    @app.get(f"{API_PREFIX}/info", tags=["Health"])
    async def api_info():
        """API information endpoint."""
        return {
            "name": "ChecklistPro API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app
