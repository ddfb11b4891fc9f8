"""
API Routes Module
"""
from .health import router as health_router
from .auth import router as auth_router
from .products import router as products_router
from .categories import router as categories_router
from .orders import router as orders_router, downloads_router
from .payments import router as payments_router
from .analytics import router as analytics_router
from .admin import router as admin_router
from .uploads import router as uploads_router

__all__ = [
    "health_router",
    "auth_router",
    "products_router",
    "categories_router",
    "orders_router",
    "downloads_router",
    "payments_router",
    "analytics_router",
    "admin_router",
    "uploads_router",
]
