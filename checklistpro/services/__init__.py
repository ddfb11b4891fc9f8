"""
Storefront Services
"""
from .cart import Cart, CartLine
from .catalog import CatalogService, record_download, track_view
from .orders import OrderWorkflow
from .entitlements import EntitlementService

__all__ = [
    "Cart",
    "CartLine",
    "CatalogService",
    "OrderWorkflow",
    "EntitlementService",
    "record_download",
    "track_view",
]
