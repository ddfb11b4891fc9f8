"""
Catalog Service

Product listing, lookup and admin management, plus the best-effort
engagement counters (views, downloads).
"""

from dataclasses import dataclass
from decimal import Decimal
import re
from typing import Dict, List, Optional, Tuple
import unicodedata
import uuid

import structlog

from checklistpro.database.connection import get_db
from checklistpro.database.models import Product
from checklistpro.database.repositories import (
    CategoryRepository,
    Page,
    ProductFilter,
    ProductRepository,
)
from checklistpro.errors import ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


def slugify(value: str) -> str:
    """URL-safe slug: lowercase ascii words joined by hyphens"""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug


def normalize_formats(formats: Dict[str, str]) -> Dict[str, str]:
    """Format keys are matched case-insensitively at download time"""
    return {key.strip().lower(): value for key, value in formats.items() if key.strip()}


@dataclass
class ProductPage:
    items: List[Product]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


@dataclass
class ProductChanges:
    """Admin-supplied product fields; None means unchanged"""
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    category_id: Optional[uuid.UUID] = None
    features: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    formats: Optional[Dict[str, str]] = None
    version: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class CatalogService:
    """Catalog Store operations"""

    def __init__(self, products: ProductRepository, categories: CategoryRepository):
        self.products = products
        self.categories = categories

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_products(self, filters: ProductFilter, page: Page) -> ProductPage:
        items, total = await self.products.search(filters, page)
        return ProductPage(items=items, total=total, page=page.page, page_size=page.page_size)

    async def get_product(self, slug: str, include_inactive: bool = False) -> Product:
        product = await self.products.get_by_slug(slug)
        if product is None or (not product.is_active and not include_inactive):
            raise NotFoundError("Product not found")
        return product

    async def get_product_by_id(self, product_id: uuid.UUID) -> Product:
        product = await self.products.get(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    # -------------------------------------------------------------------------
    # Admin management
    # -------------------------------------------------------------------------

    async def create_product(self, changes: ProductChanges) -> Product:
        if not changes.name:
            raise ValidationError("Product name is required", details=[{"field": "name", "message": "required"}])
        if changes.price is None:
            raise ValidationError("Product price is required", details=[{"field": "price", "message": "required"}])

        slug = await self._resolve_slug(changes.slug or changes.name)
        await self._check_category(changes.category_id)

        product = Product(
            name=changes.name,
            slug=slug,
            description=changes.description,
            short_description=changes.short_description,
            price=changes.price,
            original_price=changes.original_price,
            category_id=changes.category_id,
            features=list(changes.features or []),
            tags=list(changes.tags or []),
            formats=normalize_formats(changes.formats or {}),
            version=changes.version,
            icon=changes.icon,
            is_active=True if changes.is_active is None else changes.is_active,
            is_featured=bool(changes.is_featured),
            download_count=0,
            view_count=0,
            rating_count=0,
            rating_average=0.0,
            rating_distribution={str(star): 0 for star in range(1, 6)},
        )
        await self.products.add(product)
        await self.products.session.refresh(product, ["category"])
        logger.info("Product created", product_id=str(product.id), slug=product.slug)
        return product

    async def update_product(self, product_id: uuid.UUID, changes: ProductChanges) -> Product:
        product = await self.get_product_by_id(product_id)

        if changes.slug is not None and changes.slug != product.slug:
            product.slug = await self._resolve_slug(changes.slug, exclude_id=product.id)
        if changes.category_id is not None:
            await self._check_category(changes.category_id)
            product.category_id = changes.category_id

        for attr in (
            "name", "description", "short_description", "price", "original_price",
            "version", "icon", "is_active", "is_featured",
        ):
            value = getattr(changes, attr)
            if value is not None:
                setattr(product, attr, value)

        # Reassign JSON documents so the change is tracked
        if changes.features is not None:
            product.features = list(changes.features)
        if changes.tags is not None:
            product.tags = list(changes.tags)
        if changes.formats is not None:
            product.formats = normalize_formats(changes.formats)

        await self.products.session.flush()
        await self.products.session.refresh(product, ["category", "updated_at"])
        logger.info("Product updated", product_id=str(product.id))
        return product

    async def delete_product(self, product_id: uuid.UUID) -> Tuple[Product, bool]:
        """
        Delete a product.

        Products referenced by any order line are soft-disabled instead, so
        existing orders and their downloads keep resolving.

        Returns:
            The product and True if it was hard-deleted
        """
        product = await self.get_product_by_id(product_id)
        if await self.products.is_referenced(product.id):
            product.is_active = False
            await self.products.session.flush()
            logger.info("Product disabled instead of deleted", product_id=str(product.id))
            return product, False

        await self.products.delete(product)
        logger.info("Product deleted", product_id=str(product_id))
        return product, True

    async def _resolve_slug(self, raw: str, exclude_id: Optional[uuid.UUID] = None) -> str:
        slug = slugify(raw)
        if not slug:
            raise ValidationError("Slug must contain letters or digits", details=[{"field": "slug", "message": "invalid"}])
        if await self.products.slug_exists(slug, exclude_id=exclude_id):
            raise ConflictError(f"Product slug '{slug}' already exists")
        return slug

    async def _check_category(self, category_id: Optional[uuid.UUID]) -> None:
        if category_id is not None and await self.categories.get(category_id) is None:
            raise ValidationError("Unknown category", details=[{"field": "category_id", "message": "not found"}])


# =============================================================================
# BEST-EFFORT COUNTERS
# =============================================================================

async def track_view(product_id: uuid.UUID) -> None:
    """
    Increment a product's view counter in its own session.

    Runs after the response; failures are logged and never reach the caller.
    """
    try:
        async with get_db() as db:
            await ProductRepository(db).increment_views(product_id)
    except Exception as e:
        logger.warning("View tracking failed", product_id=str(product_id), error=str(e))


async def record_download(product_id: uuid.UUID) -> None:
    """
    Increment a product's download counter in its own session.

    Scheduled once a download body has been sent; failures are logged only.
    """
    try:
        async with get_db() as db:
            await ProductRepository(db).increment_downloads(product_id)
    except Exception as e:
        logger.warning("Download counting failed", product_id=str(product_id), error=str(e))
