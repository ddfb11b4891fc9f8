"""
Products API Endpoints

Public catalog browsing plus admin product management.
"""

from decimal import Decimal
from typing import Dict, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
import structlog

from checklistpro.database.models import User, UserRole
from checklistpro.database.repositories import Page, ProductFilter
from checklistpro.serving.api.dependencies import get_catalog_service, get_optional_user, require_admin
from checklistpro.serving.api.schemas import AdminProductDetail, MessageResponse, ProductDetail, ProductSummary
from checklistpro.serving.cache import products_cache
from checklistpro.services.catalog import CatalogService, ProductChanges, track_view

router = APIRouter()
logger = structlog.get_logger(__name__)

SortKey = Literal["newest", "popular", "price", "price_desc", "rating", "name"]


class ProductListResponse(BaseModel):
    """Paginated product list"""
    items: List[ProductSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProductBase(BaseModel):
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    original_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    category_id: Optional[UUID] = None
    features: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    formats: Optional[Dict[str, str]] = None
    version: Optional[str] = Field(None, max_length=20)
    icon: Optional[str] = Field(None, max_length=16)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None

    @field_validator("formats")
    @classmethod
    def normalize_formats(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """Format keys are matched case-insensitively"""
        if v is None:
            return v
        return {key.strip().lower(): name.strip() for key, name in v.items() if key.strip() and name.strip()}


class ProductCreate(ProductBase):
    name: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = Field(None, max_length=220)
    price: Decimal = Field(..., ge=0, decimal_places=2)


class ProductUpdate(ProductBase):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, max_length=220)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)


class ProductDeleteResponse(MessageResponse):
    deleted: bool


@router.get("", response_model=ProductListResponse)
async def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=100),
    featured: Optional[bool] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort: SortKey = "newest",
    catalog: CatalogService = Depends(get_catalog_service),
) -> ProductListResponse:
    """
    List active products with filtering, search and sorting.
    """
    cache_key = f"list:{page}:{page_size}:{category}:{search}:{featured}:{min_price}:{max_price}:{sort}"
    cached = await products_cache.get(cache_key)
    if cached:
        logger.debug("Returning cached product list", key=cache_key)
        return ProductListResponse(**cached)

    result = await catalog.list_products(
        ProductFilter(
            category_slug=category,
            search=search,
            featured=featured,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
        ),
        Page(page=page, page_size=page_size),
    )

    response = ProductListResponse(
        items=[ProductSummary.model_validate(p) for p in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )
    await products_cache.set(cache_key, response.model_dump(mode="json"))
    return response


@router.get("/{slug}", response_model=ProductDetail)
async def get_product(
    slug: str,
    user: Optional[User] = Depends(get_optional_user),
    catalog: CatalogService = Depends(get_catalog_service),
) -> ProductDetail:
    """
    Get a product by slug. Disabled products are only visible to admins.
    """
    is_admin = user is not None and user.role == UserRole.ADMIN
    product = await catalog.get_product(slug, include_inactive=is_admin)
    return ProductDetail.from_product(product)


@router.post("/{product_id}/view", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def record_view(
    product_id: UUID,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    """
    Count a product view after the response is sent.
    """
    background_tasks.add_task(track_view, product_id)
    return MessageResponse(message="View recorded")


@router.post("", response_model=AdminProductDetail, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    admin: User = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> AdminProductDetail:
    product = await catalog.create_product(ProductChanges(**body.model_dump()))
    await products_cache.invalidate_all()
    return AdminProductDetail.from_product(product)


@router.put("/{product_id}", response_model=AdminProductDetail)
async def update_product(
    product_id: UUID,
    body: ProductUpdate,
    admin: User = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> AdminProductDetail:
    product = await catalog.update_product(product_id, ProductChanges(**body.model_dump(exclude_unset=True)))
    await products_cache.invalidate_all()
    return AdminProductDetail.from_product(product)


@router.delete("/{product_id}", response_model=ProductDeleteResponse)
async def delete_product(
    product_id: UUID,
    admin: User = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> ProductDeleteResponse:
    """
    Delete a product, or disable it when existing orders reference it.
    """
    _, deleted = await catalog.delete_product(product_id)
    await products_cache.invalidate_all()
    if deleted:
        return ProductDeleteResponse(message="Product deleted", deleted=True)
    return ProductDeleteResponse(message="Product is referenced by orders and was disabled", deleted=False)
