"""
Categories API Endpoints
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from checklistpro.database.models import Category, User
from checklistpro.serving.api.dependencies import get_category_service, require_admin
from checklistpro.serving.api.schemas import MessageResponse
from checklistpro.serving.cache import categories_cache, products_cache
from checklistpro.services.categories import CategoryService

router = APIRouter()


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool
    product_count: int = 0
    created_at: datetime


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=16)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=16)
    is_active: Optional[bool] = None


def _category_out(category: Category, product_count: int = 0) -> CategoryOut:
    out = CategoryOut.model_validate(category)
    out.product_count = product_count
    return out


@router.get("", response_model=List[CategoryOut])
async def list_categories(
    service: CategoryService = Depends(get_category_service),
) -> List[CategoryOut]:
    """
    List active categories with their active product counts.
    """
    async def load():
        rows = await service.list_categories()
        return [_category_out(c, count).model_dump(mode="json") for c, count in rows]

    return [CategoryOut(**item) for item in await categories_cache.get_or_set("all", load)]


@router.get("/{slug}", response_model=CategoryOut)
async def get_category(
    slug: str,
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    category = await service.get_category(slug)
    count = await service.categories.count_active_products(category.id)
    return _category_out(category, count)


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreate,
    admin: User = Depends(require_admin),
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    category = await service.create_category(body.name, body.slug, body.description, body.icon)
    await categories_cache.invalidate_all()
    return _category_out(category)


@router.put("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: UUID,
    body: CategoryUpdate,
    admin: User = Depends(require_admin),
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    category = await service.update_category(category_id, **body.model_dump(exclude_unset=True))
    await categories_cache.invalidate_all()
    await products_cache.invalidate_all()
    count = await service.categories.count_active_products(category.id)
    return _category_out(category, count)


@router.delete("/{category_id}", response_model=MessageResponse)
async def delete_category(
    category_id: UUID,
    admin: User = Depends(require_admin),
    service: CategoryService = Depends(get_category_service),
) -> MessageResponse:
    await service.delete_category(category_id)
    await categories_cache.invalidate_all()
    return MessageResponse(message="Category deleted")
