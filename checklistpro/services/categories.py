"""
Category Service
"""

from typing import List, Optional, Tuple
import uuid

import structlog

from checklistpro.database.models import Category
from checklistpro.database.repositories import CategoryRepository
from checklistpro.errors import ConflictError, NotFoundError, ValidationError
from checklistpro.services.catalog import slugify

logger = structlog.get_logger(__name__)


class CategoryService:
    def __init__(self, categories: CategoryRepository):
        self.categories = categories

    async def list_categories(self, include_inactive: bool = False) -> List[Tuple[Category, int]]:
        return await self.categories.list_with_counts(include_inactive=include_inactive)

    async def get_category(self, slug: str) -> Category:
        category = await self.categories.get_by_slug(slug)
        if category is None or not category.is_active:
            raise NotFoundError("Category not found")
        return category

    async def create_category(
        self,
        name: str,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        resolved = await self._resolve_slug(slug or name)
        category = Category(name=name, slug=resolved, description=description, icon=icon, is_active=True)
        await self.categories.add(category)
        logger.info("Category created", category_id=str(category.id), slug=resolved)
        return category

    async def update_category(
        self,
        category_id: uuid.UUID,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Category:
        category = await self.categories.get(category_id)
        if category is None:
            raise NotFoundError("Category not found")

        if slug is not None and slugify(slug) != category.slug:
            category.slug = await self._resolve_slug(slug)
        if name is not None:
            category.name = name
        if description is not None:
            category.description = description
        if icon is not None:
            category.icon = icon
        if is_active is not None:
            category.is_active = is_active

        await self.categories.session.flush()
        return category

    async def delete_category(self, category_id: uuid.UUID) -> None:
        category = await self.categories.get(category_id)
        if category is None:
            raise NotFoundError("Category not found")
        if await self.categories.has_products(category.id):
            raise ConflictError("Category still has products; move or disable them first")
        await self.categories.delete(category)
        logger.info("Category deleted", category_id=str(category_id))

    async def _resolve_slug(self, raw: str) -> str:
        slug = slugify(raw)
        if not slug:
            raise ValidationError("Slug must contain letters or digits", details=[{"field": "slug", "message": "invalid"}])
        if await self.categories.get_by_slug(slug) is not None:
            raise ConflictError(f"Category slug '{slug}' already exists")
        return slug
