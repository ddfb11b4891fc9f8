"""
Unit Tests - Catalog and Categories
"""
import asyncio
from decimal import Decimal
import uuid

import pytest

from checklistpro.database.connection import get_db
from checklistpro.database.repositories import (
    CategoryRepository,
    OrderRepository,
    Page,
    ProductFilter,
    ProductRepository,
)
from checklistpro.errors import ConflictError, NotFoundError, ValidationError
from checklistpro.services.cart import CartLine
from checklistpro.services.catalog import CatalogService, ProductChanges, record_download, slugify, track_view
from checklistpro.services.categories import CategoryService
from checklistpro.services.orders import OrderWorkflow

from conftest import FakeGateway, get_product_row, make_category, make_product, make_user


def catalog_for(session) -> CatalogService:
    return CatalogService(ProductRepository(session), CategoryRepository(session))


class TestSlugify:
    """Tests for slug generation"""

    def test_slugify(self):
        """Test names become URL-safe slugs"""
        assert slugify("Food Truck Business Checklist") == "food-truck-business-checklist"
        assert slugify("  Media & Content!  ") == "media-content"
        assert slugify("Café Opening") == "cafe-opening"
        assert slugify("***") == ""


@pytest.mark.usefixtures("database")
class TestCatalogService:
    """Tests for product listing and management"""

    async def test_listing_filters_and_sorts(self):
        """Test category, price and search filters"""
        food = await make_category(name="Food Service", slug="food-service")
        media = await make_category(name="Media", slug="media-content")
        await make_product(name="Food Truck Checklist", price="29.99", category=food, tags=["permits"])
        await make_product(name="Podcast Workflow", price="19.99", category=media)
        await make_product(name="Hidden Checklist", price="5.00", category=food, is_active=False)

        async with get_db() as session:
            catalog = catalog_for(session)
            by_category = await catalog.list_products(ProductFilter(category_slug="food-service"), Page())
            by_tag = await catalog.list_products(ProductFilter(search="PERMITS"), Page())
            cheapest_first = await catalog.list_products(ProductFilter(sort="price"), Page())
            in_range = await catalog.list_products(
                ProductFilter(min_price=Decimal("20"), max_price=Decimal("30")), Page()
            )

        assert [p.name for p in by_category.items] == ["Food Truck Checklist"]
        assert [p.name for p in by_tag.items] == ["Food Truck Checklist"]
        assert [p.name for p in cheapest_first.items] == ["Podcast Workflow", "Food Truck Checklist"]
        assert in_range.total == 1

    async def test_pagination(self):
        """Test page windows and total pages"""
        for i in range(5):
            await make_product(name=f"Checklist {i}")

        async with get_db() as session:
            page = await catalog_for(session).list_products(ProductFilter(sort="name"), Page(page=2, page_size=2))

        assert page.total == 5
        assert page.total_pages == 3
        assert [p.name for p in page.items] == ["Checklist 2", "Checklist 3"]

    async def test_inactive_product_hidden_from_public(self):
        """Test disabled products are only visible to admins"""
        product = await make_product(is_active=False)

        async with get_db() as session:
            catalog = catalog_for(session)
            with pytest.raises(NotFoundError):
                await catalog.get_product(product.slug)
            found = await catalog.get_product(product.slug, include_inactive=True)

        assert found.id == product.id

    async def test_create_and_update_product(self):
        """Test admin product creation and partial updates"""
        category = await make_category()

        async with get_db() as session:
            created = await catalog_for(session).create_product(
                ProductChanges(
                    name="Online Course Creation",
                    price=Decimal("44.99"),
                    category_id=category.id,
                    formats={"pdf": "course.pdf"},
                )
            )
        assert created.slug == "online-course-creation"
        assert created.download_count == 0

        async with get_db() as session:
            updated = await catalog_for(session).update_product(
                created.id, ProductChanges(price=Decimal("39.99"), tags=["video"])
            )
        assert updated.price == Decimal("39.99")
        assert updated.tags == ["video"]
        assert updated.name == "Online Course Creation"

    async def test_format_keys_stored_lowercase(self):
        """Test format keys are normalized on create and update"""
        async with get_db() as session:
            created = await catalog_for(session).create_product(
                ProductChanges(name="Salon Startup", price=Decimal("24.99"), formats={"PDF": "salon.pdf"})
            )
        assert created.formats == {"pdf": "salon.pdf"}

        async with get_db() as session:
            updated = await catalog_for(session).update_product(
                created.id, ProductChanges(formats={" Word ": "salon.docx", "Markdown": "salon.md"})
            )
        assert updated.formats == {"word": "salon.docx", "markdown": "salon.md"}

    async def test_duplicate_slug_rejected(self):
        """Test product slugs are unique"""
        async with get_db() as session:
            await catalog_for(session).create_product(ProductChanges(name="Retail Shop", price=Decimal("10")))

        async with get_db() as session:
            with pytest.raises(ConflictError):
                await catalog_for(session).create_product(ProductChanges(name="Retail  Shop", price=Decimal("12")))

    async def test_create_requires_name_and_price(self):
        """Test required fields"""
        async with get_db() as session:
            with pytest.raises(ValidationError):
                await catalog_for(session).create_product(ProductChanges(price=Decimal("1")))
            with pytest.raises(ValidationError):
                await catalog_for(session).create_product(ProductChanges(name="No Price"))

    async def test_unknown_category_rejected(self):
        """Test products must point at an existing category"""
        async with get_db() as session:
            with pytest.raises(ValidationError):
                await catalog_for(session).create_product(
                    ProductChanges(name="Orphan", price=Decimal("1"), category_id=uuid.uuid4())
                )

    async def test_delete_unreferenced_product(self):
        """Test products without orders are hard-deleted"""
        product = await make_product()

        async with get_db() as session:
            _, deleted = await catalog_for(session).delete_product(product.id)

        assert deleted is True
        assert await get_product_row(product.id) is None

    async def test_delete_purchased_product_disables_it(self):
        """Test products referenced by orders are soft-disabled"""
        user = await make_user()
        product = await make_product()
        async with get_db() as session:
            await OrderWorkflow(OrderRepository(session), ProductRepository(session), FakeGateway()).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)]
            )

        async with get_db() as session:
            _, deleted = await catalog_for(session).delete_product(product.id)

        assert deleted is False
        stored = await get_product_row(product.id)
        assert stored is not None
        assert stored.is_active is False


@pytest.mark.usefixtures("file_database")
class TestCounters:
    """Tests for view and download counters"""

    async def test_concurrent_downloads_all_counted(self):
        """Test parallel increments are not lost"""
        product = await make_product()

        await asyncio.gather(*(record_download(product.id) for _ in range(10)))

        assert (await get_product_row(product.id)).download_count == 10

    async def test_views_counted(self):
        """Test view tracking"""
        product = await make_product()

        await track_view(product.id)
        await track_view(product.id)

        assert (await get_product_row(product.id)).view_count == 2

    async def test_counter_failures_are_swallowed(self):
        """Test tracking an unknown product is harmless"""
        await record_download(uuid.uuid4())
        await track_view(uuid.uuid4())


@pytest.mark.usefixtures("database")
class TestCategoryService:
    """Tests for category management"""

    async def test_list_counts_active_products(self):
        """Test product counts ignore disabled products"""
        category = await make_category(name="Retail", slug="retail")
        await make_product(category=category)
        await make_product(category=category, is_active=False)

        async with get_db() as session:
            listed = await CategoryService(CategoryRepository(session)).list_categories()

        assert [(c.slug, count) for c, count in listed] == [("retail", 1)]

    async def test_create_update_and_lookup(self):
        """Test category lifecycle"""
        async with get_db() as session:
            service = CategoryService(CategoryRepository(session))
            created = await service.create_category("Media & Content", icon="📺")
            assert created.slug == "media-content"

            with pytest.raises(ConflictError):
                await service.create_category("Media Content")

            await service.update_category(created.id, is_active=False)
            with pytest.raises(NotFoundError):
                await service.get_category("media-content")

    async def test_delete_category_with_products_refused(self):
        """Test categories in use cannot be deleted"""
        used = await make_category()
        empty = await make_category()
        await make_product(category=used)

        async with get_db() as session:
            service = CategoryService(CategoryRepository(session))
            with pytest.raises(ConflictError):
                await service.delete_category(used.id)
            await service.delete_category(empty.id)
            with pytest.raises(NotFoundError):
                await service.delete_category(empty.id)
