"""
Unit Tests - Entitlements and Documents
"""
from decimal import Decimal
import uuid

import pytest

from checklistpro.database.connection import get_db
from checklistpro.database.models import Product
from checklistpro.database.repositories import OrderRepository, ProductRepository
from checklistpro.errors import ForbiddenError, NotFoundError
from checklistpro.services.cart import CartLine
from checklistpro.services.documents import (
    content_type_for,
    convert_markdown,
    markdown_to_pdf,
    placeholder_checklist,
)
from checklistpro.services.entitlements import EntitlementService, download_url
from checklistpro.services.orders import OrderWorkflow

from conftest import FakeGateway, make_product, make_user

SAMPLE_MARKDOWN = """# Food Truck Launch

## Phase 1
- [ ] Define your **concept**
- [x] Research the *market*

Plain paragraph with <angle> & ampersand.

---
"""


async def place_order(user, products, outcome="succeeded", payment_method="pm_card_visa"):
    async with get_db() as session:
        workflow = OrderWorkflow(
            OrderRepository(session),
            ProductRepository(session),
            FakeGateway(outcome),
            tax_rate=Decimal("0.08"),
        )
        return await workflow.create_order(
            user.id,
            [CartLine(product_id=p.id, quantity=1) for p in products],
            payment_method=payment_method,
        )


def service_for(session, storage) -> EntitlementService:
    return EntitlementService(OrderRepository(session), ProductRepository(session), storage_root=storage)


class TestDocuments:
    """Tests for content types and markdown conversion"""

    def test_content_types(self):
        """Test content types come from the file extension"""
        assert content_type_for("guide.pdf") == "application/pdf"
        assert content_type_for("GUIDE.MD") == "text/markdown"
        assert content_type_for("sheet.xlsx").endswith("spreadsheetml.sheet")
        assert content_type_for("board.fig") == "application/octet-stream"
        assert content_type_for("no-extension") == "application/octet-stream"

    def test_markdown_to_pdf(self):
        """Test markdown renders to a PDF document"""
        pdf = markdown_to_pdf(SAMPLE_MARKDOWN, title="Food Truck")
        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 500

    def test_convert_to_text_formats(self):
        """Test text targets pass markdown through"""
        assert convert_markdown(SAMPLE_MARKDOWN, "txt") == SAMPLE_MARKDOWN.encode("utf-8")
        assert convert_markdown(SAMPLE_MARKDOWN, "Markdown") == SAMPLE_MARKDOWN.encode("utf-8")

    def test_convert_unsupported_format(self):
        """Test spreadsheets cannot be produced from markdown"""
        with pytest.raises(ValueError):
            convert_markdown(SAMPLE_MARKDOWN, "excel")

    def test_placeholder_uses_product_metadata(self):
        """Test the placeholder checklist is built from the product"""
        product = Product(
            name="Therapy Practice Checklist",
            description="Start your practice",
            version="1.8",
            features=["Insurance forms", "HIPAA guide"],
        )
        text = placeholder_checklist(product)

        assert text.startswith("# Therapy Practice Checklist")
        assert "Version: 1.8" in text
        assert "- Insurance forms" in text
        assert "### Phase 1: Planning and Research" in text


@pytest.mark.usefixtures("database")
class TestDownloadResolution:
    """Tests for the stored, converted and placeholder fallbacks"""

    async def test_stored_file_served(self, storage):
        """Test an existing file is served from disk"""
        (storage / "guide.pdf").write_bytes(b"%PDF-1.4 stored")
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product])

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "PDF")

        assert payload.source == "file"
        assert payload.path == (storage / "guide.pdf").resolve()
        assert payload.media_type == "application/pdf"
        assert payload.filename == "guide.pdf"

    async def test_pdf_converted_from_markdown(self, storage):
        """Test a missing PDF is rendered from the markdown source"""
        (storage / "guide.md").write_text(SAMPLE_MARKDOWN, encoding="utf-8")
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product])

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "pdf")

        assert payload.source == "converted"
        assert payload.filename == "guide.pdf"
        assert payload.media_type == "application/pdf"
        assert payload.content.startswith(b"%PDF")

    async def test_undecodable_markdown_falls_back_to_placeholder(self, storage):
        """Test a markdown source that is not UTF-8 still yields a download"""
        (storage / "guide.md").write_bytes(b"# Title\n\xff\xfe bad bytes\n")
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product])

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "pdf")

        assert payload.source == "placeholder"
        assert payload.filename == "guide.md"
        assert payload.content.decode("utf-8").startswith(f"# {product.name}")

    async def test_placeholder_when_nothing_on_disk(self, storage):
        """Test the placeholder checklist is the last resort"""
        user = await make_user()
        product = await make_product(formats={"excel": "retail-shop.xlsx"})
        order = await place_order(user, [product])

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "excel")

        assert payload.source == "placeholder"
        assert payload.filename == "retail-shop.md"
        assert payload.media_type == "text/markdown"
        assert payload.content.decode("utf-8").startswith(f"# {product.name}")

    async def test_paths_outside_storage_are_not_read(self, storage):
        """Test stored names cannot escape the storage root"""
        (storage.parent / "secret.pdf").write_bytes(b"%PDF-1.4 secret")
        user = await make_user()
        product = await make_product(formats={"pdf": "../secret.pdf"})
        order = await place_order(user, [product])

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "pdf")

        assert payload.source == "placeholder"
        assert payload.path is None
        assert b"secret" not in payload.content

    async def test_disabled_product_still_downloadable(self, storage):
        """Test entitlement survives the product being disabled"""
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product])

        async with get_db() as session:
            (await session.get(Product, product.id)).is_active = False

        async with get_db() as session:
            payload = await service_for(session, storage).get_download(user.id, order.id, product.id, "markdown")

        assert payload.source == "placeholder"


@pytest.mark.usefixtures("database")
class TestEntitlementRules:
    """Tests for who may download what"""

    async def test_other_users_order_refused(self, storage):
        """Test downloads require owning the order"""
        owner = await make_user()
        stranger = await make_user()
        product = await make_product()
        order = await place_order(owner, [product])

        async with get_db() as session:
            with pytest.raises(ForbiddenError):
                await service_for(session, storage).get_download(stranger.id, order.id, product.id, "pdf")

    async def test_pending_order_refused(self, storage):
        """Test downloads require a completed order"""
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product], payment_method=None)

        async with get_db() as session:
            with pytest.raises(ForbiddenError):
                await service_for(session, storage).get_download(user.id, order.id, product.id, "pdf")

    async def test_product_not_in_order_refused(self, storage):
        """Test the order must contain the product"""
        user = await make_user()
        bought = await make_product()
        other = await make_product(name="Podcast Production Workflow")
        order = await place_order(user, [bought])

        async with get_db() as session:
            with pytest.raises(ForbiddenError):
                await service_for(session, storage).get_download(user.id, order.id, other.id, "pdf")

    async def test_unknown_format_not_found(self, storage):
        """Test formats the product does not offer"""
        user = await make_user()
        product = await make_product()
        order = await place_order(user, [product])

        async with get_db() as session:
            with pytest.raises(NotFoundError):
                await service_for(session, storage).get_download(user.id, order.id, product.id, "word")

    async def test_missing_order_refused(self, storage):
        """Test an unknown order id"""
        user = await make_user()

        async with get_db() as session:
            with pytest.raises(ForbiddenError):
                await service_for(session, storage).get_download(user.id, uuid.uuid4(), uuid.uuid4(), "pdf")

    async def test_list_downloads(self, storage):
        """Test the download library lists completed purchases only"""
        user = await make_user()
        first = await make_product(name="Food Truck Business Checklist")
        second = await make_product(name="Therapy Practice Checklist", formats={"pdf": "therapy.pdf"})
        completed = await place_order(user, [first, second])
        await place_order(user, [first], payment_method=None)

        async with get_db() as session:
            service = service_for(session, storage)
            entries = await service.list_downloads(user.id)
            order_entries = await service.list_order_downloads(user.id, completed.id)

        assert len(entries) == 2
        assert {e.order_id for e in entries} == {completed.id}
        by_product = {e.product_id: e for e in entries}
        assert by_product[first.id].formats == ["markdown", "pdf"]
        assert by_product[second.id].urls == {"pdf": download_url(completed.id, second.id, "pdf")}
        assert len(order_entries) == 2
