"""
Entitlement / Download Gateway

A user may download a product's file only through a completed order they own
that contains the product. Entitlement is scoped to the order, so products
disabled after purchase stay downloadable.

Serving a format falls back in order: the stored file, a conversion from the
product's markdown source, then a placeholder checklist built from product
metadata. Nothing is memoised; each request resolves afresh.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import uuid

import aiofiles
import structlog

from checklistpro.config import get_settings
from checklistpro.database.models import Order, OrderStatus, Product
from checklistpro.database.repositories import OrderRepository, ProductRepository
from checklistpro.errors import ForbiddenError, NotFoundError
from checklistpro.services.documents import (
    CONVERTIBLE_FORMATS,
    content_type_for,
    convert_markdown,
    placeholder_checklist,
)

logger = structlog.get_logger(__name__)

MARKDOWN_FORMAT_KEYS = ("markdown", "md")


@dataclass
class DownloadEntry:
    order_id: uuid.UUID
    order_number: str
    product_id: uuid.UUID
    product_name: str
    product_slug: str
    purchased_at: Optional[datetime]
    formats: List[str] = field(default_factory=list)
    urls: Dict[str, str] = field(default_factory=dict)


@dataclass
class DownloadPayload:
    """Either a file on disk or generated bytes, plus response metadata"""
    filename: str
    media_type: str
    source: str
    path: Optional[Path] = None
    content: Optional[bytes] = None


def download_url(order_id: uuid.UUID, product_id: uuid.UUID, fmt: str) -> str:
    return f"/api/orders/{order_id}/downloads/{product_id}/{fmt}"


class EntitlementService:
    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        storage_root: Optional[Path] = None,
    ):
        self.orders = orders
        self.products = products
        self.storage_root = Path(storage_root or get_settings().storage.files_path)

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    async def list_downloads(self, user_id: uuid.UUID) -> List[DownloadEntry]:
        """One entry per (completed order, product) owned by the user"""
        orders = await self.orders.completed_for_user(user_id)
        return await self._entries(orders)

    async def list_order_downloads(self, user_id: uuid.UUID, order_id: uuid.UUID) -> List[DownloadEntry]:
        order = await self._entitled_order(user_id, order_id)
        return await self._entries([order])

    async def _entries(self, orders: Sequence[Order]) -> List[DownloadEntry]:
        product_ids = {item.product_id for order in orders for item in order.items}
        catalog = await self.products.get_many(product_ids)

        entries: List[DownloadEntry] = []
        for order in orders:
            seen = set()
            for item in order.items:
                if item.product_id in seen:
                    continue
                seen.add(item.product_id)

                product = catalog.get(item.product_id)
                formats = sorted((product.formats or {}).keys()) if product else []
                entries.append(
                    DownloadEntry(
                        order_id=order.id,
                        order_number=order.order_number,
                        product_id=item.product_id,
                        product_name=item.product_name,
                        product_slug=item.product_slug,
                        purchased_at=order.completed_at,
                        formats=formats,
                        urls={fmt: download_url(order.id, item.product_id, fmt) for fmt in formats},
                    )
                )
        return entries

    # -------------------------------------------------------------------------
    # Download
    # -------------------------------------------------------------------------

    async def get_download(
        self,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        product_id: uuid.UUID,
        fmt: str,
    ) -> DownloadPayload:
        """
        Resolve a download.

        Raises:
            ForbiddenError: No completed order owned by the user contains the product
            NotFoundError: The product no longer exists or does not offer the format
        """
        order = await self._entitled_order(user_id, order_id)
        if not any(item.product_id == product_id for item in order.items):
            logger.info(
                "Download refused, product not in order",
                order_id=str(order_id),
                user_id=str(user_id),
                product_id=str(product_id),
            )
            raise ForbiddenError("This order does not include the requested product")

        product = await self.products.get(product_id)
        if product is None:
            raise NotFoundError("Product not found")

        fmt = fmt.lower()
        filename = (product.formats or {}).get(fmt)
        if not filename:
            raise NotFoundError("Format not available")

        return await self.resolve_file(product, fmt, filename)

    async def _entitled_order(self, user_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = await self.orders.get(order_id)
        if order is None or order.user_id != user_id or order.status != OrderStatus.COMPLETED:
            logger.info("Download refused", order_id=str(order_id), user_id=str(user_id))
            raise ForbiddenError("Downloads are available for your completed orders only")
        return order

    async def resolve_file(self, product: Product, fmt: str, filename: str) -> DownloadPayload:
        path = self._confined(filename)
        if path is not None and path.is_file():
            return DownloadPayload(
                filename=path.name,
                media_type=content_type_for(path.name),
                source="file",
                path=path,
            )

        if fmt in CONVERTIBLE_FORMATS:
            markdown = await self._markdown_source(product, filename)
            if markdown is not None:
                try:
                    content = await asyncio.to_thread(convert_markdown, markdown, fmt, product.name)
                except Exception as e:
                    logger.warning("Markdown conversion failed", product_id=str(product.id), fmt=fmt, error=str(e))
                else:
                    logger.info("Served converted download", product_id=str(product.id), fmt=fmt)
                    return DownloadPayload(
                        filename=Path(filename).name,
                        media_type=content_type_for(filename),
                        source="converted",
                        content=content,
                    )

        logger.info("Serving placeholder checklist", product_id=str(product.id), fmt=fmt, filename=filename)
        return DownloadPayload(
            filename=f"{Path(filename).stem}.md",
            media_type="text/markdown",
            source="placeholder",
            content=placeholder_checklist(product).encode("utf-8"),
        )

    async def _markdown_source(self, product: Product, filename: str) -> Optional[str]:
        formats = product.formats or {}
        candidates = [formats[key] for key in MARKDOWN_FORMAT_KEYS if formats.get(key)]
        candidates.append(f"{Path(filename).stem}.md")

        for candidate in candidates:
            path = self._confined(candidate)
            if path is None or not path.is_file():
                continue
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    return await f.read()
            except (UnicodeDecodeError, OSError) as e:
                logger.warning(
                    "Unreadable markdown source",
                    product_id=str(product.id),
                    filename=candidate,
                    error=str(e),
                )
        return None

    def _confined(self, filename: str) -> Optional[Path]:
        """Absolute path under the storage root, or None if it escapes"""
        root = self.storage_root.resolve()
        candidate = (root / filename).resolve()
        if not candidate.is_relative_to(root):
            logger.warning("Rejected file path outside storage root", filename=filename)
            return None
        return candidate
