"""
Admin Data Export

CSV snapshots of orders, users and products for the admin dashboard. Every
column is written as text so empty tables still produce a header row.
"""

from typing import Dict, List, Optional

import polars as pl
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from checklistpro.database.models import Order, Product, User
from checklistpro.errors import NotFoundError

logger = structlog.get_logger(__name__)

EXPORT_COLUMNS: Dict[str, List[str]] = {
    "orders": [
        "order_number", "status", "customer_email", "items", "subtotal",
        "tax_amount", "total_amount", "currency", "created_at", "completed_at",
    ],
    "users": ["name", "email", "role", "is_active", "created_at", "last_login_at"],
    "products": [
        "name", "slug", "category", "price", "is_active", "formats",
        "view_count", "download_count", "created_at",
    ],
}


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


class ExportService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def export_csv(self, export_type: str) -> str:
        """
        Render one table as CSV.

        Raises:
            NotFoundError: Unknown export type
        """
        columns = EXPORT_COLUMNS.get(export_type)
        if columns is None:
            raise NotFoundError(f"Unknown export type '{export_type}'")

        rows = await getattr(self, f"_{export_type}_rows")()
        df = pl.DataFrame(
            {name: [_text(row[name]) for row in rows] for name in columns},
            schema={name: pl.Utf8 for name in columns},
        )
        logger.info("Data exported", export_type=export_type, rows=df.height)
        return df.write_csv()

    async def _orders_rows(self) -> List[dict]:
        result = await self.session.execute(
            select(Order, User.email)
            .join(User, User.id == Order.user_id)
            .order_by(Order.created_at)
        )
        return [
            {
                "order_number": order.order_number,
                "status": order.status,
                "customer_email": email,
                "items": order.item_count,
                "subtotal": order.subtotal,
                "tax_amount": order.tax_amount,
                "total_amount": order.total_amount,
                "currency": order.currency,
                "created_at": order.created_at,
                "completed_at": order.completed_at,
            }
            for order, email in result.all()
        ]

    async def _users_rows(self) -> List[dict]:
        result = await self.session.execute(select(User).order_by(User.created_at))
        return [
            {
                "name": user.name,
                "email": user.email,
                "role": user.role,
                "is_active": user.is_active,
                "created_at": user.created_at,
                "last_login_at": user.last_login_at,
            }
            for user in result.scalars().all()
        ]

    async def _products_rows(self) -> List[dict]:
        result = await self.session.execute(select(Product).order_by(Product.name))
        return [
            {
                "name": product.name,
                "slug": product.slug,
                "category": product.category.name if product.category else None,
                "price": product.price,
                "is_active": product.is_active,
                "formats": ";".join(sorted((product.formats or {}).keys())),
                "view_count": product.view_count,
                "download_count": product.download_count,
                "created_at": product.created_at,
            }
            for product in result.scalars().all()
        ]
