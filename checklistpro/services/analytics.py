"""
Analytics Service

Read-only aggregations for the admin dashboard. Revenue only counts
completed orders. Client-side events are logged and counted, not stored.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from checklistpro.database.models import Order, OrderItem, OrderStatus, Product, User, UserRole
from checklistpro.serving.metrics import CLIENT_EVENTS

logger = structlog.get_logger(__name__)


@dataclass
class Overview:
    total_orders: int
    completed_orders: int
    pending_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    total_users: int
    total_products: int
    active_products: int
    total_downloads: int
    total_views: int


@dataclass
class DailyRevenue:
    day: date
    revenue: Decimal
    orders: int


@dataclass
class RevenueTrend:
    start_date: date
    end_date: date
    data: List[DailyRevenue]
    total_revenue: Decimal
    total_orders: int


@dataclass
class ProductStats:
    product_id: str
    name: str
    slug: str
    is_active: bool
    views: int
    downloads: int
    units_sold: int
    revenue: Decimal
    conversion_rate: Optional[float]


@dataclass
class UserStats:
    total_users: int
    active_users: int
    new_users_30d: int
    purchasing_users: int
    by_role: Dict[str, int] = field(default_factory=dict)


def _as_date(value) -> date:
    # SQLite returns date() as text
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def _day_bounds(start: date, end: date):
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


class AnalyticsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def overview(self) -> Overview:
        orders = (
            await self.session.execute(
                select(
                    func.count(Order.id).label("orders"),
                    func.count(Order.id).filter(Order.status == OrderStatus.COMPLETED).label("completed"),
                    func.count(Order.id).filter(Order.status == OrderStatus.PENDING).label("pending"),
                    func.coalesce(
                        func.sum(Order.total_amount).filter(Order.status == OrderStatus.COMPLETED), 0
                    ).label("revenue"),
                )
            )
        ).one()

        products = (
            await self.session.execute(
                select(
                    func.count(Product.id).label("products"),
                    func.count(Product.id).filter(Product.is_active.is_(True)).label("active"),
                    func.coalesce(func.sum(Product.download_count), 0).label("downloads"),
                    func.coalesce(func.sum(Product.view_count), 0).label("views"),
                )
            )
        ).one()

        users = (await self.session.execute(select(func.count(User.id)))).scalar() or 0

        revenue = Decimal(str(orders.revenue or 0)).quantize(Decimal("0.01"))
        completed = orders.completed or 0
        aov = (revenue / completed).quantize(Decimal("0.01")) if completed else Decimal("0.00")

        logger.debug("Overview computed", orders=orders.orders, revenue=str(revenue))
        return Overview(
            total_orders=orders.orders or 0,
            completed_orders=completed,
            pending_orders=orders.pending or 0,
            total_revenue=revenue,
            average_order_value=aov,
            total_users=users,
            total_products=products.products or 0,
            active_products=products.active or 0,
            total_downloads=int(products.downloads or 0),
            total_views=int(products.views or 0),
        )

    async def revenue_trend(self, start_date: date, end_date: date) -> RevenueTrend:
        """Completed-order revenue per day, zero-filled across the range"""
        lower, upper = _day_bounds(start_date, end_date)
        day = func.date(Order.completed_at)

        result = await self.session.execute(
            select(
                day.label("day"),
                func.sum(Order.total_amount).label("revenue"),
                func.count(Order.id).label("orders"),
            )
            .where(
                and_(
                    Order.status == OrderStatus.COMPLETED,
                    Order.completed_at >= lower,
                    Order.completed_at < upper,
                )
            )
            .group_by(day)
        )
        by_day = {
            _as_date(row.day): (Decimal(str(row.revenue or 0)).quantize(Decimal("0.01")), row.orders)
            for row in result.all()
        }

        data: List[DailyRevenue] = []
        current = start_date
        while current <= end_date:
            revenue, count = by_day.get(current, (Decimal("0.00"), 0))
            data.append(DailyRevenue(day=current, revenue=revenue, orders=count))
            current += timedelta(days=1)

        return RevenueTrend(
            start_date=start_date,
            end_date=end_date,
            data=data,
            total_revenue=sum((point.revenue for point in data), Decimal("0.00")),
            total_orders=sum(point.orders for point in data),
        )

    async def product_stats(self, limit: int = 50) -> List[ProductStats]:
        sales = (
            select(
                OrderItem.product_id.label("product_id"),
                func.sum(OrderItem.quantity).label("units"),
                func.sum(OrderItem.line_total).label("revenue"),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.status == OrderStatus.COMPLETED)
            .group_by(OrderItem.product_id)
            .subquery()
        )

        result = await self.session.execute(
            select(
                Product,
                func.coalesce(sales.c.units, 0).label("units"),
                func.coalesce(sales.c.revenue, 0).label("revenue"),
            )
            .outerjoin(sales, sales.c.product_id == Product.id)
            .order_by(func.coalesce(sales.c.revenue, 0).desc(), Product.download_count.desc(), Product.name)
            .limit(limit)
        )

        stats = []
        for product, units, revenue in result.all():
            views = product.view_count or 0
            stats.append(
                ProductStats(
                    product_id=str(product.id),
                    name=product.name,
                    slug=product.slug,
                    is_active=product.is_active,
                    views=views,
                    downloads=product.download_count or 0,
                    units_sold=int(units or 0),
                    revenue=Decimal(str(revenue or 0)).quantize(Decimal("0.01")),
                    conversion_rate=round(int(units or 0) / views, 4) if views else None,
                )
            )
        return stats

    async def user_stats(self) -> UserStats:
        since = datetime.now(timezone.utc) - timedelta(days=30)
        totals = (
            await self.session.execute(
                select(
                    func.count(User.id).label("total"),
                    func.count(User.id).filter(User.is_active.is_(True)).label("active"),
                    func.count(User.id).filter(User.created_at >= since).label("recent"),
                )
            )
        ).one()

        roles = await self.session.execute(select(User.role, func.count(User.id)).group_by(User.role))
        by_role = {role.value: 0 for role in UserRole}
        for role, count in roles.all():
            by_role[role.value if isinstance(role, UserRole) else str(role)] = count

        purchasing = (
            await self.session.execute(
                select(func.count(func.distinct(Order.user_id))).where(Order.status == OrderStatus.COMPLETED)
            )
        ).scalar() or 0

        return UserStats(
            total_users=totals.total or 0,
            active_users=totals.active or 0,
            new_users_30d=totals.recent or 0,
            purchasing_users=purchasing,
            by_role=by_role,
        )


def record_event(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    user_id: Optional[uuid.UUID] = None,
    occurred_at: Optional[datetime] = None,
) -> None:
    """
    Record a client-side event as a structured log line and a counter.

    Best-effort: failures are logged and never reach the caller.
    """
    try:
        CLIENT_EVENTS.inc()
        logger.info(
            "Client event",
            event=name,
            user_id=str(user_id) if user_id else None,
            occurred_at=occurred_at.isoformat() if occurred_at else None,
            data=data or {},
        )
    except Exception as e:
        logger.warning("Event tracking failed", event=name, error=str(e))
