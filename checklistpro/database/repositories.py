"""
Repositories

Thin data-access classes over an injected AsyncSession. Services depend on
these rather than on a process-wide session, so tests can hand them a session
bound to a throwaway database.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import uuid

from sqlalchemy import String, and_, cast, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from checklistpro.database.models import (
    Category,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusEvent,
    Product,
    User,
    UserRole,
)


# =============================================================================
# QUERY OBJECTS
# =============================================================================

@dataclass
class ProductFilter:
    """Catalog listing filter"""
    category_slug: Optional[str] = None
    search: Optional[str] = None
    featured: Optional[bool] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    sort: str = "newest"
    include_inactive: bool = False


@dataclass
class Page:
    """Pagination window"""
    page: int = 1
    page_size: int = 12

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


SORT_COLUMNS = {
    "newest": (Product.created_at.desc(),),
    "popular": (Product.download_count.desc(), Product.created_at.desc()),
    "price": (Product.price.asc(),),
    "price_desc": (Product.price.desc(),),
    "rating": (Product.rating_average.desc(), Product.rating_count.desc()),
    "name": (Product.name.asc(),),
}


# =============================================================================
# CATALOG
# =============================================================================

class CategoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, category_id: uuid.UUID) -> Optional[Category]:
        return await self.session.get(Category, category_id)

    async def get_by_slug(self, slug: str) -> Optional[Category]:
        result = await self.session.execute(select(Category).where(Category.slug == slug))
        return result.scalar_one_or_none()

    async def list_with_counts(self, include_inactive: bool = False) -> List[Tuple[Category, int]]:
        """Categories with the number of active products in each"""
        product_count = (
            select(func.count(Product.id))
            .where(and_(Product.category_id == Category.id, Product.is_active.is_(True)))
            .correlate(Category)
            .scalar_subquery()
        )
        query = select(Category, product_count.label("product_count")).order_by(Category.name)
        if not include_inactive:
            query = query.where(Category.is_active.is_(True))
        result = await self.session.execute(query)
        return [(row[0], row[1] or 0) for row in result.all()]

    async def count_active_products(self, category_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(Product.id)).where(
                and_(Product.category_id == category_id, Product.is_active.is_(True))
            )
        )
        return result.scalar() or 0

    async def has_products(self, category_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(exists().where(Product.category_id == category_id))
        )
        return bool(result.scalar())

    async def add(self, category: Category) -> Category:
        self.session.add(category)
        await self.session.flush()
        return category

    async def delete(self, category: Category) -> None:
        await self.session.delete(category)
        await self.session.flush()


class ProductRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, product_id: uuid.UUID) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def get_many(self, product_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in result.scalars().all()}

    async def get_by_slug(self, slug: str) -> Optional[Product]:
        result = await self.session.execute(select(Product).where(Product.slug == slug))
        return result.scalar_one_or_none()

    async def slug_exists(self, slug: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        condition = Product.slug == slug
        if exclude_id is not None:
            condition = and_(condition, Product.id != exclude_id)
        result = await self.session.execute(select(exists().where(condition)))
        return bool(result.scalar())

    async def search(self, filters: ProductFilter, page: Page) -> Tuple[List[Product], int]:
        """Filtered, sorted, paginated product listing with total count"""
        conditions = []
        if not filters.include_inactive:
            conditions.append(Product.is_active.is_(True))
        if filters.category_slug:
            conditions.append(
                Product.category_id.in_(
                    select(Category.id).where(Category.slug == filters.category_slug)
                )
            )
        if filters.featured is not None:
            conditions.append(Product.is_featured.is_(filters.featured))
        if filters.min_price is not None:
            conditions.append(Product.price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(Product.price <= filters.max_price)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(Product.name).like(pattern),
                    func.lower(Product.description).like(pattern),
                    # JSON array rendered as text, good enough for tag matching
                    func.lower(cast(Product.tags, String)).like(pattern),
                )
            )

        query = select(Product)
        count_query = select(func.count(Product.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar() or 0

        order_by = SORT_COLUMNS.get(filters.sort, SORT_COLUMNS["newest"])
        query = query.order_by(*order_by, Product.id).offset(page.offset).limit(page.page_size)
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def is_referenced(self, product_id: uuid.UUID) -> bool:
        """True if any order line points at the product"""
        result = await self.session.execute(
            select(exists().where(OrderItem.product_id == product_id))
        )
        return bool(result.scalar())

    async def products_using_file(self, filename: str) -> List[Product]:
        """Products whose formats map points at the stored file"""
        result = await self.session.execute(select(Product))
        return [p for p in result.scalars().all() if filename in (p.formats or {}).values()]

    async def add(self, product: Product) -> Product:
        self.session.add(product)
        await self.session.flush()
        return product

    async def delete(self, product: Product) -> None:
        await self.session.delete(product)
        await self.session.flush()

    async def increment_views(self, product_id: uuid.UUID) -> int:
        """Atomic view counter increment; returns rows touched"""
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(view_count=Product.view_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def increment_downloads(self, product_id: uuid.UUID) -> int:
        """Atomic download counter increment; returns rows touched"""
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(download_count=Product.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# =============================================================================
# ACCOUNTS
# =============================================================================

class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        page: Page,
        role: Optional[UserRole] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[User], int]:
        conditions = []
        if role is not None:
            conditions.append(User.role == role)
        if search:
            pattern = f"%{search.strip().lower()}%"
            conditions.append(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))

        query = select(User)
        count_query = select(func.count(User.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(
            query.order_by(User.created_at.desc(), User.id).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user


# =============================================================================
# ORDERS
# =============================================================================

class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, order_id: uuid.UUID) -> Optional[Order]:
        return await self.session.get(Order, order_id)

    async def get_by_idempotency_key(self, user_id: uuid.UUID, key: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(and_(Order.user_id == user_id, Order.idempotency_key == key))
        )
        return result.scalar_one_or_none()

    async def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.payment_id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.payment_reference == reference))
        return result.scalar_one_or_none()

    async def list(
        self,
        page: Page,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
    ) -> Tuple[List[Order], int]:
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.status == status)

        query = select(Order)
        count_query = select(func.count(Order.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(
            query.order_by(Order.created_at.desc(), Order.id).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def completed_for_user(self, user_id: uuid.UUID) -> Sequence[Order]:
        result = await self.session.execute(
            select(Order)
            .where(and_(Order.user_id == user_id, Order.status == OrderStatus.COMPLETED))
            .order_by(Order.completed_at.desc(), Order.id)
        )
        return result.scalars().all()

    async def add(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_event(
        self,
        order: Order,
        from_status: Optional[OrderStatus],
        to_status: OrderStatus,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> OrderStatusEvent:
        event = OrderStatusEvent(
            order_id=order.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            reason=reason,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def events(self, order_id: uuid.UUID) -> Sequence[OrderStatusEvent]:
        result = await self.session.execute(
            select(OrderStatusEvent)
            .where(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.created_at, OrderStatusEvent.id)
        )
        return result.scalars().all()

    async def commit(self) -> None:
        await self.session.commit()
