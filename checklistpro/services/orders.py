"""
Order Workflow

Checkout, the order status state machine, and payment settlement.

Checkout never trusts client prices: every line is re-priced from the live
catalog before totals are computed, and totals are fixed at creation. The
payment reference is persisted before the provider is called and doubles as
the provider's idempotency key.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
import uuid

import structlog
from sqlalchemy.exc import IntegrityError

from checklistpro.config import get_settings
from checklistpro.database.models import Order, OrderItem, OrderStatus, utcnow
from checklistpro.database.repositories import OrderRepository, Page, ProductRepository
from checklistpro.errors import (
    AppError,
    ForbiddenError,
    InvalidCart,
    InvalidTransition,
    NotFoundError,
    OrderCreationFailed,
    PaymentError,
)
from checklistpro.services.cart import Cart, CartLine
from checklistpro.services.payments import PaymentEvent, PaymentGateway, PaymentResult, PaymentStatus
from checklistpro.serving.metrics import ORDERS_CREATED, PAYMENT_OUTCOMES

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move order from {current.value} to {target.value}",
            details=[{"from": current.value, "to": target.value}],
        )


def compute_tax(subtotal: Decimal, rate: Decimal) -> Decimal:
    """Tax rounded half-up to cents"""
    return (subtotal * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"CP-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def payment_reference_for(order: Order) -> str:
    return f"ord_{order.id.hex}"


def payment_metadata(order: Order) -> Dict[str, str]:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "payment_reference": payment_reference_for(order),
    }


class OrderWorkflow:
    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        gateway: PaymentGateway,
        tax_rate: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ):
        settings = get_settings()
        self.orders = orders
        self.products = products
        self.gateway = gateway
        self.tax_rate = settings.payments.tax_rate if tax_rate is None else tax_rate
        self.currency = currency or settings.payments.currency

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    async def create_order(
        self,
        user_id: uuid.UUID,
        lines: Iterable[CartLine],
        payment_method: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Order:
        """
        Create an order from a cart snapshot and, when a payment method is
        given, charge it.

        Raises:
            InvalidCart: A product is missing or disabled; nothing is persisted
            PaymentError: The charge was declined (402) or the provider failed (500)
            OrderCreationFailed: Any unexpected failure after validation
        """
        if idempotency_key:
            existing = await self.orders.get_by_idempotency_key(user_id, idempotency_key)
            if existing is not None:
                logger.info(
                    "Returning existing order for idempotency key",
                    order_id=str(existing.id),
                    user_id=str(user_id),
                )
                return existing

        cart = Cart.from_lines(lines)
        if not cart:
            raise InvalidCart("Cart is empty")

        order = await self._price(user_id, cart, payment_method, idempotency_key)

        try:
            placed = await self._place(order, user_id, payment_method, idempotency_key)
        except AppError:
            raise
        except Exception as e:
            logger.exception(
                "Order creation failed",
                order_id=str(order.id),
                user_id=str(user_id),
                payment_reference=order.payment_reference,
            )
            raise OrderCreationFailed() from e

        ORDERS_CREATED.labels(status=placed.status.value).inc()
        return placed

    async def _price(
        self,
        user_id: uuid.UUID,
        cart: Cart,
        payment_method: Optional[str],
        idempotency_key: Optional[str],
    ) -> Order:
        """Build an unsaved order priced from the live catalog"""
        lines = cart.lines()
        catalog = await self.products.get_many(line.product_id for line in lines)

        unavailable = [
            {"product_id": str(line.product_id), "message": "Product is not available"}
            for line in lines
            if line.product_id not in catalog or not catalog[line.product_id].is_active
        ]
        if unavailable:
            logger.info("Rejected cart with unavailable products", user_id=str(user_id), count=len(unavailable))
            raise InvalidCart(details=unavailable)

        items: List[OrderItem] = []
        subtotal = Decimal("0")
        for position, line in enumerate(lines):
            product = catalog[line.product_id]
            unit_price = Decimal(product.price).quantize(CENT)
            line_total = unit_price * line.quantity
            subtotal += line_total
            items.append(
                OrderItem(
                    id=uuid.uuid4(),
                    product_id=product.id,
                    position=position,
                    product_name=product.name,
                    product_slug=product.slug,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    line_total=line_total,
                )
            )

        tax_amount = compute_tax(subtotal, self.tax_rate)
        return Order(
            id=uuid.uuid4(),
            order_number=generate_order_number(),
            user_id=user_id,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            tax_rate=self.tax_rate,
            tax_amount=tax_amount,
            total_amount=subtotal + tax_amount,
            currency=self.currency,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
            items=items,
        )

    async def _place(
        self,
        order: Order,
        user_id: uuid.UUID,
        payment_method: Optional[str],
        idempotency_key: Optional[str],
    ) -> Order:
        try:
            await self.orders.add(order)
            await self.orders.add_event(order, None, OrderStatus.PENDING, actor_id=user_id, reason="Order placed")
            await self.orders.commit()
        except IntegrityError:
            if not idempotency_key:
                raise
            # Lost a race with a concurrent request carrying the same key
            await self.orders.session.rollback()
            existing = await self.orders.get_by_idempotency_key(user_id, idempotency_key)
            if existing is None:
                raise
            return existing

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=str(user_id),
            total=str(order.total_amount),
        )

        if order.total_amount == 0:
            await self._move(order, OrderStatus.PROCESSING, reason="No payment required")
            await self._move(order, OrderStatus.COMPLETED, reason="No payment required")
            await self.orders.commit()
            return order

        if not payment_method:
            return order

        return await self._charge(order, user_id, payment_method)

    async def _charge(self, order: Order, user_id: uuid.UUID, payment_method: str) -> Order:
        reference = payment_reference_for(order)
        order.payment_reference = reference
        logger.info(
            "Charging order",
            order_id=str(order.id),
            user_id=str(user_id),
            payment_reference=reference,
            amount=str(order.total_amount),
        )
        await self._move(order, OrderStatus.PROCESSING, reason="Payment started")
        await self.orders.commit()

        try:
            result = await self.gateway.charge(
                amount=order.total_amount,
                currency=order.currency,
                payment_method=payment_method,
                reference=reference,
                metadata=payment_metadata(order),
            )
        except PaymentError as e:
            logger.error(
                "Payment provider failure",
                order_id=str(order.id),
                user_id=str(user_id),
                payment_reference=reference,
                error=e.message,
            )
            PAYMENT_OUTCOMES.labels(outcome="provider_error").inc()
            await self._fail(order, e.message)
            raise

        return await self._settle(order, result)

    async def _settle(self, order: Order, result: PaymentResult) -> Order:
        if result.payment_id:
            order.payment_id = result.payment_id

        if result.status == PaymentStatus.SUCCEEDED:
            PAYMENT_OUTCOMES.labels(outcome="succeeded").inc()
            await self._move(order, OrderStatus.COMPLETED, reason="Payment succeeded")
            await self.orders.commit()
            logger.info("Order completed", order_id=str(order.id), payment_id=order.payment_id)
            return order

        if result.status == PaymentStatus.REQUIRES_ACTION:
            PAYMENT_OUTCOMES.labels(outcome="requires_action").inc()
            await self.orders.commit()
            logger.info("Payment requires further action", order_id=str(order.id), payment_id=order.payment_id)
            return order

        message = result.failure_message or "Payment declined"
        PAYMENT_OUTCOMES.labels(outcome="declined").inc()
        logger.info(
            "Payment declined",
            order_id=str(order.id),
            user_id=str(order.user_id),
            payment_reference=order.payment_reference,
        )
        await self._fail(order, message)
        raise PaymentError(message, details=[{"order_id": str(order.id)}], declined=True)

    async def _fail(self, order: Order, reason: str) -> None:
        order.failure_reason = reason[:500]
        await self._move(order, OrderStatus.CANCELLED, reason="Payment failed")
        await self.orders.commit()

    async def _move(
        self,
        order: Order,
        target: OrderStatus,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> None:
        current = order.status
        check_transition(current, target)
        order.status = target
        if target == OrderStatus.COMPLETED:
            order.completed_at = utcnow()
        await self.orders.add_event(order, current, target, actor_id=actor_id, reason=reason)

    # -------------------------------------------------------------------------
    # Status management
    # -------------------------------------------------------------------------

    async def transition(
        self,
        order_id: uuid.UUID,
        status: OrderStatus,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """Admin status change, validated against the state machine"""
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")

        previous = order.status
        await self._move(order, status, actor_id=actor_id, reason=reason)
        await self.orders.commit()
        logger.info(
            "Order status changed",
            order_id=str(order.id),
            from_status=previous.value,
            to_status=status.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return order

    async def cancel_order(self, user_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = await self.get_order(order_id, user_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Order is already {order.status.value}")
        await self._move(order, OrderStatus.CANCELLED, actor_id=user_id, reason="Cancelled by customer")
        await self.orders.commit()
        logger.info("Order cancelled by customer", order_id=str(order.id), user_id=str(user_id))
        return order

    # -------------------------------------------------------------------------
    # Two-step payment
    # -------------------------------------------------------------------------

    async def start_payment(self, user_id: uuid.UUID, order_id: uuid.UUID) -> Tuple[Order, PaymentResult]:
        """Create a provider intent for a pending order"""
        order = await self.get_order(order_id, user_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(f"Order is {order.status.value}; payment can only start on pending orders")

        reference = payment_reference_for(order)
        order.payment_reference = reference
        await self.orders.commit()
        logger.info("Creating payment intent", order_id=str(order.id), user_id=str(user_id), payment_reference=reference)

        result = await self.gateway.create_intent(
            amount=order.total_amount,
            currency=order.currency,
            reference=reference,
            metadata=payment_metadata(order),
        )
        order.payment_id = result.payment_id
        await self._move(order, OrderStatus.PROCESSING, actor_id=user_id, reason="Payment intent created")
        await self.orders.commit()
        return order, result

    async def apply_payment_event(self, event: PaymentEvent) -> Optional[Order]:
        """Settle an order from a provider webhook; repeated events are no-ops"""
        order = await self._order_for_event(event)
        if order is None:
            logger.warning(
                "Webhook for unknown order",
                payment_id=event.payment_id,
                order_id=event.order_id,
                payment_reference=event.payment_reference,
            )
            return None

        if order.status == OrderStatus.CANCELLED and event.status == PaymentStatus.SUCCEEDED:
            # Captured after the order was cancelled; needs a refund or manual completion
            PAYMENT_OUTCOMES.labels(outcome="orphaned").inc()
            logger.error(
                "Payment captured for cancelled order",
                order_id=str(order.id),
                user_id=str(order.user_id),
                payment_reference=order.payment_reference or event.payment_reference,
                payment_id=event.payment_id,
            )
            return order

        if order.status in TERMINAL_STATUSES:
            logger.info("Webhook for settled order ignored", order_id=str(order.id), status=order.status.value)
            return order

        order.payment_id = order.payment_id or event.payment_id
        if event.status == PaymentStatus.SUCCEEDED:
            PAYMENT_OUTCOMES.labels(outcome="succeeded").inc()
            if order.status == OrderStatus.PENDING:
                await self._move(order, OrderStatus.PROCESSING, reason="Payment confirmed")
            await self._move(order, OrderStatus.COMPLETED, reason="Payment confirmed")
        elif event.status == PaymentStatus.FAILED:
            PAYMENT_OUTCOMES.labels(outcome="declined").inc()
            order.failure_reason = (event.failure_message or "Payment failed")[:500]
            await self._move(order, OrderStatus.CANCELLED, reason="Payment failed")
        else:
            return order

        await self.orders.commit()
        logger.info("Order settled from webhook", order_id=str(order.id), status=order.status.value)
        return order

    async def _order_for_event(self, event: PaymentEvent) -> Optional[Order]:
        """Match by provider id, then by our payment reference, then by order id"""
        order = await self.orders.get_by_payment_id(event.payment_id)
        if order is None and event.payment_reference:
            order = await self.orders.get_by_payment_reference(event.payment_reference)
        if order is None and event.order_id:
            try:
                order = await self.orders.get(uuid.UUID(event.order_id))
            except ValueError:
                order = None
        return order

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, user_id: uuid.UUID, is_admin: bool = False) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.user_id != user_id and not is_admin:
            raise ForbiddenError("You do not have access to this order")
        return order

    async def list_orders(
        self,
        user_id: uuid.UUID,
        page: Page,
        status: Optional[OrderStatus] = None,
    ) -> Tuple[List[Order], int]:
        return await self.orders.list(page, user_id=user_id, status=status)

    async def list_all_orders(
        self,
        page: Page,
        status: Optional[OrderStatus] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Order], int]:
        return await self.orders.list(page, user_id=user_id, status=status)
