"""
Unit Tests - Order Workflow
"""
from decimal import Decimal
import re
import uuid

from prometheus_client import REGISTRY
import pytest
from sqlalchemy import func, select

from checklistpro.database.connection import get_db
from checklistpro.database.models import Order, OrderStatus, UserRole
from checklistpro.database.repositories import OrderRepository, Page, ProductRepository
from checklistpro.errors import (
    ForbiddenError,
    InvalidCart,
    InvalidTransition,
    NotFoundError,
    OrderCreationFailed,
    PaymentError,
)
from checklistpro.services.cart import CartLine
from checklistpro.services.orders import (
    OrderWorkflow,
    check_transition,
    compute_tax,
    generate_order_number,
)
from checklistpro.services.payments import PaymentEvent, PaymentStatus

from conftest import FakeGateway, make_product, make_user


def workflow_for(session, gateway=None) -> OrderWorkflow:
    return OrderWorkflow(
        OrderRepository(session),
        ProductRepository(session),
        gateway or FakeGateway(),
        tax_rate=Decimal("0.08"),
        currency="usd",
    )


async def load_order(order_id: uuid.UUID) -> Order:
    async with get_db() as db:
        return await db.get(Order, order_id)


async def count_orders() -> int:
    async with get_db() as db:
        return (await db.execute(select(func.count(Order.id)))).scalar()


class TestPricing:
    """Tests for pure pricing helpers"""

    def test_tax_rounds_half_up(self):
        """Test half-cent tax rounds up"""
        assert compute_tax(Decimal("0.3125"), Decimal("0.08")) == Decimal("0.03")
        assert compute_tax(Decimal("20.00"), Decimal("0.08")) == Decimal("1.60")

    def test_order_number_format(self):
        """Test order numbers carry the date and a random suffix"""
        number = generate_order_number()
        assert re.fullmatch(r"CP-\d{8}-[0-9A-F]{8}", number)
        assert generate_order_number() != number


class TestStateMachine:
    """Tests for order status transitions"""

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.PROCESSING, OrderStatus.COMPLETED),
        (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    ])
    def test_allowed(self, current, target):
        """Test allowed transitions pass"""
        check_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.COMPLETED),
        (OrderStatus.COMPLETED, OrderStatus.CANCELLED),
        (OrderStatus.COMPLETED, OrderStatus.PENDING),
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.PENDING),
    ])
    def test_rejected(self, current, target):
        """Test terminal states and skips are rejected"""
        with pytest.raises(InvalidTransition):
            check_transition(current, target)


@pytest.mark.usefixtures("database")
class TestCreateOrder:
    """Tests for checkout"""

    async def test_totals_use_catalog_prices(self):
        """Test client-supplied prices are ignored"""
        user = await make_user()
        product = await make_product(price="10.00")

        async with get_db() as session:
            order = await workflow_for(session).create_order(
                user.id,
                [CartLine(product_id=product.id, quantity=2, unit_price=Decimal("0.01"))],
            )

        stored = await load_order(order.id)
        assert stored.status == OrderStatus.PENDING
        assert stored.subtotal == Decimal("20.00")
        assert stored.tax_amount == Decimal("1.60")
        assert stored.total_amount == Decimal("21.60")
        assert stored.items[0].unit_price == Decimal("10.00")
        assert stored.items[0].product_name == product.name
        assert stored.item_count == 2

    async def test_empty_cart_rejected(self):
        """Test an empty cart cannot be checked out"""
        user = await make_user()

        async with get_db() as session:
            with pytest.raises(InvalidCart):
                await workflow_for(session).create_order(user.id, [])

    async def test_unavailable_products_rejected(self):
        """Test missing and disabled products abort checkout"""
        user = await make_user()
        live = await make_product()
        disabled = await make_product(is_active=False)
        missing_id = uuid.uuid4()

        async with get_db() as session:
            with pytest.raises(InvalidCart) as exc_info:
                await workflow_for(session).create_order(
                    user.id,
                    [
                        CartLine(product_id=live.id, quantity=1),
                        CartLine(product_id=disabled.id, quantity=1),
                        CartLine(product_id=missing_id, quantity=1),
                    ],
                )

        rejected = {detail["product_id"] for detail in exc_info.value.details}
        assert rejected == {str(disabled.id), str(missing_id)}
        assert await count_orders() == 0

    async def test_successful_charge_completes_order(self):
        """Test a successful charge completes the order"""
        user = await make_user()
        product = await make_product(price="10.00")
        gateway = FakeGateway("succeeded")

        async with get_db() as session:
            order = await workflow_for(session, gateway).create_order(
                user.id, [CartLine(product_id=product.id, quantity=2)], payment_method="pm_card_visa"
            )

        stored = await load_order(order.id)
        assert stored.status == OrderStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.payment_reference == f"ord_{order.id.hex}"
        assert stored.payment_id == "pi_1"

        charge = gateway.charges[0]
        assert charge["amount"] == Decimal("21.60")
        assert charge["reference"] == stored.payment_reference
        assert charge["metadata"]["order_id"] == str(order.id)
        assert charge["metadata"]["payment_reference"] == stored.payment_reference

        async with get_db() as session:
            events = await OrderRepository(session).events(order.id)
        assert {(e.from_status, e.to_status) for e in events} == {
            (None, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.COMPLETED),
        }

    async def test_declined_charge_cancels_order(self):
        """Test a decline cancels the order and surfaces a 402"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            with pytest.raises(PaymentError) as exc_info:
                await workflow_for(session, FakeGateway("failed")).create_order(
                    user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_card_declined"
                )

        assert exc_info.value.status_code == 402
        order_id = uuid.UUID(exc_info.value.details[0]["order_id"])
        stored = await load_order(order_id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.failure_reason == "Card declined"

    async def test_provider_error_cancels_order(self):
        """Test a provider fault cancels the order and surfaces a 500"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            with pytest.raises(PaymentError) as exc_info:
                await workflow_for(session, FakeGateway("error")).create_order(
                    user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_card_visa"
                )

        assert exc_info.value.status_code == 500
        async with get_db() as session:
            orders, total = await OrderRepository(session).list(Page(), user_id=user.id)
        assert total == 1
        assert orders[0].status == OrderStatus.CANCELLED

    async def test_unexpected_failure_is_wrapped(self):
        """Test unexpected errors become OrderCreationFailed"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            with pytest.raises(OrderCreationFailed):
                await workflow_for(session, FakeGateway("explode")).create_order(
                    user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_card_visa"
                )

    async def test_requires_action_leaves_order_processing(self):
        """Test a charge needing customer action waits for the webhook"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            order = await workflow_for(session, FakeGateway("requires_action")).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_3ds"
            )

        stored = await load_order(order.id)
        assert stored.status == OrderStatus.PROCESSING
        assert stored.payment_id == "pi_1"

    async def test_free_order_completes_without_charge(self):
        """Test zero-total orders complete immediately"""
        user = await make_user()
        product = await make_product(price="0.00")
        gateway = FakeGateway()

        async with get_db() as session:
            order = await workflow_for(session, gateway).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_card_visa"
            )

        assert order.status == OrderStatus.COMPLETED
        assert gateway.charges == []

    async def test_idempotency_key_returns_existing_order(self):
        """Test retried checkouts do not create or charge twice"""
        user = await make_user()
        product = await make_product()
        gateway = FakeGateway()

        async with get_db() as session:
            first = await workflow_for(session, gateway).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)],
                payment_method="pm_card_visa", idempotency_key="checkout-1",
            )
        async with get_db() as session:
            second = await workflow_for(session, gateway).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)],
                payment_method="pm_card_visa", idempotency_key="checkout-1",
            )

        assert first.id == second.id
        assert len(gateway.charges) == 1
        assert await count_orders() == 1


@pytest.mark.usefixtures("database")
class TestStatusManagement:
    """Tests for admin transitions and customer cancellation"""

    async def _pending_order(self, user):
        product = await make_product()
        async with get_db() as session:
            return await workflow_for(session).create_order(user.id, [CartLine(product_id=product.id, quantity=1)])

    async def test_admin_moves_order_to_completed(self):
        """Test processing then completed is allowed"""
        user = await make_user()
        admin = await make_user(role=UserRole.ADMIN)
        order = await self._pending_order(user)

        async with get_db() as session:
            workflow = workflow_for(session)
            await workflow.transition(order.id, OrderStatus.PROCESSING, actor_id=admin.id)
            updated = await workflow.transition(order.id, OrderStatus.COMPLETED, actor_id=admin.id)

        assert updated.status == OrderStatus.COMPLETED
        assert updated.completed_at is not None

        async with get_db() as session:
            with pytest.raises(InvalidTransition):
                await workflow_for(session).transition(order.id, OrderStatus.CANCELLED, actor_id=admin.id)

    async def test_transition_unknown_order(self):
        """Test transitioning a missing order"""
        async with get_db() as session:
            with pytest.raises(NotFoundError):
                await workflow_for(session).transition(uuid.uuid4(), OrderStatus.PROCESSING)

    async def test_owner_cancels_pending_order(self):
        """Test a customer can cancel their own open order once"""
        user = await make_user()
        order = await self._pending_order(user)

        async with get_db() as session:
            cancelled = await workflow_for(session).cancel_order(user.id, order.id)
        assert cancelled.status == OrderStatus.CANCELLED

        async with get_db() as session:
            with pytest.raises(InvalidTransition):
                await workflow_for(session).cancel_order(user.id, order.id)

    async def test_other_users_cannot_touch_order(self):
        """Test orders are private to their owner"""
        owner = await make_user()
        stranger = await make_user()
        order = await self._pending_order(owner)

        async with get_db() as session:
            workflow = workflow_for(session)
            with pytest.raises(ForbiddenError):
                await workflow.get_order(order.id, stranger.id)
            with pytest.raises(ForbiddenError):
                await workflow.cancel_order(stranger.id, order.id)
            assert (await workflow.get_order(order.id, stranger.id, is_admin=True)).id == order.id
            with pytest.raises(NotFoundError):
                await workflow.get_order(uuid.uuid4(), owner.id)

    async def test_list_orders_scoped_to_user(self):
        """Test order history only shows the caller's orders"""
        first = await make_user()
        second = await make_user()
        await self._pending_order(first)
        await self._pending_order(first)
        await self._pending_order(second)

        async with get_db() as session:
            workflow = workflow_for(session)
            mine, total = await workflow.list_orders(first.id, Page())
            everything, all_total = await workflow.list_all_orders(Page())

        assert total == 2
        assert all(order.user_id == first.id for order in mine)
        assert all_total == 3


@pytest.mark.usefixtures("database")
class TestPaymentSettlement:
    """Tests for the intent and webhook flow"""

    async def test_intent_then_webhook_completes_order(self):
        """Test a confirmed intent completes the order and replays are ignored"""
        user = await make_user()
        product = await make_product()
        gateway = FakeGateway()

        async with get_db() as session:
            order = await workflow_for(session, gateway).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)]
            )
        async with get_db() as session:
            started, result = await workflow_for(session, gateway).start_payment(user.id, order.id)

        assert started.status == OrderStatus.PROCESSING
        assert result.client_secret == "pi_intent_1_secret"
        assert gateway.intents[0]["reference"] == f"ord_{order.id.hex}"

        event = PaymentEvent(status=PaymentStatus.SUCCEEDED, payment_id=result.payment_id)
        async with get_db() as session:
            settled = await workflow_for(session, gateway).apply_payment_event(event)
        assert settled.status == OrderStatus.COMPLETED

        async with get_db() as session:
            replay = await workflow_for(session, gateway).apply_payment_event(
                PaymentEvent(status=PaymentStatus.FAILED, payment_id=result.payment_id)
            )
        assert replay.status == OrderStatus.COMPLETED
        assert (await load_order(order.id)).status == OrderStatus.COMPLETED

    async def test_failed_webhook_cancels_order(self):
        """Test a failed payment event cancels by order id metadata"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            order = await workflow_for(session).create_order(user.id, [CartLine(product_id=product.id, quantity=1)])

        event = PaymentEvent(
            status=PaymentStatus.FAILED,
            payment_id="pi_unknown",
            order_id=str(order.id),
            failure_message="Insufficient funds",
        )
        async with get_db() as session:
            settled = await workflow_for(session).apply_payment_event(event)

        assert settled.status == OrderStatus.CANCELLED
        assert settled.failure_reason == "Insufficient funds"

    async def test_webhook_for_unknown_order(self):
        """Test events for unknown payments are ignored"""
        async with get_db() as session:
            result = await workflow_for(session).apply_payment_event(
                PaymentEvent(status=PaymentStatus.SUCCEEDED, payment_id="pi_missing", order_id="not-a-uuid")
            )
        assert result is None

    async def test_payment_only_starts_on_pending_orders(self):
        """Test intents cannot be created for settled orders"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            order = await workflow_for(session).create_order(
                user.id, [CartLine(product_id=product.id, quantity=1)], payment_method="pm_card_visa"
            )
        async with get_db() as session:
            with pytest.raises(InvalidTransition):
                await workflow_for(session).start_payment(user.id, order.id)

    async def test_webhook_matched_by_payment_reference(self):
        """Test events carrying only our reference still settle the order"""
        user = await make_user()
        product = await make_product()

        async with get_db() as session:
            order = await workflow_for(session).create_order(user.id, [CartLine(product_id=product.id, quantity=1)])
        async with get_db() as session:
            await workflow_for(session).start_payment(user.id, order.id)

        event = PaymentEvent(
            status=PaymentStatus.SUCCEEDED,
            payment_id="pi_from_another_attempt",
            payment_reference=f"ord_{order.id.hex}",
        )
        async with get_db() as session:
            settled = await workflow_for(session).apply_payment_event(event)

        assert settled.id == order.id
        assert settled.status == OrderStatus.COMPLETED

    async def test_capture_after_cancellation_is_flagged(self):
        """Test a success webhook for a cancelled order is counted and left cancelled"""
        user = await make_user()
        product = await make_product()
        before = REGISTRY.get_sample_value("checklistpro_payment_outcomes_total", {"outcome": "orphaned"}) or 0

        async with get_db() as session:
            order = await workflow_for(session).create_order(user.id, [CartLine(product_id=product.id, quantity=1)])
        async with get_db() as session:
            _, result = await workflow_for(session).start_payment(user.id, order.id)
        async with get_db() as session:
            await workflow_for(session).cancel_order(user.id, order.id)

        async with get_db() as session:
            settled = await workflow_for(session).apply_payment_event(
                PaymentEvent(status=PaymentStatus.SUCCEEDED, payment_id=result.payment_id)
            )

        after = REGISTRY.get_sample_value("checklistpro_payment_outcomes_total", {"outcome": "orphaned"})
        assert settled.status == OrderStatus.CANCELLED
        assert after == before + 1
        assert (await load_order(order.id)).status == OrderStatus.CANCELLED
