"""
Payments API Endpoints

Two-step payment flow: the client creates an intent for a pending order and
confirms it with the provider; the provider's webhook settles the order.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
import structlog

from checklistpro.database.models import User
from checklistpro.serving.api.dependencies import get_current_user, get_order_workflow
from checklistpro.serving.api.schemas import OrderOut
from checklistpro.serving.cache import analytics_cache
from checklistpro.services.orders import OrderWorkflow
from checklistpro.services.payments import PaymentGateway, get_payment_gateway

router = APIRouter()
logger = structlog.get_logger(__name__)


class IntentRequest(BaseModel):
    order_id: UUID


class IntentResponse(BaseModel):
    client_secret: Optional[str]
    payment_id: Optional[str]
    order: OrderOut


class WebhookAck(BaseModel):
    received: bool = True
    order_id: Optional[UUID] = None


@router.post("/create-intent", response_model=IntentResponse)
async def create_intent(
    body: IntentRequest,
    user: User = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> IntentResponse:
    order, result = await workflow.start_payment(user.id, body.order_id)
    return IntentResponse(
        client_secret=result.client_secret,
        payment_id=result.payment_id,
        order=OrderOut.model_validate(order),
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> WebhookAck:
    """
    Provider webhook. Unknown event types are acknowledged and ignored.
    """
    payload = await request.body()
    event = gateway.parse_webhook(payload, stripe_signature)
    if event is None:
        return WebhookAck()

    logger.info("Payment webhook received", payment_id=event.payment_id, status=event.status)
    order = await workflow.apply_payment_event(event)
    await analytics_cache.invalidate_all()
    return WebhookAck(order_id=order.id if order else None)
