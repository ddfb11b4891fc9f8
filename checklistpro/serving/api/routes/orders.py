"""
Orders API Endpoints

Checkout, order history, status management and order-scoped downloads.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
import structlog

from checklistpro.database.models import OrderStatus, User, UserRole
from checklistpro.database.repositories import Page
from checklistpro.serving.api.dependencies import (
    get_current_user,
    get_entitlement_service,
    get_order_workflow,
    require_admin,
)
from checklistpro.serving.api.schemas import DownloadOut, OrderListResponse, OrderOut
from checklistpro.serving.cache import analytics_cache
from checklistpro.serving.metrics import DOWNLOADS_SERVED
from checklistpro.services.cart import CartLine
from checklistpro.services.catalog import record_download
from checklistpro.services.entitlements import DownloadPayload, EntitlementService
from checklistpro.services.orders import OrderWorkflow

router = APIRouter()
downloads_router = APIRouter()
logger = structlog.get_logger(__name__)


class OrderLineIn(BaseModel):
    product_id: UUID
    quantity: int = Field(1, ge=1, le=100)
    # Display price from the client cart; never used for totals
    price: Optional[Decimal] = None


class OrderCreate(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    payment_method: Optional[str] = Field(None, max_length=100)
    idempotency_key: Optional[str] = Field(None, max_length=100)


class StatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


def _download_response(payload: DownloadPayload, product_id: UUID) -> Response:
    # Counted only once the body has gone out
    counter = BackgroundTask(record_download, product_id)
    if payload.path is not None:
        return FileResponse(
            payload.path,
            media_type=payload.media_type,
            filename=payload.filename,
            background=counter,
        )
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
        background=counter,
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderListResponse:
    """
    List the current user's orders, newest first.
    """
    orders, total = await workflow.list_orders(user.id, Page(page=page, page_size=page_size), status=status_filter)
    return OrderListResponse(
        items=[OrderOut.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreate,
    idempotency_header: Optional[str] = Header(None, alias="Idempotency-Key", max_length=100),
    user: User = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderOut:
    """
    Place an order. Prices are taken from the catalog, not from the request.
    """
    order = await workflow.create_order(
        user.id,
        [CartLine(product_id=line.product_id, quantity=line.quantity) for line in body.items],
        payment_method=body.payment_method,
        idempotency_key=body.idempotency_key or idempotency_header,
    )
    await analytics_cache.invalidate_all()
    return OrderOut.model_validate(order)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: UUID,
    user: User = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderOut:
    order = await workflow.get_order(order_id, user.id, is_admin=user.role == UserRole.ADMIN)
    return OrderOut.model_validate(order)


@router.put("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    order_id: UUID,
    body: StatusUpdate,
    admin: User = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderOut:
    """
    Move an order along its status machine (admin only).
    """
    order = await workflow.transition(order_id, body.status, actor_id=admin.id, reason=body.reason)
    await analytics_cache.invalidate_all()
    return OrderOut.model_validate(order)


@router.put("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: UUID,
    user: User = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderOut:
    order = await workflow.cancel_order(user.id, order_id)
    return OrderOut.model_validate(order)


@router.get("/{order_id}/downloads", response_model=List[DownloadOut])
async def list_order_downloads(
    order_id: UUID,
    user: User = Depends(get_current_user),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> List[DownloadOut]:
    entries = await entitlements.list_order_downloads(user.id, order_id)
    return [DownloadOut.model_validate(e) for e in entries]


@router.get("/{order_id}/downloads/{product_id}/{fmt}")
async def download_product(
    order_id: UUID,
    product_id: UUID,
    fmt: str,
    user: User = Depends(get_current_user),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> Response:
    """
    Download a purchased checklist in the requested format.
    """
    payload = await entitlements.get_download(user.id, order_id, product_id, fmt)
    logger.info(
        "Serving download",
        order_id=str(order_id),
        product_id=str(product_id),
        fmt=fmt,
        source=payload.source,
    )
    DOWNLOADS_SERVED.labels(source=payload.source).inc()
    return _download_response(payload, product_id)


@downloads_router.get("", response_model=List[DownloadOut])
async def list_downloads(
    user: User = Depends(get_current_user),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> List[DownloadOut]:
    """
    Everything the current user can download, across completed orders.
    """
    entries = await entitlements.list_downloads(user.id)
    return [DownloadOut.model_validate(e) for e in entries]
