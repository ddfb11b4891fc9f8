"""
Admin API Endpoints

User administration, the store-wide order list, system stats and CSV exports.
"""

from datetime import datetime, timezone
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from checklistpro.config import get_settings
from checklistpro.database.connection import check_database_health
from checklistpro.database.models import OrderStatus, User, UserRole
from checklistpro.database.repositories import Page
from checklistpro.serving.api.dependencies import (
    get_analytics_service,
    get_export_service,
    get_order_workflow,
    get_user_admin_service,
    require_admin,
)
from checklistpro.serving.api.schemas import OrderListResponse, OrderOut, UserOut
from checklistpro.services.analytics import AnalyticsService
from checklistpro.services.exports import ExportService
from checklistpro.services.orders import OrderWorkflow
from checklistpro.services.users import UserAdminService

router = APIRouter()

STARTED_AT = time.monotonic()


class UserListResponse(BaseModel):
    items: List[UserOut]
    total: int
    page: int
    page_size: int


class UserAdminUpdate(BaseModel):
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class SystemStatsResponse(BaseModel):
    version: str
    environment: str
    timestamp: datetime
    uptime_seconds: float
    database: Dict[str, Any]
    cache_enabled: bool
    totals: Dict[str, Any]


@router.get("/users", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = None,
    search: Optional[str] = Query(None, max_length=100),
    admin: User = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserListResponse:
    users, total = await service.list_users(Page(page=page, page_size=page_size), role=role, search=search)
    return UserListResponse(
        items=[UserOut.model_validate(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.put("/users/{user_id}", response_model=UserOut)
async def update_user(
    user_id: UUID,
    body: UserAdminUpdate,
    admin: User = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserOut:
    user = await service.update_user(user_id, admin, role=body.role, is_active=body.is_active)
    return UserOut.model_validate(user)


@router.get("/orders", response_model=OrderListResponse)
async def list_all_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    user_id: Optional[UUID] = None,
    admin: User = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderListResponse:
    orders, total = await workflow.list_all_orders(
        Page(page=page, page_size=page_size), status=status_filter, user_id=user_id
    )
    return OrderListResponse(
        items=[OrderOut.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=SystemStatsResponse)
async def system_stats(
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> SystemStatsResponse:
    settings = get_settings()
    overview = await analytics.overview()
    return SystemStatsResponse(
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=round(time.monotonic() - STARTED_AT, 3),
        database=await check_database_health(),
        cache_enabled=settings.redis.enabled,
        totals={
            "users": overview.total_users,
            "products": overview.total_products,
            "active_products": overview.active_products,
            "orders": overview.total_orders,
            "completed_orders": overview.completed_orders,
            "downloads": overview.total_downloads,
            "revenue": float(overview.total_revenue),
        },
    )


@router.get("/export/{export_type}")
async def export_data(
    export_type: str,
    admin: User = Depends(require_admin),
    exports: ExportService = Depends(get_export_service),
) -> Response:
    """CSV download of orders, users or products"""
    content = await exports.export_csv(export_type)
    filename = f"{export_type}-{datetime.now(timezone.utc):%Y%m%d}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
