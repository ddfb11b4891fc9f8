"""
Analytics API Endpoints

Admin dashboard aggregations over orders, products and users, plus the
public client event sink.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
import structlog

from checklistpro.database.models import User
from checklistpro.errors import ValidationError
from checklistpro.serving.api.dependencies import get_analytics_service, get_optional_user, require_admin
from checklistpro.serving.api.schemas import MessageResponse
from checklistpro.serving.cache import analytics_cache
from checklistpro.services.analytics import AnalyticsService, record_event

router = APIRouter()
logger = structlog.get_logger(__name__)

MAX_RANGE_DAYS = 366


class OverviewResponse(BaseModel):
    """Store-wide totals"""
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    completed_orders: int
    pending_orders: int
    total_revenue: float
    average_order_value: float
    total_users: int
    total_products: int
    active_products: int
    total_downloads: int
    total_views: int


class DailyRevenuePoint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    revenue: float
    orders: int


class RevenueTrendResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_date: date
    end_date: date
    data: List[DailyRevenuePoint]
    total_revenue: float
    total_orders: int


class ProductStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    name: str
    slug: str
    is_active: bool
    views: int
    downloads: int
    units_sold: int
    revenue: float
    conversion_rate: Optional[float]


class ClientEvent(BaseModel):
    event: str = Field(..., min_length=1, max_length=100)
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class UserStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_users: int
    active_users: int
    new_users_30d: int
    purchasing_users: int
    by_role: Dict[str, int]


@router.get("", response_model=OverviewResponse)
async def get_overview(
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> OverviewResponse:
    cached = await analytics_cache.get("overview")
    if cached:
        logger.debug("Returning cached overview")
        return OverviewResponse(**cached)

    overview = OverviewResponse.model_validate(await analytics.overview())
    await analytics_cache.set("overview", overview.model_dump(mode="json"))
    return overview


@router.get("/revenue", response_model=RevenueTrendResponse)
async def get_revenue_trend(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> RevenueTrendResponse:
    """
    Daily completed-order revenue. Defaults to the last 30 days.
    """
    if not end_date:
        end_date = date.today()
    if not start_date:
        start_date = end_date - timedelta(days=29)
    if start_date > end_date:
        raise ValidationError("start_date must not be after end_date")
    if (end_date - start_date).days > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range may not exceed {MAX_RANGE_DAYS} days")

    cache_key = f"revenue:{start_date}:{end_date}"
    cached = await analytics_cache.get(cache_key)
    if cached:
        return RevenueTrendResponse(**cached)

    trend = RevenueTrendResponse.model_validate(await analytics.revenue_trend(start_date, end_date))
    await analytics_cache.set(cache_key, trend.model_dump(mode="json"))
    return trend


@router.get("/products", response_model=List[ProductStatsResponse])
async def get_product_stats(
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[ProductStatsResponse]:
    stats = await analytics.product_stats(limit=limit)
    return [ProductStatsResponse.model_validate(s) for s in stats]


@router.get("/users", response_model=UserStatsResponse)
async def get_user_stats(
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> UserStatsResponse:
    return UserStatsResponse.model_validate(await analytics.user_stats())


@router.post("/events", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def track_event(
    body: ClientEvent,
    background_tasks: BackgroundTasks,
    user: Optional[User] = Depends(get_optional_user),
) -> MessageResponse:
    """
    Accept a client-side event. Recorded after the response; never fails the caller.
    """
    background_tasks.add_task(
        record_event, body.event, body.data, user.id if user else None, body.timestamp
    )
    return MessageResponse(message="Event accepted")
