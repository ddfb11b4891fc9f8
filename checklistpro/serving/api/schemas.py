"""
Shared API Schemas

Response models reused across routers. Request bodies live next to the
endpoints that accept them.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from checklistpro.database.models import OrderStatus, UserRole


class MessageResponse(BaseModel):
    message: str


class CategoryRef(BaseModel):
    """Category embedded in product responses"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    icon: Optional[str] = None


class ProductSummary(BaseModel):
    """Product card in listings"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    short_description: Optional[str] = None
    price: float
    original_price: Optional[float] = None
    icon: Optional[str] = None
    version: Optional[str] = None
    category: Optional[CategoryRef] = None
    tags: List[str] = []
    is_featured: bool
    is_active: bool
    download_count: int
    rating_average: float
    rating_count: int


class ProductDetail(ProductSummary):
    description: Optional[str] = None
    features: List[str] = []
    formats: List[str] = []
    view_count: int
    rating_distribution: Dict[str, int] = {}
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_product(cls, product) -> "ProductDetail":
        # Stored file names stay server-side; only the format keys are public
        data = ProductSummary.model_validate(product).model_dump()
        data.update(
            description=product.description,
            features=list(product.features or []),
            formats=sorted((product.formats or {}).keys()),
            view_count=product.view_count or 0,
            rating_distribution=dict(product.rating_distribution or {}),
            created_at=product.created_at,
            updated_at=product.updated_at,
        )
        return cls(**data)


class AdminProductDetail(ProductDetail):
    """Admin view including stored file names"""
    files: Dict[str, str] = {}

    @classmethod
    def from_product(cls, product) -> "AdminProductDetail":
        detail = ProductDetail.from_product(product).model_dump()
        return cls(**detail, files=dict(product.formats or {}))


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    address: Optional[dict] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    product_name: str
    product_slug: str
    quantity: int
    unit_price: float
    line_total: float


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    items: List[OrderItemOut]
    item_count: int
    subtotal: float
    tax_rate: float
    tax_amount: float
    total_amount: float
    currency: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class OrderListResponse(BaseModel):
    items: List[OrderOut]
    total: int
    page: int
    page_size: int


class DownloadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: UUID
    order_number: str
    product_id: UUID
    product_name: str
    product_slug: str
    purchased_at: Optional[datetime] = None
    formats: List[str]
    urls: Dict[str, str]
