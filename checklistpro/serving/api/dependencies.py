"""
API Dependencies

Authentication guards and per-request service construction. Every service
built for a request shares the request's database session.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from checklistpro.database.connection import get_db_dependency
from checklistpro.database.models import User, UserRole
from checklistpro.database.repositories import (
    CategoryRepository,
    OrderRepository,
    ProductRepository,
    UserRepository,
)
from checklistpro.errors import AuthError, ForbiddenError
from checklistpro.services.analytics import AnalyticsService
from checklistpro.services.auth import AuthService
from checklistpro.services.catalog import CatalogService
from checklistpro.services.categories import CategoryService
from checklistpro.services.entitlements import EntitlementService
from checklistpro.services.exports import ExportService
from checklistpro.services.orders import OrderWorkflow
from checklistpro.services.payments import PaymentGateway, get_payment_gateway
from checklistpro.services.users import UserAdminService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def get_auth_service(db: AsyncSession = Depends(get_db_dependency)) -> AuthService:
    return AuthService(UserRepository(db))


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> User:
    if not token:
        raise AuthError("Not authenticated")
    return await auth.authenticate(token)


async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> Optional[User]:
    if not token:
        return None
    try:
        return await auth.authenticate(token)
    except AuthError:
        return None


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise ForbiddenError("Admin access required")
    return user


def get_catalog_service(db: AsyncSession = Depends(get_db_dependency)) -> CatalogService:
    return CatalogService(ProductRepository(db), CategoryRepository(db))


def get_category_service(db: AsyncSession = Depends(get_db_dependency)) -> CategoryService:
    return CategoryService(CategoryRepository(db))


def get_order_workflow(
    db: AsyncSession = Depends(get_db_dependency),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> OrderWorkflow:
    return OrderWorkflow(OrderRepository(db), ProductRepository(db), gateway)


def get_entitlement_service(db: AsyncSession = Depends(get_db_dependency)) -> EntitlementService:
    return EntitlementService(OrderRepository(db), ProductRepository(db))


def get_user_admin_service(db: AsyncSession = Depends(get_db_dependency)) -> UserAdminService:
    return UserAdminService(UserRepository(db))


def get_analytics_service(db: AsyncSession = Depends(get_db_dependency)) -> AnalyticsService:
    return AnalyticsService(db)


def get_export_service(db: AsyncSession = Depends(get_db_dependency)) -> ExportService:
    return ExportService(db)
