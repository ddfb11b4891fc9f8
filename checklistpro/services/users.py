"""
User administration
"""

from typing import List, Optional, Tuple
import uuid

import structlog

from checklistpro.database.models import User, UserRole
from checklistpro.database.repositories import Page, UserRepository
from checklistpro.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class UserAdminService:
    def __init__(self, users: UserRepository):
        self.users = users

    async def list_users(
        self,
        page: Page,
        role: Optional[UserRole] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[User], int]:
        return await self.users.list(page, role=role, search=search)

    async def update_user(
        self,
        user_id: uuid.UUID,
        actor: User,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> User:
        """Change a user's role or enable/disable the account"""
        user = await self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if user.id == actor.id and (role == UserRole.CUSTOMER or is_active is False):
            raise ValidationError("Administrators cannot demote or disable themselves")

        if role is not None:
            user.role = role
        if is_active is not None:
            user.is_active = is_active

        await self.users.session.flush()
        logger.info(
            "User updated by admin",
            user_id=str(user.id),
            actor_id=str(actor.id),
            role=user.role.value,
            is_active=user.is_active,
        )
        return user
