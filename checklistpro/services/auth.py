"""
Authentication Service

bcrypt password hashing (passlib) and signed JWT access/refresh tokens
(python-jose). Tokens carry the user id as ``sub`` and a ``type`` claim so a
refresh token cannot be used as an access token. Password reset tokens are
short-lived and also carry a fingerprint of the current password hash, so a
reset token stops working once the password changes.
"""

from dataclasses import dataclass
from datetime import timedelta
import hashlib
from typing import Any, Dict, Optional, Tuple
import uuid

import structlog
from jose import JWTError, jwt
from passlib.context import CryptContext

from checklistpro.config import get_settings
from checklistpro.database.models import User, UserRole, utcnow
from checklistpro.database.repositories import UserRepository
from checklistpro.errors import AuthError, ConflictError, ValidationError

logger = structlog.get_logger(__name__)
settings = get_settings()

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.security.bcrypt_rounds,
)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
RESET_TOKEN = "reset"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_token(user: User, token_type: str, expires_delta: timedelta, **extra: Any) -> str:
    now = utcnow()
    claims = {
        "sub": str(user.id),
        "role": user.role.value,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
        **extra,
    }
    return jwt.encode(
        claims,
        settings.security.jwt_secret_key.get_secret_value(),
        algorithm=settings.security.jwt_algorithm,
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> Dict[str, Any]:
    try:
        payload = jwt.decode(
            token,
            settings.security.jwt_secret_key.get_secret_value(),
            algorithms=[settings.security.jwt_algorithm],
        )
    except JWTError as e:
        raise AuthError("Invalid or expired token") from e

    if payload.get("type") != expected_type or not payload.get("sub"):
        raise AuthError("Invalid token")
    return payload


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


def issue_tokens(user: User) -> TokenPair:
    access_minutes = settings.security.access_token_expire_minutes
    return TokenPair(
        access_token=create_token(user, ACCESS_TOKEN, timedelta(minutes=access_minutes)),
        refresh_token=create_token(user, REFRESH_TOKEN, timedelta(days=settings.security.refresh_token_expire_days)),
        expires_in=access_minutes * 60,
    )


def password_fingerprint(user: User) -> str:
    """Changes whenever the password does, retiring outstanding reset tokens"""
    return hashlib.sha256(user.password_hash.encode("utf-8")).hexdigest()[:16]


def create_reset_token(user: User) -> str:
    minutes = settings.security.reset_token_expire_minutes
    return create_token(user, RESET_TOKEN, timedelta(minutes=minutes), pwd=password_fingerprint(user))


class AuthService:
    def __init__(self, users: UserRepository):
        self.users = users

    async def register(self, name: str, email: str, password: str) -> Tuple[User, TokenPair]:
        email = email.strip().lower()
        if await self.users.get_by_email(email) is not None:
            raise ConflictError("An account with this email already exists")

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=UserRole.CUSTOMER,
            is_active=True,
            last_login_at=utcnow(),
        )
        await self.users.add(user)
        logger.info("User registered", user_id=str(user.id))
        return user, issue_tokens(user)

    async def login(self, email: str, password: str) -> Tuple[User, TokenPair]:
        user = await self.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Failed login attempt")
            raise AuthError("Invalid email or password")
        if not user.is_active:
            raise AuthError("Account is disabled")

        user.last_login_at = utcnow()
        await self.users.session.flush()
        logger.info("User logged in", user_id=str(user.id))
        return user, issue_tokens(user)

    async def refresh(self, refresh_token: str) -> TokenPair:
        payload = decode_token(refresh_token, expected_type=REFRESH_TOKEN)
        user = await self._active_user(payload["sub"])
        return issue_tokens(user)

    async def authenticate(self, access_token: str) -> User:
        """Resolve the user behind an access token"""
        payload = decode_token(access_token, expected_type=ACCESS_TOKEN)
        return await self._active_user(payload["sub"])

    async def update_profile(
        self,
        user: User,
        name: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[Dict[str, Any]] = None,
    ) -> User:
        if email is not None:
            email = email.strip().lower()
            if email != user.email:
                if await self.users.get_by_email(email) is not None:
                    raise ConflictError("An account with this email already exists")
                user.email = email
        if name is not None:
            user.name = name.strip()
        if address is not None:
            user.address = dict(address)

        await self.users.session.flush()
        return user

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(
                "Current password is incorrect",
                details=[{"field": "current_password", "message": "incorrect"}],
            )
        user.password_hash = hash_password(new_password)
        await self.users.session.flush()
        logger.info("Password changed", user_id=str(user.id))

    async def request_password_reset(self, email: str) -> Optional[str]:
        """
        Issue a password reset token.

        Returns:
            The token, or None when no active account uses the address
        """
        user = await self.users.get_by_email(email.strip().lower())
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown account")
            return None

        token = create_reset_token(user)
        logger.info("Password reset token issued", user_id=str(user.id))
        return token

    async def reset_password(self, token: str, new_password: str) -> User:
        payload = decode_token(token, expected_type=RESET_TOKEN)
        user = await self._active_user(payload["sub"])
        if payload.get("pwd") != password_fingerprint(user):
            raise AuthError("Reset token has already been used")

        user.password_hash = hash_password(new_password)
        await self.users.session.flush()
        logger.info("Password reset", user_id=str(user.id))
        return user

    def logout(self, user: User) -> None:
        """Tokens are stateless; clients discard them"""
        logger.info("User logged out", user_id=str(user.id))

    async def _active_user(self, subject: str) -> User:
        try:
            user_id = uuid.UUID(subject)
        except ValueError as e:
            raise AuthError("Invalid token") from e

        user = await self.users.get(user_id)
        if user is None or not user.is_active:
            raise AuthError("User not found or disabled")
        return user
