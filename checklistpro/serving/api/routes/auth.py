"""
Authentication API Endpoints

Registration, login, logout, token refresh, password reset and the current
user's profile.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
import structlog

from checklistpro.config import get_settings
from checklistpro.database.models import User
from checklistpro.serving.api.dependencies import get_auth_service, get_current_user
from checklistpro.serving.api.schemas import MessageResponse, UserOut
from checklistpro.services.auth import AuthService, TokenPair

logger = structlog.get_logger(__name__)

router = APIRouter()


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    address: Optional[Address] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ForgotPasswordResponse(MessageResponse):
    reset_token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=6, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(TokenResponse):
    user: UserOut


def _auth_response(user: User, tokens: TokenPair) -> AuthResponse:
    return AuthResponse(
        user=UserOut.model_validate(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, tokens = await auth.register(body.name, body.email, body.password)
    return _auth_response(user, tokens)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, tokens = await auth.login(body.email, body.password)
    return _auth_response(user, tokens)


@router.post("/token", response_model=TokenResponse, include_in_schema=False)
async def token(
    form: OAuth2PasswordRequestForm = Depends(),
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """OAuth2 password flow for the interactive docs"""
    _, tokens = await auth.login(form.username, form.password)
    return TokenResponse(**asdict(tokens))


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    tokens = await auth.refresh(body.refresh_token)
    return TokenResponse(**asdict(tokens))


@router.get("/me", response_model=UserOut)
async def get_me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user)


@router.put("/me", response_model=UserOut)
async def update_me(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
) -> UserOut:
    updated = await auth.update_profile(
        user,
        name=body.name,
        email=body.email,
        address=body.address.model_dump(exclude_none=True) if body.address else None,
    )
    return UserOut.model_validate(updated)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: PasswordChange,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth.change_password(user, body.current_password, body.new_password)
    return MessageResponse(message="Password updated")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    auth.logout(user)
    return MessageResponse(message="Logged out")


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> ForgotPasswordResponse:
    """
    Start a password reset.

    The reply is the same whether or not the address is registered. There is
    no mail delivery: outside production the token is returned, in production
    it is only written to the log.
    """
    token = await auth.request_password_reset(body.email)
    response = ForgotPasswordResponse(message="If the account exists, a reset link has been issued")
    if token is None:
        return response

    if get_settings().is_production:
        logger.info("Password reset token", email=body.email, reset_token=token)
    else:
        response.reset_token = token
    return response


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset")
