"""
Authentication Endpoints.

This module provides the account and session endpoints of the Portfolio Live
API. Sessions are carried in an httpOnly cookie named `token`; the same token
is also returned in the response body for clients that prefer the
`Authorization` header.

Endpoints Provided:
- `POST /auth/register`: create an account and its empty portfolio, start a
  session (201).
- `POST /auth/login`: check email and password, start a session.
- `POST /auth/logout`: clear the session cookie.
- `GET /auth/me`: identity projection of the caller, served through the
  identity cache.
- `POST /auth/forgot-password`: always 200; issues a reset link when the
  email belongs to an account.
- `POST /auth/reset-password`: set a new password with a `password_reset`
  token.

Cookie Flags: httpOnly, 7 days. In production the cookie is `Secure` with
`SameSite=None` so a frontend on another origin can send it; elsewhere it is
`SameSite=Lax` and not secure so plain-HTTP development works.

Request bodies declare every field optional and rely on
`InputValidator.require` in the services, so a missing field is reported as a
field-level 400 rather than a schema error.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.dependencies import (
    get_account_service,
    get_authenticator,
    get_settings,
)
from core.auth import SESSION_LIFETIME, Authenticator
from core.config import Settings
from core.logging_config import get_logger, log_function_call
from core.models import CamelModel, User, UserPublic
from services.account_service import AccountService

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


# Request Models
class RegisterRequest(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = None


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(CamelModel):
    email: Optional[str] = None


class ResetPasswordRequest(CamelModel):
    token: Optional[str] = None
    new_password: Optional[str] = None


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=int(SESSION_LIFETIME.total_seconds()),
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def session_body(user: User, token: str) -> dict:
    return {
        "user": UserPublic.from_user(user).model_dump(mode="json", by_alias=True),
        "token": token,
    }


@router.post("/register", status_code=201)
@log_function_call(logger)
async def register_user(
    body: RegisterRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    """Register a new user and start a session"""
    user, token = await accounts.register(
        body.username, body.email, body.password, body.display_name
    )
    set_session_cookie(response, token, settings)

    logger.info(f"User registered successfully: {user.username}")
    return session_body(user, token)


@router.post("/login")
@log_function_call(logger)
async def login_user(
    body: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    """Authenticate user and start a session"""
    user, token = await accounts.login(body.email, body.password)
    set_session_cookie(response, token, settings)

    logger.info(f"User logged in successfully: {user.username}")
    return session_body(user, token)


@router.post("/logout")
@log_function_call(logger)
async def logout_user(response: Response, settings: Settings = Depends(get_settings)):
    """Clear the session cookie. Tokens are stateless, so nothing is revoked."""
    clear_session_cookie(response, settings)
    return {"message": "Logged out successfully"}


@router.get("/me")
@log_function_call(logger)
async def get_current_user_info(
    request: Request,
    authenticator: Authenticator = Depends(get_authenticator),
    accounts: AccountService = Depends(get_account_service),
):
    """Identity projection of the caller, cache-assisted"""
    payload = authenticator.verify_only(request)
    projection = await accounts.who_am_i(payload["userId"])
    return {"user": projection.model_dump(mode="json", by_alias=True)}


@router.post("/forgot-password")
@log_function_call(logger)
async def forgot_password(
    body: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Request a password reset link"""
    await accounts.forgot_password(body.email)
    return {
        "message": "If an account exists for that email, a reset link has been sent"
    }


@router.post("/reset-password")
@log_function_call(logger)
async def reset_password(
    body: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Set a new password using a reset token"""
    user = await accounts.reset_password(body.token, body.new_password)
    logger.info(f"Password reset completed for {user.username}")
    return {"message": "Password has been reset"}
