"""
Account Management Service.

This module provides the `AccountService`, which orchestrates everything that
happens to a user identity: registration (user plus empty portfolio), login,
the password-reset round trip, the cache-assisted "who am I" read, profile
edits and the administrator's payment confirmation.

Key Behaviors:
- Registration normalizes username and email (trimmed, lowercase), rejects
  duplicates on either and creates an unpublished portfolio next to the user.
- Login answers every failure with the same `INVALID_CREDENTIALS` error and
  always spends one bcrypt comparison, against a dummy hash when the email is
  unknown, so neither the response nor its timing reveals whether an account
  exists. Suspended and pending accounts are rejected after the password check.
- Forgot-password never reveals whether the email matched. When it does, a
  1-hour `password_reset` token is issued and handed, as a reset link, to the
  injected reset notifier (by default the link is only logged).
- Reset-password accepts only `password_reset` tokens; any token problem is a
  400 on the `token` field. A successful reset drops the user's identity cache
  entry.
- "Who am I" serves the identity projection from the `IdentityCache` when it
  can and fills it from the Credential Store otherwise.

bcrypt work runs in a worker thread so it does not stall the event loop.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from core.auth import PASSWORD_RESET, PasswordManager, SessionTokenCodec
from core.cache import IdentityCache
from core.exceptions import AuthenticationError, NotFoundError, ValidationError
from core.models import PLANS, IdentityProjection, Payment, PortfolioDocument, User, UserPublic
from core.validation import InputValidator
from services.credential_store import CredentialStore
from services.portfolio_store import PortfolioStore

logger = logging.getLogger(__name__)

ResetNotifier = Callable[[User, str], Awaitable[None]]


async def log_reset_link(user: User, reset_url: str) -> None:
    """Default reset notifier: no mail transport, the link goes to the log"""
    logger.info(f"Password reset link for {user.username}: {reset_url}")


class AccountService:
    """Registration, login, password reset and profile operations"""

    def __init__(
        self,
        credential_store: CredentialStore,
        portfolio_store: PortfolioStore,
        codec: SessionTokenCodec,
        identity_cache: IdentityCache,
        frontend_url: str = "http://localhost:3000",
        reset_notifier: Optional[ResetNotifier] = None,
    ):
        self.credential_store = credential_store
        self.portfolio_store = portfolio_store
        self.codec = codec
        self.identity_cache = identity_cache
        self.frontend_url = frontend_url.rstrip("/")
        self.reset_notifier = reset_notifier or log_reset_link

    async def register(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        display_name: Optional[str] = None,
    ) -> Tuple[User, str]:
        """
        Create a user and its empty portfolio.

        Returns:
            Tuple of the stored user and a fresh session token
        """
        InputValidator.require(
            {"username": username, "email": email, "password": password},
            "username",
            "email",
            "password",
        )
        username = InputValidator.normalize_username(username)
        email = InputValidator.normalize_email(email)

        if await self.credential_store.get_by_username(username):
            raise ValidationError("username", "Username already taken", username)
        if await self.credential_store.get_by_email(email):
            raise ValidationError("email", "Email already registered", email)

        password_hash = await asyncio.to_thread(PasswordManager.hash_password, password)
        user = await self.credential_store.create(
            User(username=username, email=email, password_hash=password_hash)
        )
        await self.portfolio_store.create_default(
            username, (display_name or "").strip() or username
        )

        logger.info(f"Registered new user: {username} ({email})")
        return user, self.codec.issue_session(user)

    async def login(
        self, email: Optional[str], password: Optional[str]
    ) -> Tuple[User, str]:
        """
        Check credentials and start a session.

        Returns:
            Tuple of the updated user and a fresh session token
        """
        InputValidator.require({"email": email, "password": password}, "email", "password")
        email = InputValidator.normalize_email(email)

        user = await self.credential_store.get_by_email(email)
        hashed = user.password_hash if user else PasswordManager.dummy_hash()
        password_ok = await asyncio.to_thread(
            PasswordManager.verify_password, password, hashed
        )

        if user is None or not password_ok:
            logger.warning(f"Authentication failed for {email}")
            raise AuthenticationError(AuthenticationError.INVALID_CREDENTIALS)

        if user.status != "active":
            logger.warning(f"Login refused for {user.status} account {user.username}")
            raise AuthenticationError(AuthenticationError.ACCOUNT_INACTIVE)

        user.is_first_login = user.last_login is None
        user.last_login = datetime.utcnow()
        user = await self.credential_store.save(user)

        logger.info(f"User {user.username} authenticated successfully")
        return user, self.codec.issue_session(user)

    async def forgot_password(self, email: Optional[str]) -> None:
        """Issue a reset link when the email matches; silent otherwise"""
        InputValidator.require({"email": email}, "email")
        email = InputValidator.normalize_email(email)

        user = await self.credential_store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        token = self.codec.issue_password_reset(user)
        reset_url = f"{self.frontend_url}/reset-password/{token}"
        try:
            await self.reset_notifier(user, reset_url)
        except Exception as e:
            logger.error(f"Reset notifier failed for {user.username}: {e}")

    async def reset_password(
        self, token: Optional[str], new_password: Optional[str]
    ) -> User:
        InputValidator.require(
            {"token": token, "newPassword": new_password}, "token", "newPassword"
        )

        try:
            payload = self.codec.verify(token, PASSWORD_RESET)
        except AuthenticationError as e:
            logger.warning(f"Rejected password reset token: {e.message}")
            raise ValidationError("token", "Invalid or expired reset token")

        user = await self.credential_store.get_by_id(payload["userId"])
        if user is None:
            raise ValidationError("token", "Account for this reset token no longer exists")

        user.password_hash = await asyncio.to_thread(
            PasswordManager.hash_password, new_password
        )
        user = await self.credential_store.save(user)
        await self.identity_cache.delete(user.id)

        logger.info(f"Password reset for user {user.username}")
        return user

    async def who_am_i(self, user_id: str) -> IdentityProjection:
        """Identity projection, from the cache when possible"""
        projection = await self.identity_cache.get(user_id)
        if projection is not None:
            return projection

        user = await self.credential_store.get_by_id(user_id)
        if user is None:
            raise AuthenticationError(AuthenticationError.USER_NOT_FOUND)

        projection = IdentityProjection.from_user(user)
        await self.identity_cache.put(user_id, projection)
        return projection

    async def update_profile(
        self,
        current: UserPublic,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Tuple[User, PortfolioDocument]:
        """Change the account email and/or the portfolio display name"""
        user = await self.credential_store.get_by_id(current.id)
        if user is None:
            raise AuthenticationError(AuthenticationError.USER_NOT_FOUND)

        if email is not None and email.strip():
            email = InputValidator.normalize_email(email)
            if email != user.email:
                other = await self.credential_store.get_by_email(email)
                if other is not None and other.id != user.id:
                    raise ValidationError("email", "Email already in use", email)
                user.email = email
                user = await self.credential_store.save(user)

        if display_name is not None:
            portfolio = await self.portfolio_store.replace(
                user.username, {"display_name": display_name.strip()}
            )
        else:
            portfolio = await self.portfolio_store.get(user.username)
            if portfolio is None:
                raise NotFoundError("portfolio", user.username)

        await self.identity_cache.delete(user.id)

        logger.info(f"Profile updated for user {user.username}")
        return user, PortfolioDocument.from_portfolio(portfolio)

    async def confirm_payment(
        self,
        username: Optional[str],
        plan: Optional[str] = None,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        provider_reference: Optional[str] = None,
    ) -> Tuple[User, Payment]:
        """Mark a user as paid on the given plan and record the payment"""
        username = InputValidator.normalize_username(username)
        plan = (plan or "pro").strip().lower()
        if plan not in PLANS:
            raise ValidationError("plan", f"Plan must be one of: {', '.join(PLANS)}", plan)

        user = await self.credential_store.get_by_username(username)
        if user is None:
            raise NotFoundError("user", username)

        user.plan = plan
        user.has_paid = True
        user = await self.credential_store.save(user)

        payment = await self.credential_store.record_payment(
            Payment(
                owner_username=user.username,
                amount=float(amount or 0),
                currency=(currency or "USD").upper(),
                status="success",
                provider_reference=provider_reference or "",
            )
        )
        await self.identity_cache.delete(user.id)

        logger.info(f"Payment confirmed for {user.username} on plan {plan}")
        return user, payment

    async def dashboard(self, current: UserPublic) -> Dict[str, Any]:
        """Owner's account, portfolio and simple content counts"""
        portfolio = await self.portfolio_store.get(current.username)
        if portfolio is None:
            raise NotFoundError("portfolio", current.username)

        document = PortfolioDocument.from_portfolio(portfolio)
        return {
            "user": current,
            "portfolio": document,
            "stats": {
                "projectsCount": len(document.projects),
                "skillsCount": len(document.skills),
                "testimonialsCount": len(document.testimonials),
            },
        }
