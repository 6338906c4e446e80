"""
Credential Store.

Persistence for user records: credentials (bcrypt hash), plan, status and
login bookkeeping. It is the leaf dependency of the `Authenticator`, which
looks users up here on every authenticated request.

Each operation opens its own session from the `async_sessionmaker` owned by
`core.database.Database` and commits before returning, so callers always get
detached, fully loaded `User` objects.

Payments confirmed by the administrator are recorded alongside the user they
upgrade.

Uniqueness of username and email is enforced by the table; a violation raises
`ValidationError` on the offending field. Other SQL failures are wrapped in
`DatabaseConnectionError`.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from core.exceptions import DatabaseConnectionError, ValidationError
from core.models import Payment, User

logger = logging.getLogger(__name__)


class CredentialStore:
    """Async access to the user table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _get_one(self, operation: str, statement) -> Optional[User]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement)
                return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Credential store {operation} failed: {e}")
            raise DatabaseConnectionError(operation, str(e))

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._get_one("get_user_by_id", select(User).where(User.id == user_id))

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self._get_one(
            "get_user_by_email", select(User).where(User.email == email.lower())
        )

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._get_one(
            "get_user_by_username",
            select(User).where(User.username == username.lower()),
        )

    async def create(self, user: User) -> User:
        """Insert a new user; username and email must be unused"""
        try:
            async with self.session_factory() as session:
                session.add(user)
                await session.commit()
                await session.refresh(user)
        except IntegrityError as e:
            logger.warning(f"Duplicate identity on create for {user.username}: {e}")
            raise ValidationError("username", "User already exists", user.username)
        except SQLAlchemyError as e:
            logger.error(f"Credential store create failed: {e}")
            raise DatabaseConnectionError("create_user", str(e))

        logger.info(f"Created user {user.username}")
        return user

    async def save(self, user: User) -> User:
        """Persist changes to an existing user"""
        try:
            async with self.session_factory() as session:
                merged = await session.merge(user)
                await session.commit()
                await session.refresh(merged)
        except IntegrityError as e:
            logger.warning(f"Duplicate identity on save for {user.username}: {e}")
            raise ValidationError("email", "Email already in use", user.email)
        except SQLAlchemyError as e:
            logger.error(f"Credential store save failed: {e}")
            raise DatabaseConnectionError("save_user", str(e))

        return merged

    async def count(self) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(func.count()).select_from(User))
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise DatabaseConnectionError("count_users", str(e))

    async def record_payment(self, payment: Payment) -> Payment:
        try:
            async with self.session_factory() as session:
                session.add(payment)
                await session.commit()
                await session.refresh(payment)
        except SQLAlchemyError as e:
            logger.error(f"Recording payment for {payment.owner_username} failed: {e}")
            raise DatabaseConnectionError("record_payment", str(e))

        logger.info(
            f"Recorded {payment.status} payment of {payment.amount} {payment.currency} "
            f"for {payment.owner_username}"
        )
        return payment

    async def payments_for(self, username: str) -> List[Payment]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Payment)
                    .where(Payment.owner_username == username.lower())
                    .order_by(Payment.created_at)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseConnectionError("payments_for", str(e))
