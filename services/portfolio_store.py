"""
Portfolio Store.

Persistence for portfolio documents, one per user, keyed by the owner's
lowercase username. A document is created empty (unpublished) at registration
and afterwards only ever replaced as a whole by its owner's save: there is no
field-level update and no merge, so the last writer wins.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from core.exceptions import DatabaseConnectionError, NotFoundError, ValidationError
from core.models import Portfolio

logger = logging.getLogger(__name__)

REPLACEABLE_FIELDS = (
    "display_name",
    "title",
    "bio",
    "contacts",
    "skills",
    "projects",
    "testimonials",
    "theme",
    "is_published",
    "profile_picture",
    "resume_url",
)


class PortfolioStore:
    """Async access to the portfolio table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, username: str) -> Optional[Portfolio]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Portfolio).where(Portfolio.username == username.lower())
                )
                return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Portfolio lookup failed for {username}: {e}")
            raise DatabaseConnectionError("get_portfolio", str(e))

    async def create_default(self, username: str, display_name: str = "") -> Portfolio:
        """Create the empty, unpublished document for a new user"""
        portfolio = Portfolio(username=username.lower(), display_name=display_name)
        try:
            async with self.session_factory() as session:
                session.add(portfolio)
                await session.commit()
                await session.refresh(portfolio)
        except IntegrityError as e:
            logger.warning(f"Portfolio already exists for {username}: {e}")
            raise ValidationError("username", "Portfolio already exists", username)
        except SQLAlchemyError as e:
            logger.error(f"Portfolio create failed for {username}: {e}")
            raise DatabaseConnectionError("create_portfolio", str(e))

        logger.info(f"Created portfolio for {portfolio.username}")
        return portfolio

    async def replace(self, username: str, fields: Dict[str, Any]) -> Portfolio:
        """
        Overwrite every replaceable field of the document and commit.
        Fields missing from `fields` are left as they are; callers pass a
        complete document.
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Portfolio).where(Portfolio.username == username.lower())
                )
                portfolio = result.scalars().first()
                if portfolio is None:
                    raise NotFoundError("portfolio", username)

                for name in REPLACEABLE_FIELDS:
                    if name in fields:
                        setattr(portfolio, name, fields[name])
                portfolio.updated_at = datetime.utcnow()

                await session.commit()
                await session.refresh(portfolio)
        except SQLAlchemyError as e:
            logger.error(f"Portfolio replace failed for {username}: {e}")
            raise DatabaseConnectionError("replace_portfolio", str(e))

        logger.info(f"Saved portfolio for {portfolio.username}")
        return portfolio

    async def count(self) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(Portfolio)
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise DatabaseConnectionError("count_portfolios", str(e))
