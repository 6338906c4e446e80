"""
Core data models for the Portfolio Live API

Table models (SQLModel) hold what is persisted: users, their portfolio
documents and payment records. Wire models (pydantic, camelCase on the wire)
describe what leaves the service: the non-secret user record, the cached
identity projection and the private/public portfolio shapes.
"""

import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

PLANS = ("free", "pro", "premium")
STATUSES = ("active", "suspended", "pending")
THEMES = ("light", "dark", "blue", "green")
PAYMENT_STATUSES = ("pending", "success", "failed")


def new_id() -> str:
    return secrets.token_urlsafe(16)


class User(SQLModel, table=True):
    """
    Registered account. The password is only ever stored as a bcrypt hash.
    """

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    username: str = Field(index=True, unique=True, max_length=64)
    email: str = Field(index=True, unique=True, max_length=254)
    password_hash: str = Field(max_length=128)
    plan: str = Field(default="free", max_length=16)
    status: str = Field(default="active", max_length=16)
    custom_domain: str = Field(default="", max_length=255)
    has_paid: bool = Field(default=False)
    is_first_login: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = Field(default=None)


class Portfolio(SQLModel, table=True):
    """
    Portfolio document, one per user, keyed by the owner's username.
    Sub-documents are stored as JSON and always replaced wholesale.
    """

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    username: str = Field(index=True, unique=True, max_length=64)
    display_name: str = Field(default="", max_length=255)
    title: str = Field(default="", max_length=255)
    bio: str = Field(default="")
    contacts: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    projects: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON)
    )
    testimonials: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON)
    )
    theme: str = Field(default="light", max_length=16)
    is_published: bool = Field(default=False)
    profile_picture: str = Field(default="", max_length=1024)
    resume_url: str = Field(default="", max_length=1024)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Payment(SQLModel, table=True):
    """Payment confirmed by the administrator for a user's plan"""

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    owner_username: str = Field(index=True, max_length=64)
    amount: float = Field(default=0.0)
    currency: str = Field(default="USD", max_length=8)
    status: str = Field(default="success", max_length=16)
    provider_reference: str = Field(default="", max_length=255)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserPublic(CamelModel):
    """Every user field except the password hash"""

    id: str
    username: str
    email: str
    plan: str
    status: str
    custom_domain: str = ""
    has_paid: bool = False
    is_first_login: bool = True
    created_at: datetime
    last_login: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            plan=user.plan,
            status=user.status,
            custom_domain=user.custom_domain,
            has_paid=user.has_paid,
            is_first_login=user.is_first_login,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class IdentityProjection(CamelModel):
    """Minimal identity returned by "who am I" and held in the identity cache"""

    id: str
    username: str
    email: str
    plan: str
    status: Optional[str] = None
    custom_domain: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "IdentityProjection":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            plan=user.plan,
            status=user.status,
            custom_domain=user.custom_domain,
            created_at=user.created_at,
        )


class ProjectItem(CamelModel):
    id: Optional[int] = None
    name: str = ""
    description: str = ""
    github: str = ""
    live_demo: str = ""


class TestimonialItem(CamelModel):
    __test__ = False  # not a pytest class

    id: Optional[int] = None
    client_name: str = ""
    comment: str = ""
    position: str = ""
    company: str = ""
    profile_picture: str = ""


class PublicPortfolio(CamelModel):
    """Published view of a portfolio: defaults instead of missing values"""

    username: str
    display_name: str = ""
    title: str = ""
    bio: str = ""
    contacts: Dict[str, str] = {}
    skills: List[str] = []
    projects: List[ProjectItem] = []
    testimonials: List[TestimonialItem] = []
    theme: str = "light"
    is_published: bool = False
    profile_picture: str = ""
    resume_url: str = ""
    updated_at: Optional[datetime] = None

    @classmethod
    def from_portfolio(cls, portfolio: Portfolio) -> "PublicPortfolio":
        return cls(
            username=portfolio.username,
            display_name=portfolio.display_name or "",
            title=portfolio.title or "",
            bio=portfolio.bio or "",
            contacts={
                key: value
                for key, value in (portfolio.contacts or {}).items()
                if isinstance(value, str) and value.strip()
            },
            skills=list(portfolio.skills or []),
            projects=[ProjectItem(**p) for p in (portfolio.projects or [])],
            testimonials=[
                TestimonialItem(**t) for t in (portfolio.testimonials or [])
            ],
            theme=portfolio.theme or "light",
            is_published=bool(portfolio.is_published),
            profile_picture=portfolio.profile_picture or "",
            resume_url=portfolio.resume_url or "",
            updated_at=portfolio.updated_at,
        )


class PortfolioDocument(PublicPortfolio):
    """Owner's view of a portfolio, including identifiers and timestamps"""

    id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_portfolio(cls, portfolio: Portfolio) -> "PortfolioDocument":
        public = PublicPortfolio.from_portfolio(portfolio)
        return cls(
            id=portfolio.id,
            created_at=portfolio.created_at,
            **public.model_dump(),
        )
