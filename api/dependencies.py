from fastapi import Depends
from starlette.requests import HTTPConnection

from core.auth import Authenticator, require_admin
from core.cache import CacheManager, IdentityCache
from core.config import Settings
from core.database import Database
from core.models import UserPublic
from services.account_service import AccountService
from services.broadcast_service import UpdateBroadcaster
from services.portfolio_service import PortfolioService


def get_settings(connection: HTTPConnection) -> Settings:
    return connection.app.state.settings


def get_database(connection: HTTPConnection) -> Database:
    return connection.app.state.database


def get_cache_manager(connection: HTTPConnection) -> CacheManager:
    return connection.app.state.cache_manager


def get_identity_cache(connection: HTTPConnection) -> IdentityCache:
    return connection.app.state.identity_cache


def get_authenticator(connection: HTTPConnection) -> Authenticator:
    return connection.app.state.authenticator


def get_broadcaster(connection: HTTPConnection) -> UpdateBroadcaster:
    return connection.app.state.broadcaster


def get_account_service(connection: HTTPConnection) -> AccountService:
    return connection.app.state.account_service


def get_portfolio_service(connection: HTTPConnection) -> PortfolioService:
    return connection.app.state.portfolio_service


async def get_current_user(
    connection: HTTPConnection,
    authenticator: Authenticator = Depends(get_authenticator),
) -> UserPublic:
    return await authenticator(connection)


async def get_admin_user(
    current_user: UserPublic = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> UserPublic:
    return require_admin(current_user, settings.admin_email)
