"""
Portfolio Live API - Main Application Entry Point.

This module builds and configures the FastAPI application for the Portfolio
Live API: account and session management, portfolio documents, and the
WebSocket channel that pushes saved portfolios to open editors and public
viewers.

Key Responsibilities:
- `create_app(settings)` is the composition root. It builds the database,
  the stores, the token codec, the authenticator, the identity cache, the
  update broadcaster, the asset host provider and the services, and hangs
  them on `app.state` where the routers' dependencies find them.
- The lifespan sets up logging, creates the tables (a failure here is fatal
  and stops startup), starts the identity cache's epoch clear and tears
  everything down on shutdown.
- Middleware handles correlation IDs, unclassified errors, performance
  logging, security headers and early request validation; exception handlers
  render every error with the same JSON shape.

Tests call `create_app` with their own `Settings` (temporary SQLite file,
fixed secret) and a fake asset provider. `app` is the module-level instance
uvicorn serves.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.admin_endpoints import router as admin_router
from api.auth_endpoints import router as auth_router
from api.health_router import health_router, monitoring_router
from api.portfolio_endpoints import router as portfolio_router
from api.realtime_endpoints import websocket_router
from core.auth import Authenticator, SessionTokenCodec, default_extractors
from core.cache import CacheManager, IdentityCache, MemoryCacheBackend
from core.config import Settings
from core.database import Database
from core.logging_config import get_logger, setup_logging
from core.middleware import (
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RequestValidationMiddleware,
    SecurityMiddleware,
    install_error_handlers,
)
from providers.asset_provider import (
    AssetProvider,
    CloudinaryAssetProvider,
    UnconfiguredAssetProvider,
)
from services.account_service import AccountService, ResetNotifier
from services.broadcast_service import UpdateBroadcaster
from services.credential_store import CredentialStore
from services.portfolio_service import PortfolioService
from services.portfolio_store import PortfolioStore


def build_asset_provider(settings: Settings) -> AssetProvider:
    if settings.cloudinary_configured:
        return CloudinaryAssetProvider(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
        )
    return UnconfiguredAssetProvider()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings: Settings = app.state.settings
    setup_logging(settings.environment, settings.log_level)
    logger = get_logger("api.startup")

    try:
        await app.state.database.create_all()
        logger.info(f"Database initialized ({app.state.database.database_type})")
    except Exception as e:
        logger.critical(f"Database initialization failed, refusing to start: {e}")
        raise

    app.state.identity_cache.start()
    logger.info(
        f"Asset host: {app.state.asset_provider.source_name}; "
        f"allowed origins: {', '.join(settings.allowed_origins)}"
    )
    logger.info("Service startup completed")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down Portfolio Live API")
    await app.state.identity_cache.stop()
    await app.state.database.dispose()
    logger.info("Cleanup completed")


def create_app(
    settings: Optional[Settings] = None,
    asset_provider: Optional[AssetProvider] = None,
    reset_notifier: Optional[ResetNotifier] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Portfolio Live API",
        description="Portfolio builder backend with live updates for editors and viewers",
        version="1.0.0",
        lifespan=lifespan,
    )

    database = Database(settings.database_url)
    credential_store = CredentialStore(database.session_factory)
    portfolio_store = PortfolioStore(database.session_factory)
    codec = SessionTokenCodec(settings.jwt_secret)
    cache_manager = CacheManager(MemoryCacheBackend(max_size=2000, max_memory_mb=50))
    identity_cache = IdentityCache(cache_manager, settings.identity_cache_epoch_seconds)
    broadcaster = UpdateBroadcaster(settings.broadcast_send_timeout_seconds)
    asset_provider = asset_provider or build_asset_provider(settings)

    app.state.settings = settings
    app.state.database = database
    app.state.cache_manager = cache_manager
    app.state.identity_cache = identity_cache
    app.state.broadcaster = broadcaster
    app.state.asset_provider = asset_provider
    app.state.authenticator = Authenticator(
        codec, credential_store, default_extractors(settings.session_cookie_name)
    )
    app.state.account_service = AccountService(
        credential_store,
        portfolio_store,
        codec,
        identity_cache,
        frontend_url=settings.frontend_url,
        reset_notifier=reset_notifier,
    )
    app.state.portfolio_service = PortfolioService(
        portfolio_store, broadcaster, asset_provider
    )

    install_error_handlers(app, settings.environment)

    # Innermost first; CORS ends up outermost
    app.add_middleware(PerformanceMiddleware)
    app.add_middleware(RequestValidationMiddleware)
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(ErrorHandlingMiddleware, environment=settings.environment)
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health routers first (no authentication required for monitoring)
    app.include_router(health_router)
    app.include_router(monitoring_router)

    app.include_router(auth_router)
    app.include_router(portfolio_router)
    app.include_router(admin_router)
    app.include_router(websocket_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=app.state.settings.port,
        log_level="info",
    )
