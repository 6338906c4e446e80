"""
Application Settings.

All environment-driven configuration for the Portfolio Live API is read here,
once, into a `Settings` object that the application factory hands to every
component it builds. Nothing else in the codebase calls `os.getenv` for
service configuration.

Environment Variables:
- `ENVIRONMENT`: `development` (default), `test` or `production`. Controls cookie
  flags, log format and how much detail unexpected errors expose.
- `LOG_LEVEL`: level for the application and root loggers (default `INFO`).
- `DATABASE_URL`: SQLAlchemy async URL (SQLite via aiosqlite by default,
  PostgreSQL via asyncpg in production).
- `JWT_SECRET`: signing secret for session and password-reset tokens.
- `ALLOWED_ORIGINS`: comma-separated list of CORS origins.
- `CLOUDINARY_CLOUD_NAME`, `CLOUDINARY_API_KEY`, `CLOUDINARY_API_SECRET`:
  credentials for the external asset host.
- `ADMIN_EMAIL`: email of the single administrator identity.
- `FRONTEND_URL`: base URL used to build password-reset links.
- `IDENTITY_CACHE_EPOCH_SECONDS`: interval between full identity cache clears.
- `BROADCAST_SEND_TIMEOUT_SECONDS`: upper bound on one WebSocket push before
  the receiving connection is dropped (default 5).
- `PORT`: port uvicorn binds to when the module is run directly.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime configuration for the service"""

    environment: str = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./portfolio.db"
    jwt_secret: Optional[str] = None
    allowed_origins: List[str] = field(
        default_factory=lambda: _split_origins(DEFAULT_ORIGINS)
    )
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    admin_email: str = "admin@portfolio.local"
    frontend_url: str = "http://localhost:3000"
    identity_cache_epoch_seconds: int = 300
    broadcast_send_timeout_seconds: float = 5.0
    session_cookie_name: str = "token"
    port: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment"""
        return cls(
            environment=os.getenv("ENVIRONMENT", "development").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv(
                "DATABASE_URL", "sqlite+aiosqlite:///./portfolio.db"
            ),
            jwt_secret=os.getenv("JWT_SECRET"),
            allowed_origins=_split_origins(
                os.getenv("ALLOWED_ORIGINS", DEFAULT_ORIGINS)
            ),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            admin_email=os.getenv("ADMIN_EMAIL", "admin@portfolio.local").lower(),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            identity_cache_epoch_seconds=int(
                os.getenv("IDENTITY_CACHE_EPOCH_SECONDS", "300")
            ),
            broadcast_send_timeout_seconds=float(
                os.getenv("BROADCAST_SEND_TIMEOUT_SECONDS", "5")
            ),
            port=int(os.getenv("PORT", "5000")),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )
