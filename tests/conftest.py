import pytest
import os
import sys
from typing import Dict, Generator, List, Optional

from fastapi.testclient import TestClient

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import create_app
from core.cache import CacheManager, IdentityCache, MemoryCacheBackend
from core.config import Settings
from core.exceptions import UpstreamError
from providers.asset_provider import AssetFile, AssetProvider
from services.broadcast_service import UpdateBroadcaster

TEST_SECRET = "test-secret-key-for-portfolio-live"
ADMIN_EMAIL = "admin@example.com"


class FakeAssetProvider(AssetProvider):
    """Records uploads and returns predictable URLs; can be told to fail"""

    def __init__(self):
        self.uploads: List[AssetFile] = []
        self.fail_assets: set = set()

    @property
    def source_name(self) -> str:
        return "fake"

    async def upload(self, asset: str, file: AssetFile) -> str:
        if asset in self.fail_assets:
            raise UpstreamError(asset, "Simulated asset host outage")
        self.uploads.append(file)
        return f"https://assets.test/{file.filename}"


class RecordingNotifier:
    """Reset notifier that keeps every (user, link) it was handed"""

    def __init__(self):
        self.sent: List[tuple] = []

    async def __call__(self, user, reset_url: str) -> None:
        self.sent.append((user, reset_url))

    @property
    def last_token(self) -> Optional[str]:
        if not self.sent:
            return None
        return self.sent[-1][1].rsplit("/", 1)[-1]


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for an isolated app backed by a temporary SQLite file."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        jwt_secret=TEST_SECRET,
        allowed_origins=["http://localhost:3000"],
        admin_email=ADMIN_EMAIL,
        frontend_url="http://frontend.test",
    )


@pytest.fixture
def asset_provider() -> FakeAssetProvider:
    return FakeAssetProvider()


@pytest.fixture
def reset_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def app(test_settings, asset_provider, reset_notifier):
    """Create a fresh application for each test."""
    return create_app(
        test_settings, asset_provider=asset_provider, reset_notifier=reset_notifier
    )


@pytest.fixture
def test_client(app) -> Generator[TestClient, None, None]:
    """Create a test client; the context manager runs the lifespan."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def register_user(test_client):
    """Register an account and return the response body ({user, token})."""

    def _register(
        username: str,
        email: Optional[str] = None,
        password: str = "s3cret-pass",
        display_name: Optional[str] = None,
    ) -> Dict:
        payload = {
            "username": username,
            "email": email or f"{username.lower()}@example.com",
            "password": password,
        }
        if display_name is not None:
            payload["displayName"] = display_name
        response = test_client.post("/auth/register", json=payload)
        assert response.status_code == 201, response.text
        # Each test call decides its own credentials
        test_client.cookies.clear()
        return response.json()

    return _register


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a token."""

    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def cache_manager():
    """Create a memory-backed cache manager for testing."""
    return CacheManager(MemoryCacheBackend())


@pytest.fixture
def identity_cache(cache_manager):
    return IdentityCache(cache_manager, epoch_seconds=300)


@pytest.fixture
def broadcaster():
    return UpdateBroadcaster()

