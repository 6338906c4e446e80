"""
Unit tests for Asset Providers

Tests Cloudinary signing and upload handling with a mocked aiohttp session.
"""
import pytest
import asyncio
import hashlib
from unittest.mock import AsyncMock, Mock, patch

import aiohttp

from core.exceptions import UpstreamError
from providers.asset_provider import (
    AssetFile,
    CloudinaryAssetProvider,
    UnconfiguredAssetProvider,
)


def mock_upload_response(status: int, body):
    response = Mock()
    response.status = status
    response.json = AsyncMock(return_value=body)
    return response


class TestAssetFile:
    def test_resource_type(self):
        assert AssetFile("me.png", b"x", "image/png").resource_type == "image"
        assert AssetFile("cv.pdf", b"x", "application/pdf").resource_type == "raw"


class TestCloudinaryAssetProvider:
    """Test CloudinaryAssetProvider"""

    @pytest.fixture
    def provider(self):
        return CloudinaryAssetProvider("demo-cloud", "api-key", "api-secret")

    @pytest.fixture
    def image(self):
        return AssetFile("me.png", b"fake_image_data", "image/png")

    def test_properties(self, provider):
        assert provider.source_name == "cloudinary"
        assert provider.folder == "portfolio"

    def test_sign_sorts_parameters(self, provider):
        expected = hashlib.sha1(
            b"folder=portfolio&timestamp=1700000000api-secret"
        ).hexdigest()

        assert provider.sign({"timestamp": "1700000000", "folder": "portfolio"}) == expected

    def test_upload_url_by_resource_type(self, provider):
        assert (
            provider._upload_url("raw")
            == "https://api.cloudinary.com/v1_1/demo-cloud/raw/upload"
        )

    @pytest.mark.asyncio
    async def test_upload_success(self, provider, image):
        response = mock_upload_response(
            200, {"secure_url": "https://res.cloudinary.com/demo-cloud/me.png"}
        )

        with patch("aiohttp.ClientSession") as mock_session:
            post = mock_session.return_value.__aenter__.return_value.post
            post.return_value.__aenter__.return_value = response

            url = await provider.upload("profilePicture", image)

        assert url == "https://res.cloudinary.com/demo-cloud/me.png"
        assert post.call_args[0][0] == (
            "https://api.cloudinary.com/v1_1/demo-cloud/image/upload"
        )

    @pytest.mark.asyncio
    async def test_upload_rejected(self, provider, image):
        response = mock_upload_response(401, {"error": {"message": "Invalid Signature"}})

        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__.return_value.post.return_value.__aenter__.return_value = response

            with pytest.raises(UpstreamError) as exc_info:
                await provider.upload("profilePicture", image)

        assert exc_info.value.asset == "profilePicture"
        assert "Invalid Signature" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_upload_without_url(self, provider, image):
        response = mock_upload_response(200, {})

        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__.return_value.post.return_value.__aenter__.return_value = response

            with pytest.raises(UpstreamError):
                await provider.upload("resumeFile", image)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()]
    )
    async def test_network_errors_become_upstream_errors(self, provider, image, error):
        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__.return_value.post.side_effect = error

            with pytest.raises(UpstreamError) as exc_info:
                await provider.upload("resumeFile", image)

        assert exc_info.value.status_code == 500


class TestUnconfiguredAssetProvider:
    @pytest.mark.asyncio
    async def test_upload_always_fails(self):
        provider = UnconfiguredAssetProvider()

        with pytest.raises(UpstreamError) as exc_info:
            await provider.upload("image", AssetFile("a.png", b"x", "image/png"))

        assert "not configured" in exc_info.value.message
        assert provider.source_name == "unconfigured"
