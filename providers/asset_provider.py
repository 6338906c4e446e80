"""
Asset Host Provider Classes

Upload of binary portfolio assets (profile pictures, resumes, testimonial
images) to the external file host. Each provider returns the public URL of the
stored file or raises `UpstreamError`; nothing here touches the database.
"""

import asyncio
import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp

from core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/{resource_type}/upload"


@dataclass
class AssetFile:
    """A binary file received in a multi-part request"""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def resource_type(self) -> str:
        """Images go to the image pipeline, everything else is stored raw"""
        return "image" if self.content_type.startswith("image/") else "raw"


class AssetProvider(ABC):
    """Abstract base class for asset hosts"""

    @abstractmethod
    async def upload(self, asset: str, file: AssetFile) -> str:
        """Store the file and return its public URL. Raises UpstreamError."""
        pass

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Source identifier for this provider"""
        pass


class CloudinaryAssetProvider(AssetProvider):
    """Signed uploads to the Cloudinary REST upload API"""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "portfolio",
        timeout_seconds: float = 30,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def source_name(self) -> str:
        return "cloudinary"

    def sign(self, params: Dict[str, str]) -> str:
        """SHA-1 over the sorted `key=value` pairs followed by the API secret"""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def _upload_url(self, resource_type: str) -> str:
        return CLOUDINARY_UPLOAD_URL.format(
            cloud_name=self.cloud_name, resource_type=resource_type
        )

    async def upload(self, asset: str, file: AssetFile) -> str:
        params = {"folder": self.folder, "timestamp": str(int(time.time()))}

        form = aiohttp.FormData()
        form.add_field(
            "file", file.content, filename=file.filename, content_type=file.content_type
        )
        form.add_field("api_key", self.api_key)
        form.add_field("signature", self.sign(params))
        for key, value in params.items():
            form.add_field(key, value)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self._upload_url(file.resource_type), data=form
                ) as response:
                    body = await response.json(content_type=None) or {}
                    if response.status != 200:
                        reason = body.get("error", {}).get(
                            "message", f"HTTP {response.status}"
                        )
                        raise UpstreamError(asset, reason)
        except aiohttp.ClientError as e:
            logger.error(f"Asset host unreachable while uploading {asset}: {e}")
            raise UpstreamError(asset, str(e))
        except asyncio.TimeoutError:
            logger.error(f"Asset host timed out while uploading {asset}")
            raise UpstreamError(asset, "Upload timed out")
        except ValueError as e:
            logger.error(f"Asset host returned malformed JSON for {asset}: {e}")
            raise UpstreamError(asset, "Malformed response from asset host")

        url: Optional[str] = body.get("secure_url") or body.get("url")
        if not url:
            raise UpstreamError(asset, "Asset host returned no URL")

        logger.info(f"Uploaded {asset} ({len(file.content)} bytes) to {self.source_name}")
        return url


class UnconfiguredAssetProvider(AssetProvider):
    """Stand-in used when no asset host credentials are configured"""

    @property
    def source_name(self) -> str:
        return "unconfigured"

    async def upload(self, asset: str, file: AssetFile) -> str:
        logger.error(f"Upload of {asset} requested but no asset host is configured")
        raise UpstreamError(asset, "Asset host is not configured")
