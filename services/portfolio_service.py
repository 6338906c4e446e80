"""
Portfolio Service.

This module provides the `PortfolioService`: public and private reads of
portfolio documents and the save operation that ties the store, the asset host
and the real-time broadcaster together.

Save Pipeline (`save`):
1. Normalize the submitted fields into a complete document. The save is a
   whole-document replace; a field the client omits takes its default
   (empty text, empty collections, `light` theme, unpublished).
2. Upload binary attachments to the asset host. Each asset URL resolves to the
   new upload, else the URL string the client sent, else empty.
3. Commit the document to the Portfolio Store.
4. Publish `portfolioUpdated` to the owner's room. The publish is awaited only
   after the commit has completed, so subscribers never see a document the
   store does not hold.

Partial Failure: when an upload fails, the stored URL for that asset is kept,
the rest of the document is still committed and published, and the upload's
`UpstreamError` is raised afterwards so the caller learns which file failed.

Sub-document normalization: contacts drop empty values; skills keep non-blank
strings in order; projects and testimonials keep known keys (camelCase) and
keep their `id` when supplied, otherwise get `now_ms + index`.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.exceptions import NotFoundError, UpstreamError, ValidationError
from core.models import (
    CamelModel,
    PortfolioDocument,
    ProjectItem,
    PublicPortfolio,
    TestimonialItem,
)
from core.validation import InputValidator
from providers.asset_provider import AssetFile, AssetProvider
from services.broadcast_service import UpdateBroadcaster, portfolio_updated_message
from services.portfolio_store import PortfolioStore

logger = logging.getLogger(__name__)


@dataclass
class PortfolioUpdate:
    """Raw fields of one save request, as received from the client"""

    display_name: Optional[str] = None
    title: Optional[str] = None
    bio: Optional[str] = None
    theme: Optional[str] = None
    is_published: Any = None
    contacts: Any = None
    skills: Any = None
    projects: Any = None
    testimonials: Any = None
    profile_picture_url: Optional[str] = None
    profile_picture_file: Optional[AssetFile] = None
    resume_url: Optional[str] = None
    resume_file: Optional[AssetFile] = None


def _text(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def _normalize_items(
    field: str, items: List[Any], model: type, now_ms: int
) -> List[Dict[str, Any]]:
    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(field, f"Item {index} must be an object")
        try:
            parsed: CamelModel = model.model_validate(item)
        except PydanticValidationError as e:
            raise ValidationError(field, f"Item {index}: {e.errors()[0]['msg']}")
        if parsed.id is None:
            parsed.id = now_ms + index
        normalized.append(parsed.model_dump(by_alias=True))
    return normalized


class PortfolioService:
    """Reads and saves portfolio documents"""

    def __init__(
        self,
        portfolio_store: PortfolioStore,
        broadcaster: UpdateBroadcaster,
        asset_provider: AssetProvider,
    ):
        self.portfolio_store = portfolio_store
        self.broadcaster = broadcaster
        self.asset_provider = asset_provider

    async def get_public(self, username: str) -> PublicPortfolio:
        """Published documents only; unpublished and unknown look the same"""
        portfolio = await self.portfolio_store.get(username)
        if portfolio is None or not portfolio.is_published:
            raise NotFoundError("portfolio", username.lower())
        return PublicPortfolio.from_portfolio(portfolio)

    async def get_own(self, username: str) -> PortfolioDocument:
        portfolio = await self.portfolio_store.get(username)
        if portfolio is None:
            raise NotFoundError("portfolio", username.lower())
        return PortfolioDocument.from_portfolio(portfolio)

    def normalize(self, update: PortfolioUpdate, now_ms: Optional[int] = None) -> Dict[str, Any]:
        """Build the complete replacement document from a save request"""
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        contacts = InputValidator.parse_json_field("contacts", update.contacts, dict)
        skills = InputValidator.parse_json_field("skills", update.skills, list)
        projects = InputValidator.parse_json_field("projects", update.projects, list)
        testimonials = InputValidator.parse_json_field(
            "testimonials", update.testimonials, list
        )

        return {
            "display_name": _text(update.display_name),
            "title": _text(update.title),
            "bio": _text(update.bio),
            "theme": InputValidator.validate_theme(update.theme),
            "is_published": InputValidator.validate_boolean(
                "isPublished", update.is_published, default=False
            ),
            "contacts": InputValidator.clean_string_map(contacts),
            "skills": InputValidator.clean_string_list(skills),
            "projects": _normalize_items("projects", projects, ProjectItem, now_ms),
            "testimonials": _normalize_items(
                "testimonials", testimonials, TestimonialItem, now_ms
            ),
        }

    async def _resolve_asset(
        self,
        asset: str,
        file: Optional[AssetFile],
        url: Optional[str],
        stored_url: str,
        failures: List[UpstreamError],
    ) -> str:
        if file is not None:
            try:
                return await self.asset_provider.upload(asset, file)
            except UpstreamError as e:
                failures.append(e)
                return stored_url
        return _text(url)

    async def save(self, username: str, update: PortfolioUpdate) -> PortfolioDocument:
        """
        Replace the owner's document, then publish it to the owner's room.

        Raises:
            ValidationError: malformed theme, flag or JSON sub-document
            NotFoundError: the owner has no portfolio
            UpstreamError: an upload failed (after the rest was saved and published)
        """
        fields = self.normalize(update)

        existing = await self.portfolio_store.get(username)
        if existing is None:
            raise NotFoundError("portfolio", username.lower())

        failures: List[UpstreamError] = []
        fields["profile_picture"] = await self._resolve_asset(
            "profilePicture",
            update.profile_picture_file,
            update.profile_picture_url,
            existing.profile_picture,
            failures,
        )
        fields["resume_url"] = await self._resolve_asset(
            "resumeFile",
            update.resume_file,
            update.resume_url,
            existing.resume_url,
            failures,
        )

        saved = await self.portfolio_store.replace(username, fields)
        document = PortfolioDocument.from_portfolio(saved)

        await self.publish(saved.username, document)

        if failures:
            logger.warning(
                f"Portfolio for {saved.username} saved without {len(failures)} upload(s)"
            )
            raise failures[0]

        return document

    async def publish(self, username: str, document: PortfolioDocument) -> int:
        message = portfolio_updated_message(
            username, document.model_dump(mode="json", by_alias=True)
        )
        try:
            return await self.broadcaster.publish(username, message)
        except Exception as e:
            logger.error(f"Publishing update for {username} failed: {e}")
            return 0

    async def upload_image(self, file: Optional[AssetFile]) -> str:
        """Upload a standalone image and return its URL"""
        if file is None or not file.content:
            raise ValidationError("image", "image is required")
        return await self.asset_provider.upload("image", file)
