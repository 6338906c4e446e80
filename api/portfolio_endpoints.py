"""
Portfolio Endpoints.

Public and private access to portfolio documents and the save operation.

Endpoints Provided:
- `GET /portfolio/{username}`: public view; 404 unless the document is
  published (unknown usernames look exactly the same).
- `GET /portfolio` and `GET /portfolio/me/portfolio`: the caller's own full
  document, published or not.
- `PUT /portfolio/update`: multi-part save. Text fields `displayName`,
  `title`, `bio`, `theme`, `isPublished`; JSON-encoded `contacts`, `skills`,
  `projects`, `testimonials`; `profilePicture` and `resumeFile` as file
  uploads, or `profilePicture` / `resumeUrl` as URL strings. A JSON body with
  the same keys is accepted too. The saved document is pushed to the owner's
  room before the response is sent.
- `POST /portfolio/upload-image`: upload a single `image` file and return its
  hosted URL (used for testimonial pictures).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from api.dependencies import get_current_user, get_portfolio_service
from core.exceptions import ValidationError
from core.logging_config import get_logger, log_function_call
from core.models import UserPublic
from providers.asset_provider import AssetFile
from services.portfolio_service import PortfolioService, PortfolioUpdate

logger = get_logger(__name__)
router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


async def _as_asset(value: Any) -> Optional[AssetFile]:
    """Turn a multi-part file field into an AssetFile; empty uploads count as absent"""
    if not isinstance(value, UploadFile):
        return None
    content = await value.read()
    if not content:
        return None
    return AssetFile(
        filename=value.filename or "upload",
        content=content,
        content_type=value.content_type or "application/octet-stream",
    )


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, UploadFile):
        return None
    return str(value)


async def _read_payload(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            raise ValidationError("body", "Invalid JSON body")
        if not isinstance(payload, dict):
            raise ValidationError("body", "Body must be a JSON object")
        return payload

    form = await request.form()
    return {key: form.get(key) for key in form.keys()}


async def parse_update(request: Request) -> PortfolioUpdate:
    payload = await _read_payload(request)

    return PortfolioUpdate(
        display_name=_as_text(payload.get("displayName")),
        title=_as_text(payload.get("title")),
        bio=_as_text(payload.get("bio")),
        theme=_as_text(payload.get("theme")),
        is_published=payload.get("isPublished"),
        contacts=payload.get("contacts"),
        skills=payload.get("skills"),
        projects=payload.get("projects"),
        testimonials=payload.get("testimonials"),
        profile_picture_url=_as_text(payload.get("profilePicture")),
        profile_picture_file=await _as_asset(payload.get("profilePicture")),
        resume_url=_as_text(payload.get("resumeUrl")),
        resume_file=await _as_asset(payload.get("resumeFile")),
    )


@router.get("")
@log_function_call(logger)
async def get_my_portfolio(
    current_user: UserPublic = Depends(get_current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    """Owner's full document, regardless of published state"""
    document = await portfolios.get_own(current_user.username)
    return document.model_dump(mode="json", by_alias=True)


@router.get("/me/portfolio")
@log_function_call(logger)
async def get_my_portfolio_alias(
    current_user: UserPublic = Depends(get_current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    document = await portfolios.get_own(current_user.username)
    return document.model_dump(mode="json", by_alias=True)


@router.put("/update")
@log_function_call(logger)
async def update_portfolio(
    request: Request,
    current_user: UserPublic = Depends(get_current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    """Replace the caller's document and push it to live viewers"""
    update = await parse_update(request)
    document = await portfolios.save(current_user.username, update)

    return {
        "message": "Portfolio updated successfully",
        "portfolio": document.model_dump(mode="json", by_alias=True),
    }


@router.post("/upload-image")
@log_function_call(logger)
async def upload_image(
    request: Request,
    current_user: UserPublic = Depends(get_current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    """Upload one image to the asset host"""
    form = await request.form()
    image_url = await portfolios.upload_image(await _as_asset(form.get("image")))

    logger.info(f"Image uploaded for {current_user.username}")
    return {"imageUrl": image_url}


@router.get("/{username}")
@log_function_call(logger)
async def get_public_portfolio(
    username: str,
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    """Published portfolio by username"""
    document = await portfolios.get_public(username)
    return document.model_dump(mode="json", by_alias=True)
