"""
Admin Endpoints.

The owner's dashboard and profile settings, plus the one operation reserved
for the single administrator identity (`ADMIN_EMAIL`): confirming a payment,
which upgrades the user's plan and records the payment.

Endpoints Provided:
- `GET /admin/dashboard`: caller's account, portfolio and content counts.
- `PUT /admin/profile`: change the caller's email and/or display name.
- `POST /admin/payments/confirm`: administrator only (403 otherwise).
"""

from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_account_service, get_admin_user, get_current_user
from core.logging_config import get_logger, log_function_call
from core.models import CamelModel, UserPublic
from services.account_service import AccountService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


class ProfileUpdateRequest(CamelModel):
    display_name: Optional[str] = None
    email: Optional[str] = None


class PaymentConfirmationRequest(CamelModel):
    username: Optional[str] = None
    plan: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    provider_reference: Optional[str] = None


@router.get("/dashboard")
@log_function_call(logger)
async def get_dashboard(
    current_user: UserPublic = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    dashboard = await accounts.dashboard(current_user)
    return {
        "user": dashboard["user"].model_dump(mode="json", by_alias=True),
        "portfolio": dashboard["portfolio"].model_dump(mode="json", by_alias=True),
        "stats": dashboard["stats"],
    }


@router.put("/profile")
@log_function_call(logger)
async def update_profile(
    body: ProfileUpdateRequest,
    current_user: UserPublic = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    user, portfolio = await accounts.update_profile(
        current_user, display_name=body.display_name, email=body.email
    )
    return {
        "message": "Profile updated successfully",
        "user": UserPublic.from_user(user).model_dump(mode="json", by_alias=True),
        "portfolio": portfolio.model_dump(mode="json", by_alias=True),
    }


@router.post("/payments/confirm")
@log_function_call(logger)
async def confirm_payment(
    body: PaymentConfirmationRequest,
    admin: UserPublic = Depends(get_admin_user),
    accounts: AccountService = Depends(get_account_service),
):
    user, payment = await accounts.confirm_payment(
        body.username,
        plan=body.plan,
        amount=body.amount,
        currency=body.currency,
        provider_reference=body.provider_reference,
    )

    logger.info(f"Admin {admin.username} confirmed payment for {user.username}")
    return {
        "message": "Payment confirmed",
        "user": UserPublic.from_user(user).model_dump(mode="json", by_alias=True),
        "payment": {
            "id": payment.id,
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
            "providerReference": payment.provider_reference,
            "createdAt": payment.created_at.isoformat(),
        },
    }
