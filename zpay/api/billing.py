"""
Billing API: Stripe Checkout, customer portal and Stripe webhooks.
"""
import json
from typing import Any, Dict, Optional

import stripe
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import get_settings
from zpay.core.billing import BillingService
from zpay.database.connection import get_db
from zpay.database.models import User

from .deps import get_billing_service, get_current_user
from .schemas import CheckoutSessionRequest, CheckoutSessionResponse, StripeWebhookResponse

logger = structlog.get_logger(__name__)

billing_router = APIRouter(prefix="/billing", tags=["billing"])


@billing_router.post(
    "/checkout-session",
    response_model=CheckoutSessionResponse,
    summary="Create a Stripe Checkout session",
)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_service: BillingService = Depends(get_billing_service),
) -> Dict[str, Any]:
    origin = http_request.headers.get("origin") or get_settings().public_base_url
    return await billing_service.create_checkout_session(
        db,
        user,
        origin=origin,
        amount=request.amount,
        currency=request.currency,
        subscription=request.subscription,
        price_id=request.price_id,
    )


@billing_router.get(
    "/portal",
    response_class=RedirectResponse,
    status_code=status.HTTP_303_SEE_OTHER,
    summary="Open the Stripe billing portal",
)
async def billing_portal(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_service: BillingService = Depends(get_billing_service),
) -> RedirectResponse:
    url = await billing_service.create_portal_session(db, user)
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@billing_router.post(
    "/webhook",
    response_model=StripeWebhookResponse,
    summary="Stripe webhook endpoint",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    billing_service: BillingService = Depends(get_billing_service),
) -> Dict[str, bool]:
    """Verify the Stripe signature, then apply the event."""
    body = await request.body()

    try:
        billing_service.stripe_client.construct_event(body, stripe_signature or "")
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("api_stripe_webhook_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}"
        ) from e

    event = json.loads(body)
    logger.info(
        "api_stripe_webhook_received", event_id=event.get("id"), event_type=event.get("type")
    )
    return await billing_service.handle_event(db, event)
