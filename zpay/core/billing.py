"""
Stripe billing for API key access.

Purchases are made through Stripe Checkout. When Stripe reports a completed
checkout the buyer's keys are topped up (or a live key is issued).
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import Settings, get_settings
from zpay.core.api_keys import ApiKeyService
from zpay.core.exceptions import BadRequestError
from zpay.database.models import User
from zpay.integrations.stripe_client import StripeClient

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


class BillingService:
    """Checkout, customer portal and Stripe event handling."""

    def __init__(
        self,
        stripe_client: Optional[StripeClient] = None,
        api_key_service: Optional[ApiKeyService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stripe_client = stripe_client or StripeClient(self.settings)
        self.api_key_service = api_key_service or ApiKeyService(self.settings)

    async def _ensure_customer(self, db: AsyncSession, user: User) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = await self.stripe_client.create_customer(email=user.email, name=user.username)
        user.stripe_customer_id = customer.id
        await db.flush()
        return customer.id

    async def create_checkout_session(
        self,
        db: AsyncSession,
        user: User,
        origin: str,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        subscription: bool = False,
        price_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a Checkout session for the user.

        Raises:
            BadRequestError: if a subscription has no price, or a one-off
                payment has no amount or currency
        """
        if subscription:
            if not price_id:
                raise BadRequestError("Missing Stripe priceId for subscription")
        elif not amount or not currency:
            raise BadRequestError("Missing amount or currency")

        customer_id = await self._ensure_customer(db, user)
        session = await self.stripe_client.create_checkout_session(
            customer_id=customer_id,
            user_id=user.id,
            origin=origin.rstrip("/"),
            amount=None if subscription else amount,
            currency=None if subscription else currency,
            price_id=price_id if subscription else None,
        )

        logger.info(
            "checkout_session_created",
            user_id=user.id,
            session_id=session.id,
            subscription=subscription,
        )
        return {"session_id": session.id}

    async def create_portal_session(self, db: AsyncSession, user: User) -> str:
        """Return the URL of a Stripe billing portal session for the user."""
        customer_id = await self._ensure_customer(db, user)
        portal = await self.stripe_client.create_portal_session(
            customer_id=customer_id,
            return_url=f"{self.settings.public_base_url.rstrip('/')}/account",
        )
        logger.info("billing_portal_session_created", user_id=user.id)
        return portal.url

    async def handle_event(self, db: AsyncSession, event: Dict[str, Any]) -> Dict[str, bool]:
        """
        Apply a verified Stripe event.

        Only completed checkouts carrying a userId in their metadata have an
        effect; every other event is acknowledged and ignored.
        """
        event_type = event.get("type")
        if event_type == CHECKOUT_COMPLETED:
            session = event.get("data", {}).get("object", {})
            user_id = (session.get("metadata") or {}).get("userId")
            if user_id:
                await self.api_key_service.top_up(db, user_id)
                logger.info("checkout_completed_top_up", user_id=user_id)
            else:
                logger.warning("checkout_completed_without_user", event_id=event.get("id"))
        else:
            logger.debug("stripe_event_ignored", event_type=event_type)

        return {"received": True}
