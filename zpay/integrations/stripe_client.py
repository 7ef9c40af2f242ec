"""
Stripe API client for API key purchases.

Implements:
- Customer creation
- Checkout sessions (one-off payment or subscription)
- Billing portal sessions
- Webhook signature verification
"""
import asyncio
from enum import Enum
from typing import Any, Dict, Optional

import stripe
import structlog

from zpay.config import Settings, get_settings
from zpay.core.exceptions import ServiceNotConfiguredError
from zpay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PRODUCT_NAME = "ZVault API Key Access"


class StripeErrorType(Enum):
    """Classification of Stripe errors."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class StripeClient:
    """
    Wrapper for the Stripe API.

    The Stripe SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Stripe client."""
        self.settings = settings or get_settings()
        if self.settings.stripe_secret_key:
            stripe.api_key = self.settings.stripe_secret_key
            stripe.api_version = self.settings.stripe_api_version

        logger.info(
            "stripe_client_initialized",
            api_version=self.settings.stripe_api_version,
            test_mode=self.settings.is_test_mode,
        )

    def _require_key(self) -> None:
        if not self.settings.stripe_secret_key:
            raise ServiceNotConfiguredError("Stripe is not configured")

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """
        Classify Stripe error.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(
            error,
            (stripe.CardError, stripe.InvalidRequestError),
        ):
            return StripeErrorType.PERMANENT
        else:
            return StripeErrorType.TRANSIENT

    async def _call(self, operation: str, func: Any, **kwargs: Any) -> Any:
        self._require_key()
        try:
            result = await asyncio.to_thread(func, **kwargs)
        except stripe.StripeError as e:
            error_type = self._classify_error(e)
            metrics.record_stripe_api_call(operation, "error")
            logger.error(
                "stripe_api_error",
                operation=operation,
                error_type=error_type.value,
                error_code=getattr(e, "code", None),
                error_message=str(e),
            )
            raise StripeError(str(e), error_type=error_type, original_error=e) from e

        metrics.record_stripe_api_call(operation, "success")
        return result

    async def create_customer(self, email: Optional[str], name: Optional[str]) -> Any:
        """Create a Stripe customer for a dashboard user."""
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=email or None,
            name=name or None,
        )
        logger.info("stripe_customer_created", customer_id=customer.id)
        return customer

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        origin: str,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        price_id: Optional[str] = None,
    ) -> Any:
        """
        Create a Checkout session.

        With price_id a subscription session is created; otherwise a one-off
        payment for `amount` (minor units) in `currency`.
        """
        line_item: Dict[str, Any]
        if price_id:
            mode = "subscription"
            line_item = {"price": price_id, "quantity": 1}
        else:
            mode = "payment"
            line_item = {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": PRODUCT_NAME},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }

        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            payment_method_types=["card"],
            line_items=[line_item],
            mode=mode,
            success_url=f"{origin}/account?payment=success",
            cancel_url=f"{origin}/account?payment=cancel",
            metadata={"userId": user_id},
            customer=customer_id,
        )
        logger.info("stripe_checkout_session_created", session_id=session.id, mode=mode)
        return session

    async def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        """Create a billing portal session."""
        return await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """
        Verify webhook signature and construct event.

        Raises:
            ServiceNotConfiguredError: if no webhook secret is configured
            stripe.SignatureVerificationError: on a bad signature
            ValueError: on an unparsable payload
        """
        if not self.settings.stripe_webhook_secret:
            raise ServiceNotConfiguredError("Stripe webhook secret is not configured")
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=signature,
            secret=self.settings.stripe_webhook_secret,
        )
