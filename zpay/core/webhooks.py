"""
Per-user webhook configuration and test deliveries.
"""
import json
from typing import Any, Dict, Optional

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import Settings, get_settings
from zpay.core.exceptions import BadRequestError
from zpay.core.security import generate_webhook_secret, sign_webhook_payload, utcnow
from zpay.database.models import User, WebhookConfig
from zpay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-ZPay-Signature"
TEST_EVENT_TYPE = "payment.completed"


def build_test_payload(invoice_id: str, client_user_id: str) -> Dict[str, Any]:
    """Sample event with the shape of a real payment notification."""
    return {
        "event": TEST_EVENT_TYPE,
        "test": True,
        "created_at": utcnow().isoformat(),
        "data": {
            "invoice_id": invoice_id,
            "user_id": client_user_id,
            "status": "COMPLETED",
        },
    }


class WebhookService:
    """Store webhook endpoints and send signed test events to them."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    async def get_config(self, db: AsyncSession, user: User) -> Optional[WebhookConfig]:
        return await db.scalar(select(WebhookConfig).where(WebhookConfig.user_id == user.id))

    async def save_config(
        self, db: AsyncSession, user: User, url: str, secret: Optional[str] = None
    ) -> WebhookConfig:
        """
        Create or update the user's webhook.

        A secret is generated on create when none is given; on update the
        stored secret is kept unless a new one is passed.
        """
        config = await self.get_config(db, user)

        if config is None:
            config = WebhookConfig(
                user_id=user.id,
                url=url,
                secret=secret or generate_webhook_secret(),
            )
            db.add(config)
            logger.info("webhook_config_created", user_id=user.id)
        else:
            config.url = url
            if secret:
                config.secret = secret
            logger.info("webhook_config_updated", user_id=user.id)

        await db.flush()
        return config

    @staticmethod
    def generate_secret() -> str:
        return generate_webhook_secret()

    async def test_webhook(
        self,
        db: AsyncSession,
        user: User,
        invoice_id: str,
        client_user_id: str,
    ) -> Dict[str, Any]:
        """
        POST a signed sample event to the user's endpoint.

        Delivery is attempted once. Non-2xx responses and network failures
        are reported in the result, not raised.

        Raises:
            BadRequestError: if the user has no webhook configured
        """
        config = await self.get_config(db, user)
        if config is None:
            raise BadRequestError("No webhook configuration found")

        payload = build_test_payload(invoice_id, client_user_id)
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.secret}",
            SIGNATURE_HEADER: sign_webhook_payload(config.secret, body),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.payment_api_timeout, transport=self._transport
            ) as client:
                response = await client.post(config.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            metrics.record_webhook_test("error")
            logger.warning("webhook_test_delivery_failed", user_id=user.id, error=str(e))
            return {
                "success": False,
                "message": "Webhook test failed. Your endpoint could not be reached.",
                "status_code": None,
                "response_body": None,
                "payload": payload,
            }

        success = response.is_success
        metrics.record_webhook_test("success" if success else "failed")
        logger.info(
            "webhook_test_delivered",
            user_id=user.id,
            status_code=response.status_code,
        )

        if success:
            message = (
                "Webhook test successful! Your endpoint responded with a "
                f"{response.status_code} {response.reason_phrase} status."
            )
        else:
            message = (
                f"Webhook test failed. Your endpoint returned a {response.status_code} error."
            )

        return {
            "success": success,
            "message": message,
            "status_code": response.status_code,
            "response_body": response.text,
            "payload": payload,
        }
