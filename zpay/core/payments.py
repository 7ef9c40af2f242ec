"""
Dashboard actions that call the payment automation API.

These wrap PaymentApiClient responses into the short success/failure
summaries shown on the account page.
"""
import json
from typing import Any, Dict, Optional

import structlog

from zpay.core.exceptions import ExternalServiceError
from zpay.integrations.payment_api import PaymentApiClient

logger = structlog.get_logger(__name__)


class PaymentService:
    """Test API keys and pull shared data from the automation service."""

    def __init__(self, client: Optional[PaymentApiClient] = None) -> None:
        self.client = client or PaymentApiClient()

    async def test_api_key(
        self, api_key: str, user_id: str, invoice_id: str, amount: float
    ) -> Dict[str, Any]:
        """Create a real invoice with the key and report how the API answered."""
        try:
            response = await self.client.create_invoice(api_key, user_id, invoice_id, amount)
        except ExternalServiceError as e:
            logger.warning("api_key_test_failed", error=e.message)
            return {
                "success": False,
                "message": f"Failed to test API: {e.user_message}",
                "response": {"error": e.message},
            }

        if response.ok:
            message = (
                "API test successful! The endpoint responded with a "
                f"{response.status_code} {response.reason} status."
            )
        else:
            message = f"API test failed. The endpoint returned a {response.status_code} error."

        logger.info("api_key_tested", status_code=response.status_code)
        return {"success": response.ok, "message": message, "response": response.to_dict()}

    async def sync_shared_data(self, api_key: str) -> Dict[str, Any]:
        """Pull the account's shared data so the transaction list can refresh."""
        try:
            response = await self.client.get_shared_data(api_key)
        except ExternalServiceError as e:
            logger.warning("shared_data_sync_failed", error=e.message)
            return {"success": False, "message": f"Sync error: {e.message}"}

        if response.ok:
            logger.info("shared_data_synced")
            return {"success": True, "message": "Successfully synced data with Venute!"}

        text = response.body if isinstance(response.body, str) else json.dumps(response.body)
        return {
            "success": False,
            "message": f"Sync failed: {response.status_code} {response.reason}. {text}",
        }
