"""
Client for the external payment automation service.

The service generates shielded addresses, watches the chain and reports
payments. This client only calls its HTTP endpoints and hands the raw
responses back so the dashboard can display them verbatim.

Endpoints:
- GET /create       create an invoice (amount in hundredths)
- GET /address      address / invoice payment status
- GET /shared-log   processing log for an invoice
- GET /shared-data  account data snapshot used for manual sync
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from zpay.config import Settings, get_settings
from zpay.core.exceptions import ExternalServiceError
from zpay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class ExternalResponse:
    """Upstream response relayed to the dashboard."""

    status_code: int
    reason: str
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "status": self.status_code,
            "status_text": self.reason,
            "body": self.body,
            "headers": self.headers,
        }


def amount_to_minor_units(amount: float) -> int:
    """The automation API expects amounts multiplied by 100."""
    return int(round(float(amount) * 100))


class PaymentApiClient:
    """
    Async HTTP client for the payment automation API.

    A transport can be injected for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.settings = settings
        self.base_url = (base_url or settings.payment_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.payment_api_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    async def _get(
        self, endpoint: str, api_key: str, params: Optional[Dict[str, Any]] = None
    ) -> ExternalResponse:
        """
        Perform a GET against the automation API.

        Raises:
            ExternalServiceError: on network failure or timeout. Non-2xx
            responses are returned, not raised.
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        query = {k: v for k, v in (params or {}).items() if v is not None}
        start_time = time.time()

        try:
            async with self._client() as client:
                response = await client.get(endpoint, params=query, headers=headers)
        except httpx.HTTPError as e:
            duration = time.time() - start_time
            metrics.record_payment_api_call(endpoint, "error", duration)
            logger.error(
                "payment_api_request_failed",
                endpoint=endpoint,
                error=str(e),
                duration_seconds=duration,
            )
            raise ExternalServiceError(
                f"Payment API request to {endpoint} failed: {e}",
                service="payment_api",
                user_message="Network error or invalid URL",
            ) from e

        duration = time.time() - start_time
        metrics.record_payment_api_call(endpoint, str(response.status_code), duration)
        logger.info(
            "payment_api_response",
            endpoint=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )

        return ExternalResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=self._parse_body(response),
            headers=dict(response.headers),
        )

    async def create_invoice(
        self, api_key: str, user_id: str, invoice_id: str, amount: float
    ) -> ExternalResponse:
        """Ask the automation service to open an invoice and allocate an address."""
        return await self._get(
            "/create",
            api_key,
            {
                "user_id": user_id,
                "invoice_id": invoice_id,
                "amount": amount_to_minor_units(amount),
            },
        )

    async def get_address_status(
        self,
        api_key: str,
        address: Optional[str] = None,
        invoice_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ExternalResponse:
        return await self._get(
            "/address",
            api_key,
            {"address": address, "invoice_id": invoice_id, "user_id": user_id},
        )

    async def get_shared_log(
        self, api_key: str, user_id: Optional[str] = None, invoice_id: Optional[str] = None
    ) -> ExternalResponse:
        return await self._get(
            "/shared-log", api_key, {"user_id": user_id, "invoice_id": invoice_id}
        )

    async def get_shared_data(self, api_key: str) -> ExternalResponse:
        return await self._get("/shared-data", api_key)

    async def poll_address_status(
        self,
        api_key: str,
        is_terminal: Callable[[ExternalResponse], bool],
        address: Optional[str] = None,
        invoice_id: Optional[str] = None,
        user_id: Optional[str] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> ExternalResponse:
        """
        Poll /address on a fixed interval until is_terminal() holds.

        No backoff. Returns the last response seen when the deadline
        passes without a terminal status.
        """
        interval = self.settings.address_poll_interval if interval is None else interval
        timeout = self.settings.address_poll_timeout if timeout is None else timeout

        retrying = AsyncRetrying(
            retry=retry_if_result(lambda response: not is_terminal(response)),
            wait=wait_fixed(interval),
            stop=stop_after_delay(timeout),
        )

        try:
            response = await retrying(
                self.get_address_status,
                api_key,
                address=address,
                invoice_id=invoice_id,
                user_id=user_id,
            )
        except RetryError as e:
            response = e.last_attempt.result()
            logger.warning(
                "address_poll_timed_out",
                address=address,
                invoice_id=invoice_id,
                attempts=e.last_attempt.attempt_number,
            )
        return response
