"""SMS delivery through Twilio."""
import asyncio
from typing import Any, Optional

import structlog
from twilio.rest import Client

from zpay.config import Settings, get_settings
from zpay.core.exceptions import ServiceNotConfiguredError

logger = structlog.get_logger(__name__)


class SmsSender:
    """
    Thin wrapper around the Twilio REST client.

    The Twilio client is synchronous; sends run in a worker thread.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Any] = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self.settings.sms_configured

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.settings.sms_configured:
                raise ServiceNotConfiguredError("SMS service is not configured")
            self._client = Client(self.settings.twilio_sid, self.settings.twilio_token)
        return self._client

    async def send(self, to: str, body: str) -> str:
        """Send an SMS and return the Twilio message SID."""
        client = self._get_client()
        message = await asyncio.to_thread(
            client.messages.create,
            body=body,
            from_=self.settings.twilio_number,
            to=to,
        )
        logger.info("sms_sent", to=to, sid=message.sid)
        return message.sid
