"""
Phone number verification with one-time codes.

Codes are kept in Redis under ``otp:<phone>`` with a TTL and delivered by
SMS through Twilio.
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import Settings, get_settings
from zpay.core.exceptions import BadRequestError, ServiceNotConfiguredError
from zpay.core.security import generate_otp
from zpay.database.models import User
from zpay.integrations.sms import SmsSender
from zpay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

OTP_KEY_PREFIX = "otp:"


def otp_key(phone_number: str) -> str:
    return f"{OTP_KEY_PREFIX}{phone_number}"


class OtpService:
    """Send and verify phone verification codes."""

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        sms_sender: Optional[SmsSender] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.sms_sender = sms_sender or SmsSender(self.settings)
        self._redis = redis_client

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def send_phone_otp(self, phone_number: str) -> Dict[str, Any]:
        """
        Generate a code, store it and text it to the phone.

        Raises:
            ServiceNotConfiguredError: if Twilio credentials are missing
        """
        if not self.sms_sender.configured:
            logger.error("otp_sms_not_configured")
            raise ServiceNotConfiguredError("SMS service is not configured")

        code = generate_otp()
        await self.redis.set(otp_key(phone_number), code, ex=self.settings.otp_ttl_seconds)

        try:
            await self.sms_sender.send(
                phone_number, f"Your ZPay verification code is: {code}"
            )
        except Exception:
            metrics.record_otp_sent("failed")
            await self.redis.delete(otp_key(phone_number))
            logger.exception("otp_send_failed")
            raise

        metrics.record_otp_sent("sent")
        logger.info("otp_sent")

        response: Dict[str, Any] = {
            "success": True,
            "message": "Verification code sent",
        }
        if self.settings.is_development:
            response["otp"] = code
        return response

    async def verify_phone_otp(
        self, db: AsyncSession, phone_number: str, otp: str
    ) -> Dict[str, Any]:
        """
        Check a code and mark matching users' phones as verified.

        Raises:
            BadRequestError: if the code is wrong or has expired
        """
        stored = await self.redis.get(otp_key(phone_number))
        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")

        if stored is None or stored != otp:
            logger.info("otp_verification_failed")
            raise BadRequestError("Invalid or expired verification code")

        await self.redis.delete(otp_key(phone_number))
        result = await db.execute(
            update(User).where(User.phone == phone_number).values(phone_verified=True)
        )

        logger.info("otp_verified", users_updated=result.rowcount)
        return {"success": True, "message": "Phone number verified"}
