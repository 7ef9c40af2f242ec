"""
License issuance and usage accounting for self-hosted instances.

Self-hosted payment processors authenticate with their API key, report how
many transactions they have processed and periodically exchange the key for
a short-lived RS256 license token.
"""
import math
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import jwt
import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import Settings, get_settings
from zpay.core.exceptions import (
    ServiceNotConfiguredError,
    UnauthorizedError,
    UsageLimitExceededError,
)
from zpay.core.security import utcnow
from zpay.database.models import ApiKey
from zpay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

LICENSE_ALGORITHM = "RS256"
DEFAULT_TIER = "payg"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _reported_count(value: Any) -> Optional[int]:
    """Counters are whole transactions; fractional reports are truncated."""
    if not _is_number(value) or not math.isfinite(value):
        return None
    return int(value)


def _adopt_or_increment(column: Any, reported: Optional[int]) -> Any:
    if reported is None:
        return column + 1
    return case((column < reported, reported), else_=column + 1)


class LicenseService:
    """Validate API keys, record usage and sign license tokens."""

    def __init__(
        self,
        private_key: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._private_key = private_key

    @property
    def private_key(self) -> str:
        if self._private_key is None:
            path = Path(self.settings.license_private_key_path)
            try:
                self._private_key = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.error("license_key_unreadable", path=str(path), error=str(e))
                raise ServiceNotConfiguredError(
                    f"License signing key could not be read from {path}"
                ) from e
        return self._private_key

    async def validate_api_key(self, db: AsyncSession, key: Optional[str]) -> ApiKey:
        """
        Look up an active key.

        Raises:
            UnauthorizedError: if the key is empty, unknown or inactive
        """
        if not key:
            raise UnauthorizedError("API key required")

        api_key = await db.scalar(select(ApiKey).where(ApiKey.key == key))
        if api_key is None or not api_key.is_active:
            raise UnauthorizedError("Invalid or inactive API key")
        return api_key

    async def increment_usage(
        self,
        db: AsyncSession,
        key: Optional[str],
        usage: Any = None,
        monthly_usage: Any = None,
    ) -> Dict[str, int]:
        """
        Record one processed transaction, or adopt higher reported counters.

        Instances that were offline report their own counters; a reported
        value only replaces the stored one when it is larger. Any counter not
        replaced is incremented by one.

        The comparison and the write happen in a single UPDATE so that
        concurrent reports for the same key never lose an increment.
        """
        api_key = await self.validate_api_key(db, key)

        reported_total = _reported_count(usage)
        reported_monthly = _reported_count(monthly_usage)
        adopts_report = (reported_total is not None and reported_total > api_key.total_usage) or (
            reported_monthly is not None and reported_monthly > api_key.monthly_usage
        )

        await db.execute(
            update(ApiKey)
            .where(ApiKey.id == api_key.id)
            .values(
                total_usage=_adopt_or_increment(ApiKey.total_usage, reported_total),
                monthly_usage=_adopt_or_increment(ApiKey.monthly_usage, reported_monthly),
                last_used_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(api_key)
        metrics.record_usage_increment("reported" if adopts_report else "increment")

        logger.info(
            "api_key_usage_recorded",
            api_key_id=api_key.id,
            total_usage=api_key.total_usage,
            monthly_usage=api_key.monthly_usage,
        )
        return {"total_usage": api_key.total_usage, "monthly_usage": api_key.monthly_usage}

    async def activate(
        self,
        db: AsyncSession,
        key: Optional[str],
        monthly_usage: Any = None,
        instance_id: Optional[str] = None,
        version: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Issue a 24 hour license for a self-hosted instance.

        Raises:
            UnauthorizedError: if the key is invalid
            UsageLimitExceededError: if stored or reported monthly usage is
                over the cap
        """
        try:
            api_key = await self.validate_api_key(db, key)
        except UnauthorizedError:
            metrics.record_license_activation("rejected")
            raise

        cap = self.settings.license_monthly_usage_cap
        if api_key.monthly_usage > cap or (_is_number(monthly_usage) and monthly_usage > cap):
            metrics.record_license_activation("limit_exceeded")
            logger.warning(
                "license_usage_limit_exceeded",
                api_key_id=api_key.id,
                monthly_usage=api_key.monthly_usage,
                reported_monthly_usage=monthly_usage,
            )
            raise UsageLimitExceededError(
                api_key_id=api_key.id, monthly_usage=api_key.monthly_usage, limit=cap
            )

        issued = utcnow()
        expires = issued + timedelta(seconds=self.settings.license_ttl_seconds)
        issued_at = int(issued.timestamp())
        expires_at = int(expires.timestamp())

        payload = {
            "licenseId": api_key.id,
            "clientId": api_key.user_id,
            "tier": api_key.name or DEFAULT_TIER,
            "txCap": api_key.usage_limit or cap,
            "txUsed": api_key.monthly_usage or 0,
            "issuedAt": issued_at,
            "expiresAt": expires_at,
            "instanceId": instance_id,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.private_key, algorithm=LICENSE_ALGORITHM)

        metrics.record_license_activation("issued")
        logger.info(
            "license_issued",
            api_key_id=api_key.id,
            instance_id=instance_id,
            version=version,
            expires_at=expires_at,
        )
        return {"access_token": token, "expires_at": expires_at}
