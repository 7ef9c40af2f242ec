"""
API key management for dashboard users and admins.

Users get ``zv_test_`` keys from the dashboard; keys issued by an admin or
after a purchase are ``zv_live_`` keys.
"""
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from zpay.config import Settings, get_settings
from zpay.core.exceptions import BadRequestError, NotFoundError
from zpay.core.security import generate_api_key
from zpay.database.models import ApiKey, User

logger = structlog.get_logger(__name__)

DEFAULT_KEY_NAME = "Default API Key"


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


class ApiKeyService:
    """Create, list, update and revoke API keys."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    # -- user operations -------------------------------------------------

    async def generate_api_key(
        self, db: AsyncSession, user: User, name: Optional[str] = None
    ) -> Dict[str, Any]:
        api_key = ApiKey(
            key=generate_api_key(live=False),
            name=name or DEFAULT_KEY_NAME,
            user_id=user.id,
        )
        db.add(api_key)
        await db.flush()

        logger.info("api_key_generated", user_id=user.id, api_key_id=api_key.id)
        return {"success": True, "api_key": api_key.key, "id": api_key.id}

    async def delete_api_key(
        self, db: AsyncSession, user: User, api_key_id: str
    ) -> Dict[str, Any]:
        """
        Delete one of the caller's keys.

        Raises:
            NotFoundError: if the key does not exist or belongs to someone else
        """
        api_key = await db.scalar(
            select(ApiKey).where(ApiKey.id == api_key_id, ApiKey.user_id == user.id)
        )
        if api_key is None:
            raise NotFoundError("API key not found")

        await db.delete(api_key)
        await db.flush()

        logger.info("api_key_deleted", user_id=user.id, api_key_id=api_key_id)
        return {"success": True}

    async def list_api_keys(self, db: AsyncSession, user: User) -> List[ApiKey]:
        result = await db.scalars(
            select(ApiKey).where(ApiKey.user_id == user.id).order_by(ApiKey.created_at.desc())
        )
        return list(result)

    async def get_owned_key(self, db: AsyncSession, user: User, api_key_id: str) -> ApiKey:
        api_key = await db.scalar(
            select(ApiKey).where(ApiKey.id == api_key_id, ApiKey.user_id == user.id)
        )
        if api_key is None:
            raise NotFoundError("API key not found")
        return api_key

    # -- admin operations ------------------------------------------------

    async def _get(self, db: AsyncSession, api_key_id: str) -> ApiKey:
        api_key = await db.get(ApiKey, api_key_id)
        if api_key is None:
            raise NotFoundError("API key not found")
        return api_key

    async def list_all(self, db: AsyncSession, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """Every key with its owner's email and username, newest first."""
        total = await db.scalar(select(func.count()).select_from(ApiKey)) or 0

        result = await db.scalars(
            select(ApiKey)
            .options(selectinload(ApiKey.user))
            .order_by(ApiKey.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        api_keys = [
            {
                "id": key.id,
                "key": key.key,
                "name": key.name,
                "user_id": key.user_id,
                "is_active": key.is_active,
                "transaction_fee": key.transaction_fee,
                "total_usage": key.total_usage,
                "monthly_usage": key.monthly_usage,
                "usage_limit": key.usage_limit,
                "last_used_at": key.last_used_at,
                "created_at": key.created_at,
                "updated_at": key.updated_at,
                "user": {"email": key.user.email, "username": key.user.username},
            }
            for key in result
        ]
        return {"api_keys": api_keys, "pagination": pagination(total, page, limit)}

    async def create_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        name: str,
        transaction_fee: float,
    ) -> ApiKey:
        """
        Issue a live key for a user.

        Raises:
            NotFoundError: if the user does not exist
        """
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        api_key = ApiKey(
            key=generate_api_key(live=True),
            name=name,
            user_id=user_id,
            transaction_fee=Decimal(str(transaction_fee)),
        )
        db.add(api_key)
        await db.flush()

        logger.info("admin_api_key_created", user_id=user_id, api_key_id=api_key.id)
        return api_key

    async def admin_delete(self, db: AsyncSession, api_key_id: str) -> Dict[str, Any]:
        api_key = await self._get(db, api_key_id)
        await db.delete(api_key)
        await db.flush()

        logger.info("admin_api_key_deleted", api_key_id=api_key_id)
        return {"success": True}

    async def toggle_status(self, db: AsyncSession, api_key_id: str) -> ApiKey:
        api_key = await self._get(db, api_key_id)
        api_key.is_active = not api_key.is_active
        await db.flush()

        logger.info("api_key_status_toggled", api_key_id=api_key_id, is_active=api_key.is_active)
        return api_key

    async def update(
        self,
        db: AsyncSession,
        api_key_id: str,
        name: Optional[str] = None,
        total_usage: Optional[int] = None,
        monthly_usage: Optional[int] = None,
        usage_limit: Optional[int] = None,
        transaction_fee: Optional[float] = None,
    ) -> ApiKey:
        api_key = await self._get(db, api_key_id)

        if name is not None:
            api_key.name = name
        if total_usage is not None:
            api_key.total_usage = total_usage
        if monthly_usage is not None:
            api_key.monthly_usage = monthly_usage
        if usage_limit is not None:
            api_key.usage_limit = usage_limit
        if transaction_fee is not None:
            api_key.transaction_fee = Decimal(str(transaction_fee))
        await db.flush()

        logger.info("api_key_updated", api_key_id=api_key_id)
        return api_key

    async def update_fee(self, db: AsyncSession, api_key_id: str, fee: float) -> ApiKey:
        """
        Set the fee percentage charged on a key's transactions.

        Raises:
            BadRequestError: if fee is outside 0..100
        """
        if fee < 0 or fee > 100:
            raise BadRequestError("Transaction fee must be between 0 and 100")

        api_key = await self._get(db, api_key_id)
        api_key.transaction_fee = Decimal(str(fee))
        await db.flush()

        logger.info("api_key_fee_updated", api_key_id=api_key_id, fee=fee)
        return api_key

    # -- billing ---------------------------------------------------------

    async def top_up(self, db: AsyncSession, user_id: str) -> int:
        """
        Reset usage allowance after a purchase.

        Raises the usage limit on every key the user owns, or issues a live
        default key when they have none. Returns the number of keys touched.
        """
        keys = list(await db.scalars(select(ApiKey).where(ApiKey.user_id == user_id)))

        if not keys:
            db.add(
                ApiKey(
                    key=generate_api_key(live=True),
                    name=DEFAULT_KEY_NAME,
                    user_id=user_id,
                    transaction_fee=Decimal(str(self.settings.default_live_transaction_fee)),
                    usage_limit=self.settings.top_up_usage_limit,
                )
            )
            await db.flush()
            logger.info("top_up_key_created", user_id=user_id)
            return 1

        for key in keys:
            key.usage_limit = self.settings.top_up_usage_limit
        await db.flush()

        logger.info("top_up_applied", user_id=user_id, api_keys=len(keys))
        return len(keys)
