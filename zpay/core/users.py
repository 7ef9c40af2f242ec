"""
User administration and self-service profile updates.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from zpay.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from zpay.core.security import hash_password, is_valid_zcash_address, make_username
from zpay.database.models import (
    Account,
    ApiKey,
    Session,
    Transaction,
    User,
    WebhookConfig,
    utcnow,
)

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = (
    "email",
    "username",
    "first_name",
    "last_name",
    "phone",
    "zcash_address",
    "is_admin",
)

PROFILE_FIELDS = ("first_name", "last_name", "phone", "zcash_address")

NEW_USER_WINDOW = timedelta(days=30)


class UserService:
    """Admin CRUD over dashboard users."""

    async def _get(self, db: AsyncSession, user_id: str, with_relations: bool = False) -> User:
        query = select(User).where(User.id == user_id)
        if with_relations:
            query = query.options(
                selectinload(User.api_keys), selectinload(User.webhook_config)
            )
        user = await db.scalar(query)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _ensure_unique(
        self,
        db: AsyncSession,
        email: Optional[str] = None,
        username: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> None:
        if email:
            query = select(User.id).where(User.email == email)
            if exclude_id:
                query = query.where(User.id != exclude_id)
            if await db.scalar(query) is not None:
                raise ConflictError("Email already in use")

        if username:
            query = select(User.id).where(User.username == username)
            if exclude_id:
                query = query.where(User.id != exclude_id)
            if await db.scalar(query) is not None:
                raise ConflictError("Username already in use")

    async def get_all_users(self, db: AsyncSession) -> List[User]:
        """All users, newest first, with their keys and webhook."""
        result = await db.scalars(
            select(User)
            .options(selectinload(User.api_keys), selectinload(User.webhook_config))
            .order_by(User.created_at.desc())
        )
        return list(result)

    async def get_user_by_id(self, db: AsyncSession, user_id: str) -> User:
        return await self._get(db, user_id, with_relations=True)

    async def update_user(self, db: AsyncSession, user_id: str, data: Dict[str, Any]) -> User:
        """
        Apply admin edits to a user.

        Raises:
            NotFoundError: if the user does not exist
            ConflictError: if the new email or username is taken
        """
        user = await self._get(db, user_id)
        await self._ensure_unique(
            db, email=data.get("email"), username=data.get("username"), exclude_id=user_id
        )

        for field in UPDATABLE_FIELDS:
            if data.get(field) is not None:
                setattr(user, field, data[field])
        await db.flush()

        logger.info(
            "user_updated",
            user_id=user_id,
            fields=sorted(k for k, v in data.items() if v is not None),
        )
        return user

    async def delete_user(self, db: AsyncSession, actor: User, user_id: str) -> Dict[str, Any]:
        """
        Delete a user and everything they own.

        Raises:
            NotFoundError: if the user does not exist
            ForbiddenError: if an admin tries to delete themselves
        """
        user = await self._get(db, user_id)
        if user.id == actor.id:
            raise ForbiddenError("You cannot delete your own account")

        # Children first; SQLite does not enforce ON DELETE CASCADE by default
        for model in (Transaction, ApiKey, WebhookConfig, Session, Account):
            await db.execute(delete(model).where(model.user_id == user_id))
        await db.delete(user)
        await db.flush()

        logger.info("user_deleted", user_id=user_id, deleted_by=actor.id)
        return {"success": True}

    async def get_system_stats(self, db: AsyncSession) -> Dict[str, int]:
        total_users = await db.scalar(select(func.count()).select_from(User))
        active_api_keys = await db.scalar(
            select(func.count()).select_from(ApiKey).where(ApiKey.is_active.is_(True))
        )
        webhook_configs = await db.scalar(select(func.count()).select_from(WebhookConfig))
        new_users = await db.scalar(
            select(func.count())
            .select_from(User)
            .where(User.created_at >= utcnow() - NEW_USER_WINDOW)
        )
        return {
            "total_users": total_users or 0,
            "active_api_keys": active_api_keys or 0,
            "webhook_configs": webhook_configs or 0,
            "new_users": new_users or 0,
        }

    async def update_zcash_address(
        self, db: AsyncSession, user_id: str, zcash_address: str
    ) -> User:
        """
        Raises:
            NotFoundError: if the user does not exist
            BadRequestError: if the address prefix is not a Zcash one
        """
        user = await self._get(db, user_id)
        if not is_valid_zcash_address(zcash_address):
            raise BadRequestError("Invalid Zcash address format")

        user.zcash_address = zcash_address
        await db.flush()

        logger.info("zcash_address_updated", user_id=user_id)
        return user

    async def create_user(
        self,
        db: AsyncSession,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        username: Optional[str] = None,
        phone: Optional[str] = None,
        zcash_address: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        """
        Create a user directly, bypassing sign-up.

        Raises:
            ConflictError: if the email or username is taken
        """
        await self._ensure_unique(db, email=email, username=username)

        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            username=username or make_username(first_name),
            phone=phone,
            password=hash_password(password),
            zcash_address=zcash_address,
            is_admin=is_admin,
        )
        db.add(user)
        await db.flush()

        db.add(
            Account(
                user_id=user.id,
                type="credentials",
                provider="credentials",
                provider_account_id=user.id,
            )
        )
        await db.flush()

        logger.info("admin_user_created", user_id=user.id, is_admin=is_admin)
        return user

    async def toggle_admin_status(self, db: AsyncSession, actor: User, user_id: str) -> User:
        """
        Flip a user's admin flag.

        Raises:
            NotFoundError: if the user does not exist
            ForbiddenError: if an admin targets themselves
        """
        user = await self._get(db, user_id)
        if user.id == actor.id:
            raise ForbiddenError("You cannot change your own admin status")

        user.is_admin = not user.is_admin
        await db.flush()

        logger.info(
            "admin_status_toggled",
            user_id=user_id,
            is_admin=user.is_admin,
            changed_by=actor.id,
        )
        return user

    async def reset_user_password(
        self, db: AsyncSession, user_id: str, new_password: str
    ) -> Dict[str, Any]:
        user = await self._get(db, user_id)
        user.password = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        await db.flush()

        logger.info("admin_password_reset", user_id=user_id)
        return {"success": True}

    # -- self service ----------------------------------------------------

    async def get_profile(self, db: AsyncSession, user: User) -> User:
        return await self._get(db, user.id, with_relations=True)

    async def update_profile(self, db: AsyncSession, user: User, data: Dict[str, Any]) -> User:
        """
        Update the caller's own profile.

        Raises:
            BadRequestError: if a new Zcash address has an unknown prefix
        """
        zcash_address = data.get("zcash_address")
        if zcash_address is not None and not is_valid_zcash_address(zcash_address):
            raise BadRequestError("Invalid Zcash address format")

        for field in PROFILE_FIELDS:
            if data.get(field) is not None:
                setattr(user, field, data[field])
        await db.flush()

        logger.info("profile_updated", user_id=user.id)
        return await self.get_profile(db, user)
