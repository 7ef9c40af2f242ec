"""
Registration, login sessions and password reset.

Sessions are opaque bearer tokens stored in the sessions table. Password
reset tokens live on the user row with an expiry.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.config import Settings, get_settings
from zpay.core.exceptions import BadRequestError, ConflictError, UnauthorizedError
from zpay.core.security import (
    as_utc,
    generate_reset_token,
    generate_session_token,
    hash_password,
    make_username,
    utcnow,
    verify_password,
)
from zpay.database.models import Account, Session, User
from zpay.integrations.email import EmailSender

logger = structlog.get_logger(__name__)


class AuthService:
    """Credential sign-up, sign-in and password recovery."""

    def __init__(
        self,
        email_sender: Optional[EmailSender] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.email_sender = email_sender or EmailSender(self.settings)

    async def register_user(
        self,
        db: AsyncSession,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        mobile_number: str,
    ) -> Dict[str, Any]:
        """
        Create a user with a credentials account.

        Raises:
            ConflictError: if the email is already registered
        """
        existing = await db.scalar(select(User).where(User.email == email))
        if existing is not None:
            raise ConflictError("User with this email already exists.")

        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password=hash_password(password),
            phone=mobile_number,
            username=make_username(first_name),
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

        logger.info("user_registered", user_id=user.id)

        try:
            await self.email_sender.send(
                email,
                "Welcome to ZPay",
                f"<p>Hi {first_name} {last_name},</p>"
                "<p>Your ZPay account is ready. Generate an API key from your "
                "account page to start accepting shielded Zcash payments.</p>",
            )
        except Exception as e:
            # Registration succeeds even when the welcome email cannot be sent
            logger.warning("welcome_email_failed", user_id=user.id, error=str(e))

        return {"success": True, "message": "User registered successfully"}

    async def login(self, db: AsyncSession, email: str, password: str) -> Dict[str, Any]:
        """
        Verify credentials and open a session.

        Raises:
            UnauthorizedError: on unknown email or wrong password
        """
        user = await db.scalar(select(User).where(User.email == email))
        if user is None or not verify_password(password, user.password):
            logger.info("login_failed", email=email)
            raise UnauthorizedError("Invalid email or password")

        expires = utcnow() + timedelta(seconds=self.settings.session_ttl_seconds)
        session = Session(
            session_token=generate_session_token(),
            user_id=user.id,
            expires=expires,
        )
        db.add(session)
        await db.flush()

        logger.info("login_succeeded", user_id=user.id)
        return {
            "access_token": session.session_token,
            "token_type": "bearer",
            "expires_at": expires,
            "user_id": user.id,
            "is_admin": user.is_admin,
        }

    async def logout(self, db: AsyncSession, token: str) -> None:
        await db.execute(delete(Session).where(Session.session_token == token))

    async def resolve_session(self, db: AsyncSession, token: Optional[str]) -> User:
        """
        Return the user behind a session token.

        Raises:
            UnauthorizedError: if the token is missing, unknown or expired
        """
        if not token:
            raise UnauthorizedError("Authentication required")

        session = await db.scalar(select(Session).where(Session.session_token == token))
        if session is None:
            raise UnauthorizedError("Invalid session")

        if as_utc(session.expires) <= utcnow():
            await db.delete(session)
            # Committed here because the request's session rolls back on raise
            await db.commit()
            raise UnauthorizedError("Session expired")

        user = await db.get(User, session.user_id)
        if user is None:
            raise UnauthorizedError("Invalid session")
        return user

    async def request_password_reset(self, db: AsyncSession, email: str) -> Dict[str, Any]:
        """
        Issue a reset token and email the link.

        Always reports success so the endpoint cannot be used to probe
        which emails are registered.
        """
        response = {
            "success": True,
            "message": "If an account exists for that email, a reset link has been sent.",
        }

        user = await db.scalar(select(User).where(User.email == email))
        if user is None:
            logger.info("password_reset_unknown_email")
            return response

        user.reset_token = generate_reset_token()
        user.reset_token_expiry = utcnow() + timedelta(
            seconds=self.settings.password_reset_ttl_seconds
        )
        await db.flush()

        reset_url = (
            f"{self.settings.public_base_url.rstrip('/')}/auth/reset-password/{user.reset_token}"
        )
        try:
            await self.email_sender.send(
                user.email,
                "Reset your ZPay password",
                f'<p>Click <a href="{reset_url}">here</a> to reset your password. '
                "The link expires in one hour.</p>",
            )
        except Exception as e:
            logger.error("password_reset_email_failed", user_id=user.id, error=str(e))

        logger.info("password_reset_requested", user_id=user.id)
        return response

    async def _user_for_reset_token(self, db: AsyncSession, token: str) -> Optional[User]:
        user = await db.scalar(select(User).where(User.reset_token == token))
        if user is None or user.reset_token_expiry is None:
            return None
        if as_utc(user.reset_token_expiry) <= utcnow():
            return None
        return user

    async def verify_reset_token(self, db: AsyncSession, token: str) -> Dict[str, Any]:
        user = await self._user_for_reset_token(db, token)
        return {"valid": user is not None}

    async def reset_password(
        self, db: AsyncSession, token: str, new_password: str
    ) -> Dict[str, Any]:
        """
        Set a new password from a reset token and sign out everywhere.

        Raises:
            BadRequestError: if the token is unknown or expired
        """
        user = await self._user_for_reset_token(db, token)
        if user is None:
            raise BadRequestError("Invalid or expired reset token")

        user.password = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        await db.execute(delete(Session).where(Session.user_id == user.id))
        await db.flush()

        logger.info("password_reset_completed", user_id=user.id)
        return {"success": True, "message": "Password has been reset"}
