"""
FastAPI dependencies: database session, current user and shared services.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.analytics import AnalyticsService
from zpay.core.api_keys import ApiKeyService
from zpay.core.auth import AuthService
from zpay.core.billing import BillingService
from zpay.core.exceptions import UnauthorizedError
from zpay.core.licensing import LicenseService
from zpay.core.otp import OtpService
from zpay.core.payments import PaymentService
from zpay.core.transactions import TransactionService
from zpay.core.users import UserService
from zpay.core.webhooks import WebhookService
from zpay.database.connection import get_db
from zpay.database.models import User
from zpay.integrations.payment_api import PaymentApiClient

bearer_scheme = HTTPBearer(auto_error=False)


# Services are built lazily so settings can be overridden before first use
@lru_cache()
def get_auth_service() -> AuthService:
    return AuthService()


@lru_cache()
def get_otp_service() -> OtpService:
    return OtpService()


@lru_cache()
def get_user_service() -> UserService:
    return UserService()


@lru_cache()
def get_api_key_service() -> ApiKeyService:
    return ApiKeyService()


@lru_cache()
def get_license_service() -> LicenseService:
    return LicenseService()


@lru_cache()
def get_webhook_service() -> WebhookService:
    return WebhookService()


@lru_cache()
def get_transaction_service() -> TransactionService:
    return TransactionService()


@lru_cache()
def get_analytics_service() -> AnalyticsService:
    return AnalyticsService()


@lru_cache()
def get_payment_api_client() -> PaymentApiClient:
    return PaymentApiClient()


def get_payment_service(
    client: PaymentApiClient = Depends(get_payment_api_client),
) -> PaymentService:
    return PaymentService(client)


@lru_cache()
def get_billing_service() -> BillingService:
    return BillingService(api_key_service=get_api_key_service())


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


async def get_current_user(
    token: Optional[str] = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the bearer session token to a user, or raise UNAUTHORIZED."""
    return await auth_service.resolve_session(db, token)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise UnauthorizedError("Only admins can access this resource")
    return user
