"""
API routes for authentication, the account page and monitoring.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.api_keys import ApiKeyService
from zpay.core.auth import AuthService
from zpay.core.exceptions import UnauthorizedError
from zpay.core.otp import OtpService
from zpay.core.payments import PaymentService
from zpay.core.transactions import TransactionService
from zpay.core.users import UserService
from zpay.core.webhooks import WebhookService
from zpay.database.connection import get_db
from zpay.database.models import TransactionStatus, User
from zpay.monitoring.health import HealthCheck

from .deps import (
    get_api_key_service,
    get_auth_service,
    get_bearer_token,
    get_current_user,
    get_otp_service,
    get_payment_service,
    get_transaction_service,
    get_user_service,
    get_webhook_service,
)
from .schemas import (
    ApiKeyResponse,
    ApiKeyTestRequest,
    ApiKeyTestResponse,
    GenerateApiKeyRequest,
    GenerateApiKeyResponse,
    HealthCheckResponse,
    LoginRequest,
    LoginResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    SendOtpRequest,
    SendOtpResponse,
    SuccessResponse,
    TokenValidity,
    TransactionSyncRequest,
    UserDetailResponse,
    UserResponse,
    UserTransactionList,
    VerifyOtpRequest,
    WebhookConfigRequest,
    WebhookConfigResponse,
    WebhookSecretResponse,
    WebhookTestRequest,
    WebhookTestResponse,
)


# Create routers
auth_router = APIRouter(prefix="/auth", tags=["auth"])
account_router = APIRouter(prefix="/account", tags=["account"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@auth_router.post(
    "/register",
    response_model=SuccessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account with email and password",
)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return await auth_service.register_user(
        db,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password,
        mobile_number=request.mobile_number,
    )


@auth_router.post("/login", response_model=LoginResponse, summary="Log in")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return await auth_service.login(db, request.email, request.password)


@auth_router.post("/logout", response_model=SuccessResponse, summary="Log out")
async def logout(
    token: Optional[str] = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    if not token:
        raise UnauthorizedError("Authentication required")
    await auth_service.logout(db, token)
    return {"success": True}


@auth_router.get("/me", response_model=UserResponse, summary="Current user")
async def me(user: User = Depends(get_current_user)) -> User:
    return user


@auth_router.post(
    "/otp/send",
    response_model=SendOtpResponse,
    summary="Send phone verification code",
)
async def send_otp(
    request: SendOtpRequest,
    otp_service: OtpService = Depends(get_otp_service),
) -> Dict[str, Any]:
    return await otp_service.send_phone_otp(request.phone_number)


@auth_router.post(
    "/otp/verify",
    response_model=SuccessResponse,
    summary="Verify phone verification code",
)
async def verify_otp(
    request: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
) -> Dict[str, Any]:
    return await otp_service.verify_phone_otp(db, request.phone_number, request.otp)


@auth_router.post(
    "/password-reset/request",
    response_model=SuccessResponse,
    summary="Request a password reset link",
)
async def request_password_reset(
    request: PasswordResetRequest,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return await auth_service.request_password_reset(db, request.email)


@auth_router.get(
    "/password-reset/verify/{token}",
    response_model=TokenValidity,
    summary="Check a password reset token",
)
async def verify_reset_token(
    token: str,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return await auth_service.verify_reset_token(db, token)


@auth_router.post(
    "/password-reset/confirm",
    response_model=SuccessResponse,
    summary="Set a new password with a reset token",
)
async def confirm_password_reset(
    request: PasswordResetConfirm,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return await auth_service.reset_password(db, request.token, request.new_password)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@account_router.get("/profile", response_model=UserDetailResponse, summary="Get profile")
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.get_profile(db, user)


@account_router.patch("/profile", response_model=UserDetailResponse, summary="Update profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.update_profile(db, user, request.model_dump(exclude_unset=True))


@account_router.get("/api-keys", response_model=List[ApiKeyResponse], summary="List API keys")
async def list_api_keys(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> List[Any]:
    return await api_key_service.list_api_keys(db, user)


@account_router.post(
    "/api-keys",
    response_model=GenerateApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate an API key",
)
async def generate_api_key(
    request: GenerateApiKeyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Dict[str, Any]:
    return await api_key_service.generate_api_key(db, user, request.name)


@account_router.delete(
    "/api-keys/{api_key_id}", response_model=SuccessResponse, summary="Delete an API key"
)
async def delete_api_key(
    api_key_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Dict[str, Any]:
    return await api_key_service.delete_api_key(db, user, api_key_id)


@account_router.post(
    "/api-keys/test",
    response_model=ApiKeyTestResponse,
    summary="Test an API key",
    description="Create an invoice on the payment automation API with one of your keys",
)
async def test_api_key(
    request: ApiKeyTestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
    payment_service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    api_key = await api_key_service.get_owned_key(db, user, request.api_key_id)
    return await payment_service.test_api_key(
        api_key.key, request.user_id, request.invoice_id, request.amount
    )


@account_router.get(
    "/webhook", response_model=Optional[WebhookConfigResponse], summary="Get webhook config"
)
async def get_webhook(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> Any:
    return await webhook_service.get_config(db, user)


@account_router.put(
    "/webhook", response_model=WebhookConfigResponse, summary="Create or update webhook config"
)
async def save_webhook(
    request: WebhookConfigRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> Any:
    return await webhook_service.save_config(db, user, str(request.url), request.secret)


@account_router.post(
    "/webhook/secret", response_model=WebhookSecretResponse, summary="Generate a webhook secret"
)
async def generate_webhook_secret(
    user: User = Depends(get_current_user),
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> Dict[str, str]:
    return {"secret": webhook_service.generate_secret()}


@account_router.post(
    "/webhook/test", response_model=WebhookTestResponse, summary="Send a test webhook"
)
async def test_webhook(
    request: WebhookTestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    return await webhook_service.test_webhook(db, user, request.invoice_id, request.user_id)


@account_router.get(
    "/transactions", response_model=UserTransactionList, summary="List your transactions"
)
async def list_transactions(
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    client_user_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    sort_direction: Literal["asc", "desc"] = "desc",
    limit: int = Query(default=50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    transaction_service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    return await transaction_service.list_for_user(
        db,
        user,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        client_user_id=client_user_id,
        invoice_id=invoice_id,
        sort_direction=sort_direction,
        limit=limit,
    )


@account_router.post(
    "/transactions/sync",
    response_model=SuccessResponse,
    summary="Sync with the payment automation service",
)
async def sync_transactions(
    request: TransactionSyncRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
    payment_service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    api_key = await api_key_service.get_owned_key(db, user, request.api_key_id)
    return await payment_service.sync_shared_data(api_key.key)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Per-dependency status; always 200, unlike /health/ready."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint; 503 until the database answers."""
    result = await health_check.readiness()
    if result["status"] != "ready":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
