"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, EmailStr, Field, field_validator

from zpay.database.models import TransactionStatus


class ORMModel(BaseModel):
    """Base for responses built from SQLAlchemy objects."""

    model_config = ConfigDict(from_attributes=True)


class SuccessResponse(BaseModel):
    success: bool = Field(..., description="Whether the operation succeeded")
    message: Optional[str] = Field(default=None, description="Human readable outcome")


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request schema for credential sign-up."""

    first_name: str = Field(..., min_length=1, description="First name")
    last_name: str = Field(..., min_length=1, description="Last name")
    email: EmailStr = Field(..., description="Login email")
    password: str = Field(
        ..., min_length=6, max_length=72, description="Password (bcrypt limit 72)"
    )
    mobile_number: str = Field(..., min_length=1, description="Mobile phone number")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "first_name": "Ada",
                    "last_name": "Lovelace",
                    "email": "ada@example.com",
                    "password": "s3cret-pass",
                    "mobile_number": "+15551234567",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=72)


class LoginResponse(BaseModel):
    """Bearer session issued on login."""

    access_token: str = Field(..., description="Session token for the Authorization header")
    token_type: str = Field(default="bearer")
    expires_at: datetime = Field(..., description="Session expiry")
    user_id: str
    is_admin: bool


class SendOtpRequest(BaseModel):
    phone_number: str = Field(..., min_length=10, description="Phone number to verify")


class SendOtpResponse(SuccessResponse):
    otp: Optional[str] = Field(default=None, description="Code echoed in development only")


class VerifyOtpRequest(BaseModel):
    phone_number: str = Field(..., min_length=10)
    otp: str = Field(..., min_length=6, max_length=6, description="Six digit code")


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=72)


class TokenValidity(BaseModel):
    valid: bool


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ApiKeySummary(ORMModel):
    id: str
    key: str
    name: Optional[str] = None
    is_active: bool
    created_at: datetime


class WebhookSummary(ORMModel):
    id: str
    url: str
    is_active: bool


class UserResponse(ORMModel):
    """User profile as shown in the dashboard and admin panel."""

    id: str
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool = False
    zcash_address: Optional[str] = None
    is_admin: bool
    email_verified: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserDetailResponse(UserResponse):
    api_keys: List[ApiKeySummary] = Field(default_factory=list)
    webhook_config: Optional[WebhookSummary] = None


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    zcash_address: Optional[str] = Field(default=None, min_length=1)


class AdminUserUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3)
    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    zcash_address: Optional[str] = None
    is_admin: Optional[bool] = None


class AdminUserCreateRequest(BaseModel):
    """Request schema for creating a user from the admin panel."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    username: Optional[str] = Field(default=None, min_length=3)
    phone: Optional[str] = None
    zcash_address: Optional[str] = None
    is_admin: bool = False
    password: str = Field(..., min_length=8, max_length=72)


class ZcashAddressRequest(BaseModel):
    zcash_address: str = Field(..., min_length=1, description="t1/t3/zs/zc address")


class AdminPasswordResetRequest(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=72)


class SystemStatsResponse(BaseModel):
    total_users: int
    active_api_keys: int
    webhook_configs: int
    new_users: int


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class ApiKeyResponse(ORMModel):
    """Full API key record."""

    id: str
    key: str
    name: Optional[str] = None
    user_id: str
    is_active: bool
    transaction_fee: Decimal
    total_usage: int
    monthly_usage: int
    usage_limit: int
    last_used_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ApiKeyOwner(BaseModel):
    email: str
    username: Optional[str] = None


class AdminApiKeyResponse(ApiKeyResponse):
    user: ApiKeyOwner


class AdminApiKeyList(BaseModel):
    api_keys: List[AdminApiKeyResponse]
    pagination: Pagination


class GenerateApiKeyRequest(BaseModel):
    name: Optional[str] = Field(default=None, description="Label; defaults to 'Default API Key'")


class GenerateApiKeyResponse(BaseModel):
    success: bool
    api_key: str = Field(..., description="The new key; shown once")
    id: str


class AdminApiKeyCreateRequest(BaseModel):
    user_id: str
    name: str = Field(..., min_length=1)
    transaction_fee: float = Field(default=2.5, ge=0, le=100, description="Fee percentage")


class ApiKeyUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    total_usage: Optional[int] = Field(default=None, ge=0)
    monthly_usage: Optional[int] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=0)
    transaction_fee: Optional[float] = Field(default=None, ge=0, le=100)


class ApiKeyFeeRequest(BaseModel):
    # Range is checked by the service so the error carries a BAD_REQUEST code
    transaction_fee: float


class ApiKeyTestRequest(BaseModel):
    """Parameters for creating a test invoice with one of the caller's keys."""

    api_key_id: str
    user_id: str = Field(..., min_length=1, description="Merchant-side user id")
    invoice_id: str = Field(..., min_length=1, description="Merchant-side invoice id")
    amount: float = Field(..., gt=0, description="Amount in ZEC")


class ApiKeyTestResponse(BaseModel):
    success: bool
    message: str
    response: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Licensing
# ---------------------------------------------------------------------------


class LicenseActivateRequest(BaseModel):
    """Activation request sent by self-hosted instances."""

    api_key: Optional[str] = Field(default=None, alias="apiKey")
    usage: Optional[Any] = None
    monthly_usage: Optional[Any] = Field(default=None, alias="monthlyUsage")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    version: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class LicenseActivateResponse(BaseModel):
    access_token: str = Field(..., serialization_alias="accessToken")
    expires_at: int = Field(..., serialization_alias="expiresAt")


class UsageIncrementRequest(BaseModel):
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    usage: Optional[Any] = None
    monthly_usage: Optional[Any] = Field(default=None, alias="monthlyUsage")

    model_config = ConfigDict(populate_by_name=True)


class UsageIncrementResponse(BaseModel):
    total_usage: int = Field(..., serialization_alias="totalUsage")
    monthly_usage: int = Field(..., serialization_alias="monthlyUsage")


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class WebhookConfigRequest(BaseModel):
    url: AnyHttpUrl = Field(..., description="Endpoint receiving payment events")
    secret: Optional[str] = Field(default=None, description="Signing secret; generated if omitted")


class WebhookConfigResponse(ORMModel):
    id: str
    url: str
    secret: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WebhookSecretResponse(BaseModel):
    secret: str


class WebhookTestRequest(BaseModel):
    invoice_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, description="Merchant-side user id")


class WebhookTestResponse(BaseModel):
    success: bool
    message: str
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    payload: Dict[str, Any]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionUser(ORMModel):
    email: str


class TransactionApiKey(ORMModel):
    name: Optional[str] = None


class TransactionResponse(ORMModel):
    """Payment transaction record."""

    id: str
    amount: Decimal
    fee: Optional[Decimal] = None
    status: TransactionStatus
    invoice_id: Optional[str] = None
    client_user_id: Optional[str] = None
    tx_hashes: List[str] = Field(default_factory=list)
    addresses_used: List[str] = Field(default_factory=list)
    user_id: str
    api_key_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class UserTransactionResponse(TransactionResponse):
    api_key: Optional[TransactionApiKey] = None


class AdminTransactionResponse(TransactionResponse):
    user: TransactionUser
    api_key: Optional[TransactionApiKey] = None


class UserTransactionList(BaseModel):
    transactions: List[UserTransactionResponse]
    total_count: int


class AdminTransactionList(BaseModel):
    transactions: List[AdminTransactionResponse]
    pagination: Pagination


class TransactionStatusRequest(BaseModel):
    status: TransactionStatus


class TransactionSyncRequest(BaseModel):
    api_key_id: str


class TransactionStatsResponse(BaseModel):
    period: str
    total_transactions: int
    total_volume: float
    total_fees: float
    statuses: Dict[str, int]


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class CheckoutSessionRequest(BaseModel):
    """Stripe Checkout parameters; amount is in the currency's minor unit."""

    amount: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    subscription: bool = False
    price_id: Optional[str] = Field(default=None, alias="priceId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(..., serialization_alias="sessionId")


class StripeWebhookResponse(BaseModel):
    received: bool


# ---------------------------------------------------------------------------
# Payments proxy
# ---------------------------------------------------------------------------


class CreateInvoiceRequest(BaseModel):
    api_key: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    invoice_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, description="Amount in ZEC; sent upstream x100")


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
