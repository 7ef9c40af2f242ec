"""
Admin API: users, API keys, transactions and analytics.

Every route requires an admin session.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.analytics import AnalyticsService
from zpay.core.api_keys import ApiKeyService
from zpay.core.transactions import TransactionService
from zpay.core.users import UserService
from zpay.database.connection import get_db
from zpay.database.models import TransactionStatus, User

from .deps import (
    get_analytics_service,
    get_api_key_service,
    get_transaction_service,
    get_user_service,
    require_admin,
)
from .schemas import (
    AdminApiKeyCreateRequest,
    AdminApiKeyList,
    AdminPasswordResetRequest,
    AdminTransactionList,
    AdminTransactionResponse,
    AdminUserCreateRequest,
    AdminUserUpdateRequest,
    ApiKeyFeeRequest,
    ApiKeyResponse,
    ApiKeyUpdateRequest,
    SuccessResponse,
    SystemStatsResponse,
    TransactionStatsResponse,
    TransactionStatusRequest,
    UserDetailResponse,
    UserResponse,
    ZcashAddressRequest,
)

logger = structlog.get_logger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@admin_router.get("/users", response_model=List[UserDetailResponse], summary="List users")
async def get_all_users(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> List[User]:
    return await user_service.get_all_users(db)


@admin_router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
)
async def create_user(
    request: AdminUserCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    logger.info("api_admin_create_user", admin_id=admin.id)
    return await user_service.create_user(db, **request.model_dump())


@admin_router.get("/users/{user_id}", response_model=UserDetailResponse, summary="Get a user")
async def get_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.get_user_by_id(db, user_id)


@admin_router.patch("/users/{user_id}", response_model=UserResponse, summary="Update a user")
async def update_user(
    user_id: str,
    request: AdminUserUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.update_user(db, user_id, request.model_dump(exclude_unset=True))


@admin_router.delete("/users/{user_id}", response_model=SuccessResponse, summary="Delete a user")
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    return await user_service.delete_user(db, admin, user_id)


@admin_router.put(
    "/users/{user_id}/zcash-address",
    response_model=UserResponse,
    summary="Set a user's Zcash address",
)
async def update_zcash_address(
    user_id: str,
    request: ZcashAddressRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.update_zcash_address(db, user_id, request.zcash_address)


@admin_router.post(
    "/users/{user_id}/toggle-admin",
    response_model=UserResponse,
    summary="Toggle a user's admin flag",
)
async def toggle_admin_status(
    user_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> User:
    return await user_service.toggle_admin_status(db, admin, user_id)


@admin_router.post(
    "/users/{user_id}/reset-password",
    response_model=SuccessResponse,
    summary="Set a user's password",
)
async def reset_user_password(
    user_id: str,
    request: AdminPasswordResetRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    return await user_service.reset_user_password(db, user_id, request.new_password)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@admin_router.get("/api-keys", response_model=AdminApiKeyList, summary="List all API keys")
async def list_api_keys(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Dict[str, Any]:
    return await api_key_service.list_all(db, page=page, limit=limit)


@admin_router.post(
    "/api-keys",
    response_model=ApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a live API key for a user",
)
async def create_api_key(
    request: AdminApiKeyCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Any:
    return await api_key_service.create_for_user(
        db, request.user_id, request.name, request.transaction_fee
    )


@admin_router.post(
    "/api-keys/{api_key_id}/toggle",
    response_model=ApiKeyResponse,
    summary="Activate or deactivate an API key",
)
async def toggle_api_key(
    api_key_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Any:
    return await api_key_service.toggle_status(db, api_key_id)


@admin_router.patch(
    "/api-keys/{api_key_id}", response_model=ApiKeyResponse, summary="Update an API key"
)
async def update_api_key(
    api_key_id: str,
    request: ApiKeyUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Any:
    return await api_key_service.update(db, api_key_id, **request.model_dump(exclude_unset=True))


@admin_router.put(
    "/api-keys/{api_key_id}/fee",
    response_model=ApiKeyResponse,
    summary="Set an API key's transaction fee",
)
async def update_api_key_fee(
    api_key_id: str,
    request: ApiKeyFeeRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Any:
    return await api_key_service.update_fee(db, api_key_id, request.transaction_fee)


@admin_router.delete(
    "/api-keys/{api_key_id}", response_model=SuccessResponse, summary="Delete an API key"
)
async def delete_api_key(
    api_key_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    api_key_service: ApiKeyService = Depends(get_api_key_service),
) -> Dict[str, Any]:
    return await api_key_service.admin_delete(db, api_key_id)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@admin_router.get(
    "/transactions", response_model=AdminTransactionList, summary="List all transactions"
)
async def list_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: Literal["created_at", "amount", "status", "fee"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transaction_service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    return await transaction_service.list_all(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        status=status_filter,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )


@admin_router.get(
    "/transactions/stats",
    response_model=TransactionStatsResponse,
    summary="Transaction totals for a period",
)
async def transaction_stats(
    period: Literal["day", "week", "month", "year", "all"] = "month",
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transaction_service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    return await transaction_service.get_stats(db, period)


@admin_router.get(
    "/transactions/{transaction_id}",
    response_model=AdminTransactionResponse,
    summary="Get a transaction",
)
async def get_transaction(
    transaction_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transaction_service: TransactionService = Depends(get_transaction_service),
) -> Any:
    return await transaction_service.get_by_id(db, transaction_id)


@admin_router.put(
    "/transactions/{transaction_id}/status",
    response_model=AdminTransactionResponse,
    summary="Correct a transaction's status",
)
async def update_transaction_status(
    transaction_id: str,
    request: TransactionStatusRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transaction_service: TransactionService = Depends(get_transaction_service),
) -> Any:
    logger.info(
        "api_admin_transaction_status",
        admin_id=admin.id,
        transaction_id=transaction_id,
        status=request.status.value,
    )
    return await transaction_service.update_status(db, transaction_id, request.status)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@admin_router.get("/stats/system", response_model=SystemStatsResponse, summary="System totals")
async def system_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, int]:
    return await user_service.get_system_stats(db)


@admin_router.get("/stats/db-schema", summary="Row counts and storage estimates")
async def db_schema_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics_service.get_db_schema_stats(db)


@admin_router.get("/stats/user-growth", summary="User sign-ups over time")
async def user_growth_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics_service.get_user_growth_stats(db)


@admin_router.get("/stats/entity-relations", summary="Per-user entity counts")
async def entity_relation_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics_service.get_entity_relation_stats(db)


@admin_router.get("/stats/api-usage", summary="API usage over the last days")
async def api_usage_stats(
    days: int = Query(default=30, ge=1, le=90),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics_service.get_api_usage_stats(db, days)
