"""
Transaction listing, statistics and status updates.

Transactions are written when the payment automation service reports a
payment; the dashboard only reads them, and admins may correct status.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from zpay.core.api_keys import pagination
from zpay.core.exceptions import BadRequestError, NotFoundError
from zpay.core.security import utcnow
from zpay.database.models import ApiKey, Transaction, TransactionStatus, User

logger = structlog.get_logger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Transaction.created_at,
    "amount": Transaction.amount,
    "status": Transaction.status,
    "fee": Transaction.fee,
}

STATS_PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}

MAX_USER_LIST_LIMIT = 100


def _apply_filters(
    query: Select,
    status: Optional[TransactionStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[str] = None,
    client_user_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
) -> Select:
    if status is not None:
        query = query.where(Transaction.status == status)
    if start_date is not None:
        query = query.where(Transaction.created_at >= start_date)
    if end_date is not None:
        query = query.where(Transaction.created_at <= end_date)
    if user_id:
        query = query.where(Transaction.user_id == user_id)
    if client_user_id:
        query = query.where(Transaction.client_user_id == client_user_id)
    if invoice_id:
        query = query.where(Transaction.invoice_id == invoice_id)
    return query


class TransactionService:
    """Read and administer payment transactions."""

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        status: Optional[TransactionStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        client_user_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        sort_direction: str = "desc",
        limit: int = 50,
    ) -> Dict[str, Any]:
        """The caller's transactions, filtered, plus the unpaginated match count."""
        limit = max(1, min(limit, MAX_USER_LIST_LIMIT))
        filters = dict(
            status=status,
            start_date=start_date,
            end_date=end_date,
            user_id=user.id,
            client_user_id=client_user_id,
            invoice_id=invoice_id,
        )

        total_count = await db.scalar(
            _apply_filters(select(func.count()).select_from(Transaction), **filters)
        )

        order = (
            Transaction.created_at.asc()
            if sort_direction == "asc"
            else Transaction.created_at.desc()
        )
        result = await db.scalars(
            _apply_filters(select(Transaction), **filters)
            .options(selectinload(Transaction.api_key))
            .order_by(order)
            .limit(limit)
        )
        return {"transactions": list(result), "total_count": total_count or 0}

    async def list_all(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        status: Optional[TransactionStatus] = None,
        user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Admin listing across all users with owner email and key name.

        Raises:
            BadRequestError: on an unknown sort column
        """
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise BadRequestError(f"Cannot sort transactions by {sort_by}")

        filters = dict(
            status=status, start_date=start_date, end_date=end_date, user_id=user_id
        )
        total = await db.scalar(
            _apply_filters(select(func.count()).select_from(Transaction), **filters)
        ) or 0

        result = await db.scalars(
            _apply_filters(select(Transaction), **filters)
            .options(selectinload(Transaction.user), selectinload(Transaction.api_key))
            .order_by(column.asc() if sort_order == "asc" else column.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return {"transactions": list(result), "pagination": pagination(total, page, limit)}

    async def get_by_id(self, db: AsyncSession, transaction_id: str) -> Transaction:
        transaction = await db.scalar(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .options(selectinload(Transaction.user), selectinload(Transaction.api_key))
        )
        if transaction is None:
            raise NotFoundError("Transaction not found")
        return transaction

    async def get_stats(self, db: AsyncSession, period: str = "month") -> Dict[str, Any]:
        """
        Totals and per-status counts for the trailing period.

        Raises:
            BadRequestError: on an unknown period
        """
        if period not in STATS_PERIODS:
            raise BadRequestError(f"Unknown period {period}")

        window = STATS_PERIODS[period]
        since = utcnow() - window if window is not None else None

        totals_query = select(
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0),
            func.coalesce(func.sum(Transaction.fee), 0),
        )
        status_query = select(Transaction.status, func.count(Transaction.id)).group_by(
            Transaction.status
        )
        if since is not None:
            totals_query = totals_query.where(Transaction.created_at >= since)
            status_query = status_query.where(Transaction.created_at >= since)

        count, volume, fees = (await db.execute(totals_query)).one()
        statuses = {status.value.lower(): 0 for status in TransactionStatus}
        for status, status_count in (await db.execute(status_query)).all():
            statuses[TransactionStatus(status).value.lower()] = status_count

        return {
            "period": period,
            "total_transactions": count,
            "total_volume": float(volume),
            "total_fees": float(fees),
            "statuses": statuses,
        }

    async def update_status(
        self, db: AsyncSession, transaction_id: str, status: TransactionStatus
    ) -> Transaction:
        transaction = await self.get_by_id(db, transaction_id)
        previous = transaction.status
        transaction.status = status
        if status == TransactionStatus.COMPLETED:
            transaction.completed_at = utcnow()
        await db.flush()

        logger.info(
            "transaction_status_updated",
            transaction_id=transaction_id,
            previous_status=previous.value,
            status=status.value,
        )
        return transaction

    async def record_transaction(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        api_key: Optional[ApiKey] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        invoice_id: Optional[str] = None,
        client_user_id: Optional[str] = None,
        tx_hashes: Optional[List[str]] = None,
        addresses_used: Optional[List[str]] = None,
    ) -> Transaction:
        """Store a payment reported for a user; the fee follows the key's percentage."""
        amount = Decimal(str(amount))
        fee = None
        if api_key is not None:
            fee = amount * Decimal(str(api_key.transaction_fee)) / Decimal(100)

        transaction = Transaction(
            user_id=user_id,
            amount=amount,
            fee=fee,
            status=status,
            invoice_id=invoice_id,
            client_user_id=client_user_id,
            tx_hashes=list(tx_hashes or []),
            addresses_used=list(addresses_used or []),
            api_key_id=api_key.id if api_key is not None else None,
            completed_at=utcnow() if status == TransactionStatus.COMPLETED else None,
        )
        db.add(transaction)
        await db.flush()

        logger.info(
            "transaction_recorded",
            transaction_id=transaction.id,
            user_id=user_id,
            invoice_id=invoice_id,
        )
        return transaction
