"""
Tests for transaction listing, stats and status updates.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.exceptions import BadRequestError, NotFoundError
from zpay.core.security import utcnow
from zpay.core.transactions import TransactionService
from zpay.database.models import ApiKey, Transaction, TransactionStatus, User


@pytest.fixture
def transaction_service() -> TransactionService:
    return TransactionService()


@pytest_asyncio.fixture
async def merchant(db: AsyncSession) -> User:
    user = User(email="merchant@example.com")
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def merchant_key(db: AsyncSession, merchant: User) -> ApiKey:
    api_key = ApiKey(
        key="zv_live_merchant", name="Shop", user_id=merchant.id, transaction_fee=Decimal("2")
    )
    db.add(api_key)
    await db.flush()
    return api_key


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_transaction_computes_fee(
    db: AsyncSession,
    transaction_service: TransactionService,
    merchant: User,
    merchant_key: ApiKey,
) -> None:
    transaction = await transaction_service.record_transaction(
        db,
        merchant.id,
        Decimal("1.5"),
        api_key=merchant_key,
        invoice_id="inv-1",
        tx_hashes=["abc"],
    )

    assert transaction.fee == Decimal("0.03")
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.api_key_id == merchant_key.id
    assert transaction.tx_hashes == ["abc"]
    assert transaction.addresses_used == []
    assert transaction.completed_at is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_without_key_has_no_fee(
    db: AsyncSession, transaction_service: TransactionService, merchant: User
) -> None:
    transaction = await transaction_service.record_transaction(
        db, merchant.id, Decimal("2"), status=TransactionStatus.COMPLETED
    )

    assert transaction.fee is None
    assert transaction.completed_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_for_user_filters_and_counts(
    db: AsyncSession,
    transaction_service: TransactionService,
    merchant: User,
    merchant_key: ApiKey,
) -> None:
    other = User(email="other@example.com")
    db.add(other)
    await db.flush()
    for index in range(3):
        await transaction_service.record_transaction(
            db, merchant.id, Decimal(index + 1), api_key=merchant_key, invoice_id=f"inv-{index}"
        )
    await transaction_service.record_transaction(
        db, merchant.id, Decimal("9"), status=TransactionStatus.FAILED
    )
    await transaction_service.record_transaction(db, other.id, Decimal("5"))

    result = await transaction_service.list_for_user(db, merchant, limit=2)
    assert result["total_count"] == 4
    assert len(result["transactions"]) == 2

    pending = await transaction_service.list_for_user(
        db, merchant, status=TransactionStatus.PENDING
    )
    assert pending["total_count"] == 3
    assert {t.api_key.name for t in pending["transactions"]} == {"Shop"}

    by_invoice = await transaction_service.list_for_user(db, merchant, invoice_id="inv-1")
    assert [t.invoice_id for t in by_invoice["transactions"]] == ["inv-1"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_for_user_respects_dates(
    db: AsyncSession, transaction_service: TransactionService, merchant: User
) -> None:
    now = utcnow()
    db.add_all(
        [
            Transaction(user_id=merchant.id, amount=1, created_at=now - timedelta(days=10)),
            Transaction(user_id=merchant.id, amount=2, created_at=now - timedelta(days=1)),
        ]
    )
    await db.flush()

    result = await transaction_service.list_for_user(
        db, merchant, start_date=now - timedelta(days=5), sort_direction="asc"
    )

    assert result["total_count"] == 1
    assert result["transactions"][0].amount == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_all_paginates_and_rejects_bad_sort(
    db: AsyncSession, transaction_service: TransactionService, merchant: User
) -> None:
    for amount in (3, 1, 2):
        await transaction_service.record_transaction(db, merchant.id, Decimal(amount))

    result = await transaction_service.list_all(
        db, page=1, limit=2, sort_by="amount", sort_order="asc"
    )

    assert [t.amount for t in result["transactions"]] == [1, 2]
    assert result["transactions"][0].user.email == "merchant@example.com"
    assert result["pagination"]["total"] == 3
    assert result["pagination"]["total_pages"] == 2

    with pytest.raises(BadRequestError):
        await transaction_service.list_all(db, sort_by="password")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_by_id_missing(
    db: AsyncSession, transaction_service: TransactionService
) -> None:
    with pytest.raises(NotFoundError, match="Transaction not found"):
        await transaction_service.get_by_id(db, "missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_status_sets_completed_at(
    db: AsyncSession, transaction_service: TransactionService, merchant: User
) -> None:
    transaction = await transaction_service.record_transaction(db, merchant.id, Decimal("1"))

    updated = await transaction_service.update_status(
        db, transaction.id, TransactionStatus.PROCESSING
    )
    assert updated.completed_at is None

    updated = await transaction_service.update_status(
        db, transaction.id, TransactionStatus.COMPLETED
    )
    assert updated.status == TransactionStatus.COMPLETED
    assert updated.completed_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stats_by_period(
    db: AsyncSession,
    transaction_service: TransactionService,
    merchant: User,
    merchant_key: ApiKey,
) -> None:
    await transaction_service.record_transaction(
        db, merchant.id, Decimal("10"), api_key=merchant_key, status=TransactionStatus.COMPLETED
    )
    await transaction_service.record_transaction(db, merchant.id, Decimal("5"))
    db.add(
        Transaction(
            user_id=merchant.id,
            amount=Decimal("100"),
            status=TransactionStatus.FAILED,
            created_at=utcnow() - timedelta(days=60),
        )
    )
    await db.flush()

    month = await transaction_service.get_stats(db, "month")
    assert month["total_transactions"] == 2
    assert month["total_volume"] == pytest.approx(15.0)
    assert month["total_fees"] == pytest.approx(0.2)
    assert month["statuses"] == {
        "pending": 1,
        "processing": 0,
        "completed": 1,
        "failed": 0,
        "reversed": 0,
    }

    everything = await transaction_service.get_stats(db, "all")
    assert everything["total_transactions"] == 3
    assert everything["statuses"]["failed"] == 1

    with pytest.raises(BadRequestError):
        await transaction_service.get_stats(db, "decade")
