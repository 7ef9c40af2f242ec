"""
Admin analytics: table sizes, user growth, per-user entity counts and API usage.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.security import as_utc, utcnow
from zpay.database.models import (
    Account,
    ApiKey,
    Session,
    Transaction,
    User,
    WebhookConfig,
)

logger = structlog.get_logger(__name__)

# Rough per-row storage estimates in KB
STORAGE_KB_PER_ROW = {
    "users": (User, 0.5),
    "accounts": (Account, 0.3),
    "sessions": (Session, 0.2),
    "api_keys": (ApiKey, 0.2),
    "webhooks": (WebhookConfig, 0.3),
    "transactions": (Transaction, 0.4),
}

RELATED_ENTITIES = {
    "accounts": Account,
    "sessions": Session,
    "api_keys": ApiKey,
    "transactions": Transaction,
}

TOP_API_KEYS = 5


def median(values: Sequence[float]) -> float:
    """Median of an already sorted sequence; mean of the middle pair when even."""
    if not values:
        return 0
    mid = len(values) // 2
    if len(values) % 2 == 0:
        return (values[mid - 1] + values[mid]) / 2
    return values[mid]


def subtract_months(moment: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` earlier, clamped to the month's last day."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=moment.tzinfo)
    last_day = (next_month - timedelta(days=1)).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def month_start(moment: datetime, months_back: int) -> datetime:
    start = subtract_months(moment.replace(day=1), months_back)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


class AnalyticsService:
    """Aggregate statistics for the admin analytics page."""

    async def _count(self, db: AsyncSession, model: Any, *criteria: Any) -> int:
        query = select(func.count()).select_from(model)
        if criteria:
            query = query.where(*criteria)
        return await db.scalar(query) or 0

    async def get_db_schema_stats(self, db: AsyncSession) -> Dict[str, Any]:
        counts = {}
        estimates = {}
        for name, (model, kb_per_row) in STORAGE_KB_PER_ROW.items():
            counts[name] = await self._count(db, model)
            estimates[name] = counts[name] * kb_per_row

        total_kb = sum(estimates.values())
        return {
            "counts": counts,
            "storage_estimates": {
                **estimates,
                "total_kb": total_kb,
                "total_mb": total_kb / 1024,
                "total_gb": total_kb / (1024 * 1024),
            },
        }

    async def get_user_growth_stats(self, db: AsyncSession) -> Dict[str, Any]:
        now = utcnow()
        windows = {
            "last_24h": now - timedelta(days=1),
            "last_7d": now - timedelta(days=7),
            "last_30d": subtract_months(now, 1),
            "last_90d": subtract_months(now, 3),
            "last_180d": subtract_months(now, 6),
            "last_365d": subtract_months(now, 12),
        }

        stats: Dict[str, Any] = {"total": await self._count(db, User)}
        for name, since in windows.items():
            stats[name] = await self._count(db, User, User.created_at >= since)

        monthly_data = []
        for months_back in range(11, -1, -1):
            start = month_start(now, months_back)
            end = month_start(now, months_back - 1)
            monthly_data.append(
                {
                    "month": start.strftime("%b %Y"),
                    "count": await self._count(
                        db, User, User.created_at >= start, User.created_at < end
                    ),
                }
            )
        stats["monthly_data"] = monthly_data
        return stats

    async def get_entity_relation_stats(self, db: AsyncSession) -> Dict[str, Any]:
        user_ids = list(await db.scalars(select(User.id)))
        total_users = len(user_ids)

        averages = {}
        distributions = {}
        for name, model in RELATED_ENTITIES.items():
            per_user = dict(
                (await db.execute(
                    select(model.user_id, func.count()).group_by(model.user_id)
                )).all()
            )
            counts = sorted(per_user.get(user_id, 0) for user_id in user_ids)

            averages[f"{name}_per_user"] = sum(counts) / total_users if total_users else 0
            distributions[name] = {
                "min": counts[0] if counts else 0,
                "max": counts[-1] if counts else 0,
                "median": median(counts),
            }

        return {"averages": averages, "distributions": distributions}

    async def get_api_usage_stats(self, db: AsyncSession, days: int = 30) -> Dict[str, Any]:
        """
        Usage derived from key counters and recorded transactions.

        ``total_requests`` sums every key's lifetime usage; the daily series
        counts transactions created on each of the last ``days`` days.
        """
        now = utcnow()
        since = (now - timedelta(days=days - 1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )

        total_requests = await db.scalar(select(func.coalesce(func.sum(ApiKey.total_usage), 0)))
        unique_users = await db.scalar(
            select(func.count(func.distinct(ApiKey.user_id))).where(ApiKey.total_usage > 0)
        )

        top_keys = await db.execute(
            select(ApiKey.id, ApiKey.name, ApiKey.user_id, ApiKey.total_usage)
            .where(ApiKey.total_usage > 0)
            .order_by(ApiKey.total_usage.desc())
            .limit(TOP_API_KEYS)
        )

        created = await db.scalars(
            select(Transaction.created_at).where(Transaction.created_at >= since)
        )
        per_day: Dict[str, int] = {}
        for created_at in created:
            day = as_utc(created_at).date().isoformat()
            per_day[day] = per_day.get(day, 0) + 1

        daily_stats: List[Dict[str, Any]] = []
        for offset in range(days - 1, -1, -1):
            day = (now - timedelta(days=offset)).date().isoformat()
            daily_stats.append({"date": day, "requests": per_day.get(day, 0)})

        window_total = sum(per_day.values())
        return {
            "total_requests": int(total_requests or 0),
            "unique_users": unique_users or 0,
            "avg_requests_per_day": window_total / days,
            "top_api_keys": [
                {"id": key_id, "name": name, "user_id": user_id, "count": usage}
                for key_id, name, user_id, usage in top_keys.all()
            ],
            "daily_stats": daily_stats,
        }
