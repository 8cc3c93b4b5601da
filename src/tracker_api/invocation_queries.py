from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credential_pool.db_models import utcnow
from tracker_api.db_models import InvocationEvent


def _sum_float(column: Any) -> Any:
    return func.coalesce(func.sum(column), 0.0)


def _count_where(condition: Any) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _window_start(days: int) -> datetime:
    return utcnow() - timedelta(days=days)


async def fetch_invocations_by_provider(
    session: AsyncSession,
    *,
    days: int,
) -> list[dict[str, int | float | str]]:
    rows = await session.execute(
        select(
            InvocationEvent.provider,
            func.count(InvocationEvent.id),
            _count_where(InvocationEvent.success.is_(True)),
            _sum_float(InvocationEvent.quantity),
            _sum_float(InvocationEvent.cost),
            func.coalesce(func.avg(InvocationEvent.duration_ms), 0.0),
        )
        .where(InvocationEvent.timestamp >= _window_start(days))
        .group_by(InvocationEvent.provider)
        .order_by(func.count(InvocationEvent.id).desc(), InvocationEvent.provider.asc())
    )

    return [
        {
            "provider": row[0],
            "request_count": int(row[1]),
            "success_count": int(row[2]),
            "failure_count": int(row[1]) - int(row[2]),
            "quantity": float(row[3]),
            "cost": float(row[4]),
            "avg_duration_ms": round(float(row[5]), 1),
        }
        for row in rows
    ]


async def fetch_invocations_by_day(
    session: AsyncSession,
    *,
    days: int,
    provider: str | None = None,
) -> list[dict[str, int | float | str]]:
    day_bucket = func.date(InvocationEvent.timestamp)
    query = select(
        day_bucket,
        func.count(InvocationEvent.id),
        _count_where(InvocationEvent.success.is_(True)),
        _sum_float(InvocationEvent.cost),
    ).where(InvocationEvent.timestamp >= _window_start(days))
    if provider:
        query = query.where(InvocationEvent.provider == provider)

    rows = await session.execute(query.group_by(day_bucket).order_by(day_bucket.asc()))

    return [
        {
            "day": str(row[0]),
            "request_count": int(row[1]),
            "success_count": int(row[2]),
            "cost": float(row[3]),
        }
        for row in rows
    ]
