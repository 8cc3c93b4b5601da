# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account persistence.

The repository never commits; the pool owns the unit of work so each
bookkeeping step is persisted exactly when it happens.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import ProviderConfig
from .db_models import Account, as_naive_utc, utcnow
from .types import AccountStatus, PlanType


def build_account(
    config: ProviderConfig,
    credential: str,
    *,
    now: Optional[datetime] = None,
    name: Optional[str] = None,
    priority: Optional[int] = None,
    total_capacity: Optional[float] = None,
    plan_type: Optional[str] = None,
    rate_limit_max: Optional[int] = None,
    monthly_limit: Optional[int] = None,
    trial_ends_at: Optional[datetime] = None,
    settings: Optional[dict[str, Any]] = None,
    notes: str = "",
) -> Account:
    """Create an unsaved account with every field populated from provider defaults."""
    now = now or utcnow()
    capacity = config.default_total_capacity if total_capacity is None else total_capacity
    plan = plan_type or config.default_plan_type.value
    trial_ends_at = as_naive_utc(trial_ends_at)

    if trial_ends_at is None and config.trial_days is not None and plan != PlanType.PAID.value:
        trial_ends_at = now + timedelta(days=config.trial_days)

    merged_settings = dict(config.default_settings)
    merged_settings.update(settings or {})

    return Account(
        name=name or config.default_name,
        provider=config.provider.value,
        credential=credential,
        priority=config.default_priority if priority is None else priority,
        status=AccountStatus.ACTIVE.value,
        plan_type=plan,
        total_capacity=capacity,
        used_capacity=0.0,
        remaining_capacity=capacity,
        rate_limit_max=rate_limit_max or config.default_rate_limit,
        requests_this_window=0,
        window_started_at=None,
        trial_started_at=now,
        trial_ends_at=trial_ends_at,
        last_used_at=None,
        error_count=0,
        last_error=None,
        total_requests=0,
        successful_requests=0,
        failed_requests=0,
        total_audio_seconds=0.0,
        total_characters=0,
        monthly_requests=0,
        monthly_limit=config.default_monthly_limit if monthly_limit is None else monthly_limit,
        last_month_reset=now,
        settings=merged_settings,
        notes=notes,
        created_at=now,
        updated_at=now,
    )


class AccountRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, account_id: int) -> Optional[Account]:
        return await self.db.get(Account, account_id)

    async def get_by_credential(self, credential: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.credential == credential)
        )
        return result.scalar_one_or_none()

    async def list_all(self, provider: Optional[str] = None) -> Sequence[Account]:
        query = select(Account)
        if provider:
            query = query.where(Account.provider == provider)
        result = await self.db.execute(
            query.order_by(
                Account.provider.asc(),
                Account.priority.desc(),
                Account.created_at.asc(),
                Account.id.asc(),
            )
        )
        return result.scalars().all()

    async def list_candidates(
        self,
        provider: Optional[str],
        now: datetime,
    ) -> Sequence[Account]:
        """
        Accounts eligible before the rate probe.

        Ordered by priority (desc), then least recently used with never-used
        accounts first, then id for a stable order among ties.
        """
        query = select(Account).where(
            Account.status == AccountStatus.ACTIVE.value,
            or_(Account.total_capacity == 0, Account.remaining_capacity > 0),
            or_(
                Account.plan_type == PlanType.PAID.value,
                Account.trial_ends_at.is_(None),
                Account.trial_ends_at > now,
            ),
        )
        if provider:
            query = query.where(Account.provider == provider)

        result = await self.db.execute(
            query.order_by(
                Account.priority.desc(),
                Account.last_used_at.is_not(None),
                Account.last_used_at.asc(),
                Account.id.asc(),
            )
        )
        return result.scalars().all()

    async def add(self, account: Account) -> Account:
        self.db.add(account)
        await self.db.flush()
        await self.db.refresh(account)
        return account

    async def delete(self, account_id: int) -> bool:
        result = await self.db.execute(delete(Account).where(Account.id == account_id))
        await self.db.flush()
        return (result.rowcount or 0) > 0
