# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite stores DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Account(Base):
    """One credential for one provider, with its quota, rate and error state."""

    __tablename__ = "pool_accounts"
    __table_args__ = (
        Index("ix_pool_accounts_selection", "provider", "status", "priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128))
    provider: Mapped[str] = mapped_column(String(32), index=True)
    credential: Mapped[str] = mapped_column(Text, unique=True)
    priority: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)
    plan_type: Mapped[str] = mapped_column(String(16), default="trial")

    total_capacity: Mapped[float] = mapped_column(Float, default=0.0)
    used_capacity: Mapped[float] = mapped_column(Float, default=0.0)
    remaining_capacity: Mapped[float] = mapped_column(Float, default=0.0)

    rate_limit_max: Mapped[int] = mapped_column(Integer, default=5)
    requests_this_window: Mapped[int] = mapped_column(Integer, default=0)
    window_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    trial_started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, index=True
    )

    error_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_requests: Mapped[int] = mapped_column(Integer, default=0)
    successful_requests: Mapped[int] = mapped_column(Integer, default=0)
    failed_requests: Mapped[int] = mapped_column(Integer, default=0)
    total_audio_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    total_characters: Mapped[int] = mapped_column(Integer, default=0)
    monthly_requests: Mapped[int] = mapped_column(Integer, default=0)
    monthly_limit: Mapped[int] = mapped_column(Integer, default=0)
    last_month_reset: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    notes: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Account(id={self.id}, provider='{self.provider}', "
            f"name='{self.name}', status='{self.status}')>"
        )
