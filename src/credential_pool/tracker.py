# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Quota and rate tracking for pool accounts.

Answers "can this account take one more call right now?" and applies the
consequences of a call. Probes (`check_*`, `is_*`, `effective_*`) never
mutate the account, so the selector can scan candidates freely. Mutators
change the in-memory row only; the caller persists immediately after.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from .config import ERROR_THRESHOLD, MONTHLY_RESET_DAYS, RATE_WINDOW_SECONDS
from .db_models import Account, utcnow
from .types import AccountStatus, PlanType, UsageCounter

lib_logger = logging.getLogger("credential_pool")


# =============================================================================
# PROBES (read-only)
# =============================================================================


def _window_expired(account: Account, now: datetime) -> bool:
    if account.window_started_at is None:
        return True
    elapsed = (now - account.window_started_at).total_seconds()
    return elapsed > RATE_WINDOW_SECONDS


def check_rate_limit(account: Account, now: Optional[datetime] = None) -> bool:
    """True if the account has a free slot in its current 60 s window."""
    now = now or utcnow()
    used = 0 if _window_expired(account, now) else (account.requests_this_window or 0)
    return used < account.rate_limit_max


def is_expired(account: Account, now: Optional[datetime] = None) -> bool:
    """Trial horizon passed. Paid plans and accounts without a horizon never expire."""
    if account.plan_type == PlanType.PAID.value or account.trial_ends_at is None:
        return False
    now = now or utcnow()
    return now > account.trial_ends_at


def is_unlimited(account: Account) -> bool:
    return not account.total_capacity


def has_capacity(account: Account) -> bool:
    """A capacity of 0 is the unlimited sentinel and never exhausts."""
    if is_unlimited(account):
        return True
    return account.remaining_capacity > 0


def usage_percentage(account: Account) -> float:
    if is_unlimited(account):
        return 0.0
    return (account.used_capacity / account.total_capacity) * 100


def _monthly_reset_due(account: Account, now: datetime) -> bool:
    if account.last_month_reset is None:
        return True
    return now - account.last_month_reset >= timedelta(days=MONTHLY_RESET_DAYS)


def effective_monthly_requests(account: Account, now: Optional[datetime] = None) -> int:
    """Monthly request count as it would read after a due rolling reset."""
    now = now or utcnow()
    if _monthly_reset_due(account, now):
        return 0
    return account.monthly_requests or 0


def has_reached_monthly_limit(account: Account, now: Optional[datetime] = None) -> bool:
    if not account.monthly_limit:
        return False
    return effective_monthly_requests(account, now) >= account.monthly_limit


def is_selectable(account: Account, now: Optional[datetime] = None) -> bool:
    """Every availability condition an account must meet to be handed out."""
    now = now or utcnow()
    return (
        account.status == AccountStatus.ACTIVE.value
        and has_capacity(account)
        and not is_expired(account, now)
        and not has_reached_monthly_limit(account, now)
        and check_rate_limit(account, now)
    )


# =============================================================================
# MUTATORS
# =============================================================================


def _is_disabled(account: Account) -> bool:
    return account.status == AccountStatus.DISABLED.value


def increment_rate_limit(account: Account, now: Optional[datetime] = None) -> None:
    """Commit one rate-limit slot, starting a fresh window if the old one lapsed."""
    now = now or utcnow()
    if _window_expired(account, now):
        account.requests_this_window = 1
        account.window_started_at = now
    else:
        account.requests_this_window = (account.requests_this_window or 0) + 1


def reset_monthly_if_due(account: Account, now: Optional[datetime] = None) -> bool:
    """Apply the 30-day rolling monthly reset. Returns True if it fired."""
    now = now or utcnow()
    if not _monthly_reset_due(account, now):
        return False
    account.monthly_requests = 0
    account.last_month_reset = now
    return True


def _add_usage(account: Account, counter: UsageCounter, quantity: float) -> None:
    if not quantity:
        return
    if counter == UsageCounter.AUDIO_SECONDS:
        account.total_audio_seconds = (account.total_audio_seconds or 0) + quantity
    elif counter == UsageCounter.CHARACTERS:
        account.total_characters = (account.total_characters or 0) + int(quantity)


def _count_request(account: Account, *, success: bool) -> None:
    account.total_requests = (account.total_requests or 0) + 1
    account.monthly_requests = (account.monthly_requests or 0) + 1
    if success:
        account.successful_requests = (account.successful_requests or 0) + 1
    else:
        account.failed_requests = (account.failed_requests or 0) + 1


def record_success(
    account: Account,
    quantity: float = 0.0,
    cost: float = 0.0,
    *,
    counter: UsageCounter = UsageCounter.NONE,
    now: Optional[datetime] = None,
) -> None:
    """
    Apply a successful call's usage.

    Args:
        account: Account the call was dispatched on
        quantity: Audio seconds or characters, added to `counter`
        cost: Amount charged against the account's capacity
        counter: Which cumulative counter `quantity` feeds
        now: Timestamp of the call
    """
    now = now or utcnow()
    _add_usage(account, counter, quantity)
    _count_request(account, success=True)

    account.used_capacity = (account.used_capacity or 0) + cost
    account.remaining_capacity = (account.total_capacity or 0) - account.used_capacity
    account.last_used_at = now

    if _is_disabled(account):
        return

    if not is_unlimited(account) and account.remaining_capacity <= 0:
        account.status = AccountStatus.EXHAUSTED.value
        lib_logger.warning(
            f"Account '{account.name}' ({account.provider}) exhausted: "
            f"{account.used_capacity:.4f}/{account.total_capacity:.4f}"
        )

    if is_expired(account, now):
        account.status = AccountStatus.EXPIRED.value
        lib_logger.warning(f"Account '{account.name}' ({account.provider}) trial expired")


def record_error(
    account: Account, message: str, *, now: Optional[datetime] = None
) -> None:
    """Record one consecutive failure; the fifth trips the circuit breaker."""
    account.last_error = message
    account.error_count = (account.error_count or 0) + 1
    _count_request(account, success=False)

    if account.error_count >= ERROR_THRESHOLD and not _is_disabled(account):
        if account.status != AccountStatus.ERROR.value:
            lib_logger.warning(
                f"Account '{account.name}' ({account.provider}) disabled after "
                f"{account.error_count} consecutive errors"
            )
        account.status = AccountStatus.ERROR.value


def record_error_reset(account: Account) -> None:
    """Clear the consecutive-error state after a success."""
    account.error_count = 0
    account.last_error = None
    if account.status == AccountStatus.ERROR.value:
        account.status = AccountStatus.ACTIVE.value
        lib_logger.info(f"Account '{account.name}' ({account.provider}) recovered")


def reconcile_status(account: Account, now: Optional[datetime] = None) -> None:
    """
    Re-derive capacity-driven state after an admin edit.

    A top-up lifts `exhausted` and a new horizon or paid plan lifts
    `expired`; the reverse transitions apply as well. `error` and
    `disabled` are left alone.
    """
    now = now or utcnow()
    account.remaining_capacity = (account.total_capacity or 0) - (account.used_capacity or 0)

    if account.status in (AccountStatus.ERROR.value, AccountStatus.DISABLED.value):
        return

    if not has_capacity(account):
        account.status = AccountStatus.EXHAUSTED.value
    elif is_expired(account, now):
        account.status = AccountStatus.EXPIRED.value
    else:
        account.status = AccountStatus.ACTIVE.value
