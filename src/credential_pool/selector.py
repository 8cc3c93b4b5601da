# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account selection.

Priority-weighted round-robin: the highest priority tier always wins while
any of its accounts is available, and within a tier the least recently used
account goes first. Selection is read-only; nothing is committed until the
caller actually dispatches.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .db_models import Account, utcnow
from .error_handler import mask_credential
from .repository import AccountRepository
from .tracker import check_rate_limit, has_reached_monthly_limit

lib_logger = logging.getLogger("credential_pool")


class AccountSelector:
    """Picks the single best account for the next call, or None."""

    async def select(
        self,
        session: AsyncSession,
        provider: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Account]:
        """
        Select the best available account.

        Args:
            session: Session the returned account stays attached to
            provider: Provider to select from, or None for any provider
            now: Evaluation time

        Returns:
            The first candidate passing its rate and monthly probes, or None
        """
        now = now or utcnow()
        candidates = await AccountRepository(session).list_candidates(provider, now)

        for account in candidates:
            if has_reached_monthly_limit(account, now):
                lib_logger.debug(
                    f"Skipping {mask_credential(account.credential)}: monthly limit reached"
                )
                continue
            if not check_rate_limit(account, now):
                lib_logger.debug(
                    f"Skipping {mask_credential(account.credential)}: rate limited "
                    f"({account.requests_this_window}/{account.rate_limit_max})"
                )
                continue
            return account

        lib_logger.info(
            f"No available account for {provider or 'any provider'} "
            f"({len(candidates)} candidates checked)"
        )
        return None
