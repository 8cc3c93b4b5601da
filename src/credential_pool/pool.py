# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
The credential pool service.

Owns selection, the invocation wrapper every provider call goes through,
and account administration. One instance is built per application and
passed to whoever needs it; there is no module-level pool.
"""

import logging
import time
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
)

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import ProviderConfig, load_provider_configs, parse_provider
from .db_models import Account, as_naive_utc, utcnow
from .error_handler import (
    AccountNotFound,
    DuplicateCredential,
    InvalidAccountConfig,
    InvalidCredential,
    NoAccountAvailable,
    PoolError,
    ProviderCallFailed,
    UnknownProvider,
    classify_error,
    is_credential_error,
    is_rate_limit_error,
    is_server_error,
    mask_credential,
    status_code_of,
)
from .failure_logger import log_failure
from .providers import PROVIDER_PLUGINS, ProviderInterface
from .providers.elevenlabs_provider import ElevenLabsProvider
from .repository import AccountRepository, build_account
from .selector import AccountSelector
from .tracker import (
    has_capacity,
    increment_rate_limit,
    is_expired,
    reconcile_status,
    record_error,
    record_error_reset,
    record_success,
    reset_monthly_if_due,
    usage_percentage,
)
from .types import (
    AccountStatus,
    AccountSummary,
    InvocationResult,
    PlanType,
    Provider,
    ProviderResponse,
)

lib_logger = logging.getLogger("credential_pool")

ProviderLike = Union[Provider, str]
ExternalCall = Callable[[Account, Any, httpx.AsyncClient], Awaitable[ProviderResponse]]
EventSink = Callable[[InvocationResult, Optional[str]], Awaitable[None]]

UPDATABLE_FIELDS = {
    "name",
    "priority",
    "status",
    "plan_type",
    "total_capacity",
    "used_capacity",
    "rate_limit_max",
    "monthly_limit",
    "trial_ends_at",
    "settings",
    "notes",
}
IMMUTABLE_FIELDS = {"provider", "credential"}
NULLABLE_FIELDS = {"trial_ends_at"}


def summarize_account(account: Account, now: Optional[datetime] = None) -> AccountSummary:
    now = now or utcnow()
    return AccountSummary(
        id=account.id,
        name=account.name,
        provider=account.provider,
        credential=mask_credential(account.credential, style="full"),
        priority=account.priority,
        status=account.status,
        plan_type=account.plan_type,
        total_capacity=account.total_capacity,
        used_capacity=account.used_capacity,
        remaining_capacity=account.remaining_capacity,
        usage_percentage=round(usage_percentage(account), 2),
        rate_limit_max=account.rate_limit_max,
        requests_this_window=account.requests_this_window,
        total_requests=account.total_requests,
        successful_requests=account.successful_requests,
        failed_requests=account.failed_requests,
        total_audio_seconds=account.total_audio_seconds,
        total_audio_hours=round(account.total_audio_seconds / 3600, 2),
        total_characters=account.total_characters,
        monthly_requests=account.monthly_requests,
        monthly_limit=account.monthly_limit,
        trial_ends_at=account.trial_ends_at,
        is_expired=is_expired(account, now),
        has_capacity=has_capacity(account),
        last_used_at=account.last_used_at,
        last_error=account.last_error,
        error_count=account.error_count,
        settings=dict(account.settings or {}),
        notes=account.notes or "",
        created_at=account.created_at,
    )


class CredentialPool:
    """
    Routes provider calls across redundant accounts.

    Every mutation of an account (rate slot, usage, error state) is committed
    before the call returns, so concurrent requests read fresh state. Writes
    are plain read-modify-write with last-writer-wins.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        provider_configs: Optional[Dict[Provider, ProviderConfig]] = None,
        providers: Optional[Dict[Provider, ProviderInterface]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 60.0,
        event_sink: Optional[EventSink] = None,
    ):
        self._session_maker = session_maker
        self.provider_configs = provider_configs or load_provider_configs()
        self._providers: Dict[Provider, ProviderInterface] = {
            name: plugin() for name, plugin in PROVIDER_PLUGINS.items()
        }
        self._providers.update(providers or {})
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._selector = AccountSelector()
        self._event_sink = event_sink

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    def set_event_sink(self, event_sink: Optional[EventSink]) -> None:
        self._event_sink = event_sink

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def _require_provider(self, provider: ProviderLike) -> Provider:
        parsed = parse_provider(provider)
        if parsed is None:
            raise UnknownProvider(provider)
        return parsed

    def get_provider(self, provider: ProviderLike) -> ProviderInterface:
        return self._providers[self._require_provider(provider)]

    # =========================================================================
    # SELECTION & INVOCATION
    # =========================================================================

    async def select_account(
        self, provider: Optional[ProviderLike] = None, now: Optional[datetime] = None
    ) -> Optional[Account]:
        """Read-only selection; nothing is committed."""
        provider_value = self._require_provider(provider).value if provider else None
        async with self._session_maker() as session:
            return await self._selector.select(session, provider_value, now)

    async def _bookkeep(
        self,
        session: AsyncSession,
        step: str,
        account_label: str,
        mutate: Callable[[], None],
    ) -> None:
        """Apply one mutation and persist it; failures are logged, never raised."""
        try:
            mutate()
            await session.commit()
        except Exception:
            lib_logger.exception(f"Failed to persist {step} for account '{account_label}'")
            try:
                await session.rollback()
            except Exception:
                lib_logger.exception("Rollback after failed bookkeeping also failed")

    async def _emit(self, result: InvocationResult, error_type: Optional[str]) -> None:
        if self._event_sink is None:
            return
        try:
            await self._event_sink(result, error_type)
        except Exception:
            lib_logger.exception("Invocation event sink failed")

    async def invoke(
        self,
        provider: Optional[ProviderLike],
        payload: Any,
        external_call: Optional[ExternalCall] = None,
    ) -> InvocationResult:
        """
        Select an account, dispatch the call on it, and record the outcome.

        Args:
            provider: Provider to route to, or None for any provider
            payload: Provider-specific request payload
            external_call: Override for the provider adapter's `call`

        Returns:
            A successful InvocationResult

        Raises:
            NoAccountAvailable: No account passes selection
            InvalidCredential: The provider rejected the selected credential
            ProviderCallFailed: Any other provider failure, message preserved
        """
        provider_value = self._require_provider(provider).value if provider else None
        started = time.perf_counter()

        async with self._session_maker() as session:
            now = utcnow()
            account = await self._selector.select(session, provider_value, now)
            if account is None:
                error = NoAccountAvailable(provider_value)
                await self._emit(
                    InvocationResult(
                        success=False,
                        provider=provider_value or "any",
                        error=str(error),
                        duration_ms=_elapsed_ms(started),
                    ),
                    type(error).__name__,
                )
                raise error

            account_id = account.id
            account_name = account.name
            account_provider = account.provider
            credential = account.credential
            config = self.provider_configs[Provider(account_provider)]

            def _commit_slot() -> None:
                reset_monthly_if_due(account, now)
                increment_rate_limit(account, now)

            await self._bookkeep(session, "rate-limit slot", account_name, _commit_slot)

            lib_logger.info(
                f"Dispatching {account_provider} call on '{account_name}' "
                f"({mask_credential(credential)})"
            )
            call = external_call or self._providers[Provider(account_provider)].call
            try:
                response = await call(account, payload, self.http_client)
            except Exception as e:
                error = classify_error(e)
                message = str(error)
                error_count = [0]

                def _commit_error() -> None:
                    record_error(account, message)
                    error_count[0] = account.error_count

                await self._bookkeep(session, "error state", account_name, _commit_error)
                log_failure(
                    provider=account_provider,
                    account_name=account_name,
                    credential=credential,
                    error=e,
                    error_count=error_count[0],
                )
                lib_logger.warning(
                    f"{account_provider} call failed on '{account_name}' "
                    f"({_failure_kind(e)}): {message}"
                )
                await self._emit(
                    InvocationResult(
                        success=False,
                        provider=account_provider,
                        error=message,
                        account_used=account_name,
                        account_id=account_id,
                        duration_ms=_elapsed_ms(started),
                    ),
                    type(error).__name__,
                )
                error.account_used = account_name
                error.account_id = account_id
                if error is e:
                    raise
                raise error from e

            finished = utcnow()
            await self._bookkeep(
                session,
                "usage",
                account_name,
                lambda: record_success(
                    account,
                    response.quantity,
                    response.cost,
                    counter=config.usage_counter,
                    now=finished,
                ),
            )
            await self._bookkeep(
                session, "error reset", account_name, lambda: record_error_reset(account)
            )

        result = InvocationResult(
            success=True,
            provider=account_provider,
            data=response.data,
            account_used=account_name,
            account_id=account_id,
            duration_ms=_elapsed_ms(started),
            quantity=response.quantity,
            cost=response.cost,
        )
        await self._emit(result, None)
        return result

    async def try_invoke(
        self,
        provider: Optional[ProviderLike],
        payload: Any,
        external_call: Optional[ExternalCall] = None,
    ) -> InvocationResult:
        """Like `invoke`, but failures come back as an unsuccessful result."""
        started = time.perf_counter()
        parsed = parse_provider(provider) if provider else None
        try:
            return await self.invoke(provider, payload, external_call)
        except PoolError as e:
            return InvocationResult(
                success=False,
                provider=parsed.value if parsed else "any",
                error=str(e),
                account_used=e.account_used,
                account_id=e.account_id,
                duration_ms=_elapsed_ms(started),
            )

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    async def list_accounts_status(
        self, provider: Optional[ProviderLike] = None
    ) -> List[AccountSummary]:
        provider_value = self._require_provider(provider).value if provider else None
        now = utcnow()
        async with self._session_maker() as session:
            accounts = await AccountRepository(session).list_all(provider_value)
            return [summarize_account(account, now) for account in accounts]

    async def provider_stats(self) -> Dict[str, Dict[str, Any]]:
        async with self._session_maker() as session:
            accounts = await AccountRepository(session).list_all()

        stats: Dict[str, Dict[str, Any]] = {
            provider.value: {
                "total": 0,
                "active": 0,
                "total_requests": 0,
                "total_audio_seconds": 0.0,
                "total_characters": 0,
            }
            for provider in self.provider_configs
        }
        for account in accounts:
            bucket = stats.setdefault(
                account.provider,
                {
                    "total": 0,
                    "active": 0,
                    "total_requests": 0,
                    "total_audio_seconds": 0.0,
                    "total_characters": 0,
                },
            )
            bucket["total"] += 1
            if account.status == AccountStatus.ACTIVE.value:
                bucket["active"] += 1
            bucket["total_requests"] += account.total_requests
            bucket["total_audio_seconds"] += account.total_audio_seconds
            bucket["total_characters"] += account.total_characters
        return stats

    async def get_account(self, account_id: int) -> Account:
        async with self._session_maker() as session:
            account = await AccountRepository(session).get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def validate_credential(self, provider: ProviderLike, credential: str) -> None:
        """Check a credential against the live provider; 401/403 -> InvalidCredential."""
        adapter = self.get_provider(provider)
        try:
            await adapter.validate_credential(credential, self.http_client)
        except Exception as e:
            if is_credential_error(e):
                raise InvalidCredential("Invalid API key", status_code=status_code_of(e)) from e
            raise ProviderCallFailed(f"API key validation failed: {e}") from e

    async def add_account(
        self,
        provider: ProviderLike,
        credential: str,
        *,
        validate: bool = True,
        name: Optional[str] = None,
        priority: Optional[int] = None,
        total_capacity: Optional[float] = None,
        plan_type: Optional[str] = None,
        rate_limit_max: Optional[int] = None,
        monthly_limit: Optional[int] = None,
        trial_ends_at: Optional[datetime] = None,
        settings: Optional[Dict[str, Any]] = None,
        notes: str = "",
    ) -> Account:
        """
        Validate a credential live and persist a new account for it.

        Unspecified fields take the provider's defaults.
        """
        provider_enum = self._require_provider(provider)
        config = self.provider_configs[provider_enum]
        credential = (credential or "").strip()
        if not credential:
            raise InvalidAccountConfig("Credential is required")
        _check_fields(
            config,
            priority=priority,
            plan_type=plan_type,
            total_capacity=total_capacity,
            rate_limit_max=rate_limit_max,
            monthly_limit=monthly_limit,
        )

        async with self._session_maker() as session:
            if await AccountRepository(session).get_by_credential(credential):
                raise DuplicateCredential()

        if validate:
            await self.validate_credential(provider_enum, credential)

        account = build_account(
            config,
            credential,
            name=(name or "").strip() or None,
            priority=priority,
            total_capacity=total_capacity,
            plan_type=plan_type,
            rate_limit_max=rate_limit_max,
            monthly_limit=monthly_limit,
            trial_ends_at=trial_ends_at,
            settings=settings,
            notes=notes or "",
        )
        async with self._session_maker() as session:
            await AccountRepository(session).add(account)
            await session.commit()

        lib_logger.info(
            f"Added {provider_enum.value} account '{account.name}' "
            f"({mask_credential(credential)})"
        )
        return account

    async def update_account(self, account_id: int, patch: Mapping[str, Any]) -> Account:
        """
        Apply an admin patch.

        `provider` and `credential` are ignored; `settings` is merged;
        `status` may only be set to `disabled` or back to `active`; only
        `trial_ends_at` may be cleared with None.
        """
        changes = {k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS}
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidAccountConfig(f"Unknown fields: {', '.join(sorted(unknown))}")
        cleared = sorted(k for k, v in changes.items() if v is None and k not in NULLABLE_FIELDS)
        if cleared:
            raise InvalidAccountConfig(f"Fields cannot be null: {', '.join(cleared)}")
        if "trial_ends_at" in changes:
            changes["trial_ends_at"] = as_naive_utc(changes["trial_ends_at"])

        async with self._session_maker() as session:
            account = await AccountRepository(session).get(account_id)
            if account is None:
                raise AccountNotFound(account_id)

            config = self.provider_configs[Provider(account.provider)]
            _check_fields(
                config,
                priority=changes.get("priority"),
                plan_type=changes.get("plan_type"),
                total_capacity=changes.get("total_capacity"),
                rate_limit_max=changes.get("rate_limit_max"),
                monthly_limit=changes.get("monthly_limit"),
            )

            status = changes.pop("status", None)
            if status is not None and status not in (
                AccountStatus.ACTIVE.value,
                AccountStatus.DISABLED.value,
            ):
                raise InvalidAccountConfig("Status can only be set to 'active' or 'disabled'")

            for key, value in changes.items():
                if key == "settings":
                    merged = dict(account.settings or {})
                    merged.update(value or {})
                    account.settings = merged
                else:
                    setattr(account, key, value)

            if status == AccountStatus.DISABLED.value:
                account.status = AccountStatus.DISABLED.value
            elif status == AccountStatus.ACTIVE.value:
                account.status = AccountStatus.ACTIVE.value
                account.error_count = 0
                account.last_error = None

            reconcile_status(account)
            await session.commit()
            lib_logger.info(f"Updated account '{account.name}' (status={account.status})")
            return account

    async def delete_account(self, account_id: int) -> None:
        async with self._session_maker() as session:
            deleted = await AccountRepository(session).delete(account_id)
            if not deleted:
                raise AccountNotFound(account_id)
            await session.commit()
        lib_logger.info(f"Deleted account id={account_id}")

    async def test_account(self, account_id: int) -> InvocationResult:
        """Check a stored credential live, without touching its bookkeeping."""
        account = await self.get_account(account_id)
        started = time.perf_counter()
        try:
            await self.validate_credential(account.provider, account.credential)
        except PoolError as e:
            return InvocationResult(
                success=False,
                provider=account.provider,
                error=str(e),
                account_used=account.name,
                account_id=account.id,
                duration_ms=_elapsed_ms(started),
            )
        return InvocationResult(
            success=True,
            provider=account.provider,
            data={"message": "Account is working correctly"},
            account_used=account.name,
            account_id=account.id,
            duration_ms=_elapsed_ms(started),
        )

    async def list_voices(self, account_id: int) -> List[Dict[str, Any]]:
        account = await self.get_account(account_id)
        adapter = self._providers[Provider(account.provider)]
        if not isinstance(adapter, ElevenLabsProvider):
            raise InvalidAccountConfig(
                "This operation is only available for ElevenLabs accounts"
            )
        try:
            return await adapter.list_voices(account.credential, self.http_client)
        except Exception as e:
            raise classify_error(e) from e


def _failure_kind(e: Exception) -> str:
    if is_rate_limit_error(e):
        return "rate limited"
    if is_server_error(e):
        return "server error"
    return type(e).__name__


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _check_fields(
    config: ProviderConfig,
    *,
    priority: Optional[int] = None,
    plan_type: Optional[str] = None,
    total_capacity: Optional[float] = None,
    rate_limit_max: Optional[int] = None,
    monthly_limit: Optional[int] = None,
) -> None:
    if priority is not None and config.priority_range:
        low, high = config.priority_range
        if not low <= priority <= high:
            raise InvalidAccountConfig(
                f"{config.display_name} priority must be between {low} and {high}"
            )
    if plan_type is not None and plan_type not in {p.value for p in PlanType}:
        raise InvalidAccountConfig(f"Invalid plan type {plan_type!r}")
    if total_capacity is not None and total_capacity < 0:
        raise InvalidAccountConfig("Capacity cannot be negative")
    if rate_limit_max is not None and rate_limit_max < 1:
        raise InvalidAccountConfig("Rate limit must be at least 1 request per minute")
    if monthly_limit is not None and monthly_limit < 0:
        raise InvalidAccountConfig("Monthly limit cannot be negative")
