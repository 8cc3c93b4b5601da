from dataclasses import asdict
from datetime import datetime
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import AfterValidator, BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from credential_pool import CredentialPool, PoolError
from credential_pool.db_models import as_naive_utc
from credential_pool.pool import summarize_account
from tracker_api.auth import get_db_session, get_pool, require_admin_key
from tracker_api.errors import pool_error_to_http
from tracker_api.invocation_queries import (
    fetch_invocations_by_day,
    fetch_invocations_by_provider,
)

router = APIRouter(
    prefix="/api/admin/pool",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)

ProviderName = Literal["assemblyai", "clarifai", "speechmatics", "elevenlabs"]
# Stored columns are naive UTC; offsets like "Z" or "+06:00" are folded in here.
UtcDatetime = Annotated[datetime, AfterValidator(as_naive_utc)]


class AccountItem(BaseModel):
    id: int
    name: str
    provider: str
    credential: str
    priority: int
    status: str
    plan_type: str
    total_capacity: float
    used_capacity: float
    remaining_capacity: float
    usage_percentage: float
    rate_limit_max: int
    requests_this_window: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_audio_seconds: float
    total_audio_hours: float
    total_characters: int
    monthly_requests: int
    monthly_limit: int
    trial_ends_at: datetime | None
    is_expired: bool
    has_capacity: bool
    last_used_at: datetime | None
    last_error: str | None
    error_count: int
    settings: dict[str, Any]
    notes: str
    created_at: datetime | None


class AccountListResponse(BaseModel):
    accounts: list[AccountItem]


class ProviderStatsItem(BaseModel):
    total: int
    active: int
    total_requests: int
    total_audio_seconds: float
    total_characters: int


class CreateAccountRequest(BaseModel):
    provider: ProviderName
    credential: str
    name: str | None = None
    priority: int | None = None
    total_capacity: float | None = None
    plan_type: Literal["free", "trial", "paid"] | None = None
    rate_limit_max: int | None = None
    monthly_limit: int | None = None
    trial_ends_at: UtcDatetime | None = None
    settings: dict[str, Any] | None = None
    notes: str = ""


class UpdateAccountRequest(BaseModel):
    name: str | None = None
    priority: int | None = None
    status: Literal["active", "disabled"] | None = None
    plan_type: Literal["free", "trial", "paid"] | None = None
    total_capacity: float | None = None
    used_capacity: float | None = None
    rate_limit_max: int | None = None
    monthly_limit: int | None = None
    trial_ends_at: UtcDatetime | None = None
    settings: dict[str, Any] | None = None
    notes: str | None = None


class TestAccountResponse(BaseModel):
    success: bool
    message: str
    duration_ms: int


class InvocationTotalsItem(BaseModel):
    provider: str
    request_count: int
    success_count: int
    failure_count: int
    quantity: float
    cost: float
    avg_duration_ms: float


class InvocationsByProviderResponse(BaseModel):
    days: int
    rows: list[InvocationTotalsItem]


class InvocationsByDayItem(BaseModel):
    day: str
    request_count: int
    success_count: int
    cost: float


class InvocationsByDayResponse(BaseModel):
    days: int
    rows: list[InvocationsByDayItem]


def _serialize_account(account) -> AccountItem:
    return AccountItem(**asdict(summarize_account(account)))


@router.get("/accounts", response_model=AccountListResponse)
async def admin_list_accounts(
    provider: ProviderName | None = None,
    pool: CredentialPool = Depends(get_pool),
) -> AccountListResponse:
    summaries = await pool.list_accounts_status(provider)
    return AccountListResponse(accounts=[AccountItem(**asdict(s)) for s in summaries])


@router.get("/stats", response_model=dict[str, ProviderStatsItem])
async def admin_provider_stats(
    pool: CredentialPool = Depends(get_pool),
) -> dict[str, ProviderStatsItem]:
    stats = await pool.provider_stats()
    return {name: ProviderStatsItem(**values) for name, values in stats.items()}


@router.post("/accounts", response_model=AccountItem, status_code=201)
async def admin_create_account(
    payload: CreateAccountRequest,
    pool: CredentialPool = Depends(get_pool),
) -> AccountItem:
    fields = payload.model_dump(exclude={"provider", "credential"})
    try:
        account = await pool.add_account(payload.provider, payload.credential, **fields)
    except PoolError as e:
        raise pool_error_to_http(e) from e
    return _serialize_account(account)


@router.patch("/accounts/{id}", response_model=AccountItem)
async def admin_update_account(
    id: int,
    payload: UpdateAccountRequest,
    pool: CredentialPool = Depends(get_pool),
) -> AccountItem:
    # An explicit null only means something for the trial horizon.
    patch = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key == "trial_ends_at"
    }
    try:
        account = await pool.update_account(id, patch)
    except PoolError as e:
        raise pool_error_to_http(e) from e
    return _serialize_account(account)


@router.delete("/accounts/{id}")
async def admin_delete_account(
    id: int,
    pool: CredentialPool = Depends(get_pool),
) -> dict[str, bool]:
    try:
        await pool.delete_account(id)
    except PoolError as e:
        raise pool_error_to_http(e) from e
    return {"ok": True}


@router.post("/accounts/{id}/test", response_model=TestAccountResponse)
async def admin_test_account(
    id: int,
    pool: CredentialPool = Depends(get_pool),
) -> TestAccountResponse:
    try:
        result = await pool.test_account(id)
    except PoolError as e:
        raise pool_error_to_http(e) from e
    message = result.data["message"] if result.success else result.error
    return TestAccountResponse(
        success=result.success, message=message, duration_ms=result.duration_ms
    )


@router.get("/accounts/{id}/voices")
async def admin_list_voices(
    id: int,
    pool: CredentialPool = Depends(get_pool),
) -> dict[str, list[dict[str, Any]]]:
    try:
        voices = await pool.list_voices(id)
    except PoolError as e:
        raise pool_error_to_http(e) from e
    return {"voices": voices}


@router.get("/usage/by-provider", response_model=InvocationsByProviderResponse)
async def admin_usage_by_provider(
    days: int = Query(default=30, ge=1, le=365),
    session: AsyncSession = Depends(get_db_session),
) -> InvocationsByProviderResponse:
    rows = await fetch_invocations_by_provider(session, days=days)
    return InvocationsByProviderResponse(
        days=days, rows=[InvocationTotalsItem(**row) for row in rows]
    )


@router.get("/usage/by-day", response_model=InvocationsByDayResponse)
async def admin_usage_by_day(
    days: int = Query(default=30, ge=1, le=365),
    provider: ProviderName | None = None,
    session: AsyncSession = Depends(get_db_session),
) -> InvocationsByDayResponse:
    rows = await fetch_invocations_by_day(session, days=days, provider=provider)
    return InvocationsByDayResponse(
        days=days, rows=[InvocationsByDayItem(**row) for row in rows]
    )
