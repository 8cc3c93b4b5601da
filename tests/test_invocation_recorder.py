from datetime import timedelta

import pytest
from sqlalchemy import func, select

from credential_pool import InvocationResult
from credential_pool.db_models import utcnow
from tracker_api.db_models import InvocationEvent
from tracker_api.invocation_queries import (
    fetch_invocations_by_day,
    fetch_invocations_by_provider,
)
from tracker_api.invocation_recorder import InvocationRecorder, prune_invocation_events


@pytest.mark.asyncio
async def test_recorder_flushes_queued_events_on_stop(session_maker) -> None:
    recorder = InvocationRecorder(session_maker, flush_interval_seconds=0.01)
    await recorder.start()

    await recorder.record_invocation(
        InvocationResult(
            success=True,
            provider="assemblyai",
            account_used="Main",
            account_id=1,
            duration_ms=1200,
            quantity=30,
            cost=0.001,
        )
    )
    await recorder.record_invocation(
        InvocationResult(success=False, provider="assemblyai", error="x" * 5000),
        "ProviderCallFailed",
    )
    await recorder.stop()

    async with session_maker() as session:
        rows = (await session.scalars(select(InvocationEvent).order_by(InvocationEvent.id))).all()

    assert [row.success for row in rows] == [True, False]
    assert rows[0].account_name == "Main"
    assert rows[1].error_type == "ProviderCallFailed"
    assert len(rows[1].error_message) == 2000


@pytest.mark.asyncio
async def test_recorder_ignores_events_when_not_started(session_maker) -> None:
    recorder = InvocationRecorder(session_maker)

    await recorder.record_invocation(InvocationResult(success=True, provider="clarifai"))

    async with session_maker() as session:
        assert await session.scalar(select(func.count(InvocationEvent.id))) == 0


@pytest.mark.asyncio
async def test_prune_invocation_events_removes_old_rows(session_maker) -> None:
    now = utcnow()
    async with session_maker() as session:
        session.add_all(
            [
                InvocationEvent(timestamp=now - timedelta(days=60), provider="clarifai", success=True),
                InvocationEvent(timestamp=now - timedelta(days=5), provider="clarifai", success=True),
            ]
        )
        await session.commit()

    deleted = await prune_invocation_events(session_maker, retention_days=30)
    assert deleted == 1

    async with session_maker() as session:
        count = await session.scalar(select(func.count(InvocationEvent.id)))

    assert count == 1


@pytest.mark.asyncio
async def test_invocation_summaries(session_maker) -> None:
    now = utcnow()
    async with session_maker() as session:
        session.add_all(
            [
                InvocationEvent(timestamp=now, provider="assemblyai", success=True, quantity=30, cost=0.001, duration_ms=100),
                InvocationEvent(timestamp=now, provider="assemblyai", success=False, duration_ms=300),
                InvocationEvent(timestamp=now, provider="elevenlabs", success=True, quantity=12),
            ]
        )
        await session.commit()

    async with session_maker() as session:
        by_provider = await fetch_invocations_by_provider(session, days=7)
        by_day = await fetch_invocations_by_day(session, days=7, provider="assemblyai")

    assert by_provider[0]["provider"] == "assemblyai"
    assert by_provider[0]["request_count"] == 2
    assert by_provider[0]["success_count"] == 1
    assert by_provider[0]["failure_count"] == 1
    assert by_provider[0]["avg_duration_ms"] == 200.0
    assert by_provider[1]["quantity"] == 12.0
    assert len(by_day) == 1
    assert by_day[0]["request_count"] == 2
