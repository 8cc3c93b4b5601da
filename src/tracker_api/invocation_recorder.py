import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credential_pool import InvocationResult
from credential_pool.db_models import utcnow
from tracker_api.db_models import InvocationEvent

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_CHARS = 2000


def get_invocation_retention_days() -> int:
    raw = os.getenv("INVOCATION_RETENTION_DAYS", "30")
    try:
        days = int(raw)
    except ValueError:
        days = 30
    return max(1, days)


async def prune_invocation_events(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    retention_days: int | None = None,
) -> int:
    active_retention_days = retention_days or get_invocation_retention_days()
    cutoff = utcnow() - timedelta(days=active_retention_days)
    async with session_maker() as session:
        result = await session.execute(
            delete(InvocationEvent).where(InvocationEvent.timestamp < cutoff)
        )
        await session.commit()
        deleted = result.rowcount if result.rowcount is not None else 0

    if deleted > 0:
        logger.info(
            "Pruned %d invocation events older than %d days",
            deleted,
            active_retention_days,
        )
    return deleted


@dataclass(slots=True)
class InvocationEventPayload:
    provider: str
    account_id: int | None
    account_name: str | None
    success: bool
    duration_ms: int
    quantity: float
    cost: float
    error_type: str | None
    error_message: str | None


_SENTINEL = object()


class InvocationRecorder:
    """
    Writes one row per invocation attempt off the request path.

    Events are queued and flushed in batches by a single worker task; a full
    queue drops the event with a warning rather than blocking the caller.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        queue_maxsize: int = 2000,
        batch_size: int = 100,
        flush_interval_seconds: float = 1.0,
    ):
        self._session_maker = session_maker
        self._queue: asyncio.Queue[InvocationEventPayload | object] = asyncio.Queue(
            maxsize=queue_maxsize
        )
        self._batch_size = batch_size
        self._flush_interval_seconds = flush_interval_seconds
        self._worker_task: asyncio.Task[None] | None = None
        self._accepting = False

    async def start(self) -> None:
        if self._worker_task:
            return
        self._accepting = True
        self._worker_task = asyncio.create_task(
            self._run_worker(), name="invocation-recorder"
        )

    async def stop(self) -> None:
        if not self._worker_task:
            return
        self._accepting = False
        try:
            self._queue.put_nowait(_SENTINEL)
        except asyncio.QueueFull:
            await self._queue.put(_SENTINEL)
        await self._worker_task
        self._worker_task = None

    async def record_invocation(
        self, result: InvocationResult, error_type: str | None = None
    ) -> None:
        if not self._accepting:
            return

        error_message = result.error[:ERROR_MESSAGE_MAX_CHARS] if result.error else None
        payload = InvocationEventPayload(
            provider=result.provider,
            account_id=result.account_id,
            account_name=result.account_used,
            success=result.success,
            duration_ms=int(result.duration_ms),
            quantity=float(result.quantity or 0.0),
            cost=float(result.cost or 0.0),
            error_type=error_type,
            error_message=error_message,
        )

        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(
                "Invocation recorder queue full; dropping %s event", result.provider
            )

    async def _run_worker(self) -> None:
        batch: list[InvocationEventPayload] = []

        while True:
            item = await self._queue.get()

            if item is _SENTINEL:
                await self._drain_queue(batch)
                if batch:
                    await self._flush_batch(batch)
                return

            batch.append(item)

            if len(batch) < self._batch_size:
                await self._collect_with_timeout(batch)
            await self._flush_batch(batch)
            batch = []

    async def _collect_with_timeout(self, batch: list[InvocationEventPayload]) -> None:
        while len(batch) < self._batch_size:
            try:
                item = await asyncio.wait_for(
                    self._queue.get(), timeout=self._flush_interval_seconds
                )
            except asyncio.TimeoutError:
                return

            if item is _SENTINEL:
                try:
                    self._queue.put_nowait(_SENTINEL)
                except asyncio.QueueFull:
                    await self._queue.put(_SENTINEL)
                return

            batch.append(item)

    async def _drain_queue(self, batch: list[InvocationEventPayload]) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if item is _SENTINEL:
                continue
            batch.append(item)

    async def _flush_batch(self, batch: list[InvocationEventPayload]) -> None:
        if not batch:
            return

        rows = [
            InvocationEvent(
                provider=item.provider,
                account_id=item.account_id,
                account_name=item.account_name,
                success=item.success,
                duration_ms=item.duration_ms,
                quantity=item.quantity,
                cost=item.cost,
                error_type=item.error_type,
                error_message=item.error_message,
            )
            for item in batch
        ]

        try:
            async with self._session_maker() as session:
                session.add_all(rows)
                await session.commit()
        except Exception:
            logger.exception("Failed to flush %d invocation events", len(batch))
