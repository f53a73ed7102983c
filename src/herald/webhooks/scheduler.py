"""Retry scheduler: runs delivery attempts and decides what happens next.

Each attempt runs as its own asyncio task, so a slow or failing subscriber
never holds up another record. Attempts for the same record are serialized by
a per-record lock, and the record is re-read from the store under that lock
before every attempt, so a record whose state moved on (succeeded, rescheduled,
cascade-deleted) is left alone.

A failed record waits for its retry as a loop timer (``call_later``), not as a
sleeping task. The store remains the source of truth: ``start()`` returns any
record stranded in ``delivering`` by a crash to the queue, and a poll loop
picks up due records whose timer was lost with a previous process.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from herald.config import RetryPolicy
from herald.exceptions import ExhaustionError, HeraldError
from herald.logging import bind_delivery_context, get_logger
from herald.models import AttemptOutcome, DeliveryRecord, utc_now

from .backoff import next_attempt_time

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

    from .transport import WebhookTransport

logger = get_logger(__name__)


class RetryScheduler:
    """Drives delivery records through pending -> delivering -> terminal.

    Example:
        ```python
        scheduler = RetryScheduler(storage, transport, policy=RetryPolicy(max_attempts=5))
        await scheduler.start()
        scheduler.submit(record.id)
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        storage: HeraldStorage,
        transport: WebhookTransport,
        policy: RetryPolicy | None = None,
        max_concurrent: int = 10,
        poll_interval_seconds: float = 5.0,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Store holding the delivery records.
            transport: Transport used for every attempt.
            policy: Retry ceiling and backoff constants.
            max_concurrent: Maximum attempts in flight at once.
            poll_interval_seconds: Delay between sweeps for due records.
            rng: Random source for jitter (seeded in tests).
        """
        self._storage = storage
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._poll_interval = poll_interval_seconds
        self._rng = rng

        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, int] = {}
        self._tasks: set[asyncio.Task[DeliveryRecord | None]] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._poll_task: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def pending_timers(self) -> dict[str, asyncio.TimerHandle]:
        """Retries currently waiting on a timer, keyed by delivery ID."""
        return dict(self._timers)

    def is_busy(self, delivery_id: str) -> bool:
        return delivery_id in self._inflight or delivery_id in self._timers

    # -- submission ---------------------------------------------------------

    def submit(self, delivery_id: str) -> asyncio.Task[DeliveryRecord | None]:
        """Run the next attempt for a record as an independent task."""
        self._inflight[delivery_id] = self._inflight.get(delivery_id, 0) + 1
        task = asyncio.create_task(self.run_attempt(delivery_id), name=f"delivery:{delivery_id}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(delivery_id, t))
        return task

    def schedule(self, delivery_id: str, at: datetime) -> None:
        """Arrange for the record's next attempt to be submitted at ``at``."""
        if self._stopping:
            return
        existing = self._timers.pop(delivery_id, None)
        if existing is not None:
            existing.cancel()
        delay = max(0.0, (at - utc_now()).total_seconds())
        loop = asyncio.get_running_loop()
        self._timers[delivery_id] = loop.call_later(delay, self._fire_timer, delivery_id)
        logger.debug("Retry for %s scheduled in %.1fs", delivery_id, delay)

    def _fire_timer(self, delivery_id: str) -> None:
        self._timers.pop(delivery_id, None)
        if not self._stopping:
            self.submit(delivery_id)

    def _on_task_done(self, delivery_id: str, task: asyncio.Task[DeliveryRecord | None]) -> None:
        self._tasks.discard(task)
        remaining = self._inflight.get(delivery_id, 1) - 1
        if remaining <= 0:
            self._inflight.pop(delivery_id, None)
            self._locks.pop(delivery_id, None)
        else:
            self._inflight[delivery_id] = remaining

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # The record stays in its last persisted state; the poll loop or
            # the next start() picks it up again.
            logger.error(
                "Delivery task for %s failed: %s",
                delivery_id,
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @asynccontextmanager
    async def _record_lock(self, delivery_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(delivery_id, asyncio.Lock())
        async with lock:
            yield

    # -- attempts -----------------------------------------------------------

    async def run_attempt(self, delivery_id: str) -> DeliveryRecord | None:
        """Make the next attempt for a record if it is still due.

        Returns:
            The record after the attempt (or unchanged if nothing was due),
            or None if the record no longer exists.
        """
        async with self._record_lock(delivery_id):
            record = await self._storage.get_delivery(delivery_id)
            if record is None:
                logger.debug("Delivery %s no longer exists; skipping", delivery_id)
                return None
            if not record.is_due(utc_now()):
                # A timer can fire marginally before the wall clock agrees.
                if record.status == "failed" and delivery_id not in self._timers:
                    self.schedule(delivery_id, record.next_attempt_at)  # type: ignore[arg-type]
                return record

            async with self._semaphore:
                bind_delivery_context(record.webhook_id, record.id, record.event.type)
                try:
                    record.begin_attempt()
                except ExhaustionError as e:
                    logger.warning("Skipping attempt: %s", e.message)
                    return record
                await self._storage.update_delivery(record)

                attempted_at = utc_now()
                outcome = await self._attempt(record)
                self._apply_outcome(record, outcome, attempted_at)
                await self._storage.update_delivery(record)

        if record.status == "failed" and record.next_attempt_at is not None:
            self.schedule(record.id, record.next_attempt_at)
        return record

    async def _attempt(self, record: DeliveryRecord) -> AttemptOutcome:
        try:
            return await self._transport.attempt(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error delivering %s", record.id)
            return AttemptOutcome(
                success=False,
                error_kind="internal_error",
                error_message=f"{type(e).__name__}: {e}",
            )

    def _apply_outcome(
        self,
        record: DeliveryRecord,
        outcome: AttemptOutcome,
        attempted_at: datetime,
    ) -> None:
        if outcome.success:
            record.mark_succeeded(outcome, attempted_at)
            logger.info(
                "Delivery %s succeeded on attempt %d", record.id, record.attempt_count
            )
            return

        failed_attempts = record.attempt_count + 1
        if failed_attempts >= self._policy.max_attempts:
            record.mark_exhausted(outcome, attempted_at)
            logger.warning(
                "Delivery %s exhausted after %d attempts (last error: %s)",
                record.id,
                record.attempt_count,
                outcome.error_kind,
            )
            return

        retry_at = next_attempt_time(failed_attempts, self._policy, rng=self._rng)
        record.mark_failed(outcome, retry_at, attempted_at)
        logger.warning(
            "Delivery %s failed (%s); attempt %d scheduled at %s",
            record.id,
            outcome.error_kind,
            record.attempt_count + 1,
            retry_at.isoformat(),
        )

    # -- durable recovery ---------------------------------------------------

    async def reconcile_interrupted(self) -> int:
        """Return records stranded in ``delivering`` to the retry queue.

        Records with an attempt task running in this process are left alone.

        Returns:
            Number of records reconciled.
        """
        reconciled = 0
        now = utc_now()
        for stale in await self._storage.get_deliveries_by_status("delivering"):
            if stale.id in self._inflight:
                continue
            # The scan may predate a just-finished attempt.
            record = await self._storage.get_delivery(stale.id)
            if record is None or record.status != "delivering" or record.id in self._inflight:
                continue
            record.reconcile_interrupted(now)
            await self._storage.update_delivery(record)
            reconciled += 1
        if reconciled:
            logger.info("Reconciled %d interrupted deliveries", reconciled)
        return reconciled

    async def process_due(self, limit: int = 100) -> int:
        """Submit every due record that is not already running or timed.

        Returns:
            Number of records submitted.
        """
        due = await self._storage.get_due_deliveries(utc_now(), limit=limit)
        submitted = 0
        for record in due:
            if self.is_busy(record.id):
                continue
            self.submit(record.id)
            submitted += 1
        return submitted

    async def _poll_loop(self) -> None:
        while True:
            try:
                # Picks up records whose attempt task died after writing
                # ``delivering``, not only those left by a previous process.
                await self.reconcile_interrupted()
                await self.process_due()
            except HeraldError as e:
                logger.error("Scheduler sweep failed: %s", e.message)
            await asyncio.sleep(self._poll_interval)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Reconcile interrupted records and start the poll loop."""
        if self._poll_task is not None:
            return
        self._stopping = False
        await self.reconcile_interrupted()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="herald-scheduler-poll")

    async def drain(self) -> None:
        """Wait until no attempt task is running (timers may still be pending)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """Stop scheduling and let in-flight attempts finish within the grace period.

        Attempts still running after ``grace_seconds`` are cancelled; their
        records stay ``delivering`` until a later ``start()`` reconciles them.
        Pending timers are dropped; their records are already persisted as due
        at ``next_attempt_at`` and are picked up by the next poll.
        """
        self._stopping = True
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None

        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Abandoned %d in-flight deliveries at shutdown", len(still_running))
        await asyncio.gather(*tasks, return_exceptions=True)
