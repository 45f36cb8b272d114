"""
Unmute — Background match-recalculation queue.

Journal activity and the ``/match/recalculate`` endpoint only *enqueue* an
owner id; a small pool of asyncio workers started in the application lifespan
runs the actual recompute.  Guarantees:

* At most one queued job per owner: repeat triggers while a job is still
  waiting are coalesced into it.
* At most one running job per owner in this process (per-owner lock), plus an
  optional cross-process lock (Redis) around each run.
* Failed runs are retried with exponential backoff; the outcome of the latest
  job per owner is kept in memory (up to ``status_retention`` finished jobs)
  and exposed through ``status()``.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections import OrderedDict
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

logger = structlog.get_logger("unmute.match_queue")


class JobState(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RecalculationStatus:
    owner_id: uuid.UUID
    state: JobState
    reason: str
    enqueued_at: datetime
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    matches_written: int | None = None
    last_error: str | None = None


Handler = Callable[[uuid.UUID], Awaitable[int | None]]
LockFactory = Callable[[uuid.UUID], AbstractAsyncContextManager[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchRecalculationQueue:
    """Decouple recompute triggers from their execution.

    Parameters
    ----------
    handler:
        Coroutine function running one recompute for an owner id.  Its
        return value (number of records written, or ``None`` for a no-op)
        is stored on the job status.
    worker_count:
        Number of concurrent worker tasks.
    max_attempts:
        Attempts per job before it is marked failed.
    retry_wait_seconds:
        Base of the exponential backoff between attempts.
    lock_factory:
        Optional callable returning an async context manager that guards a
        single run across processes (e.g. a Redis lock).
    status_retention:
        Finished job statuses kept in memory; the oldest are dropped first.
    """

    def __init__(
        self,
        handler: Handler,
        *,
        worker_count: int = 2,
        max_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
        lock_factory: LockFactory | None = None,
        status_retention: int = 1000,
    ) -> None:
        self._handler = handler
        self._worker_count = worker_count
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds
        self._lock_factory = lock_factory
        self._status_retention = status_retention

        self._queue: asyncio.Queue[uuid.UUID] = asyncio.Queue()
        self._pending: set[uuid.UUID] = set()
        self._owner_locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._lock_users: dict[uuid.UUID, int] = {}
        self._statuses: OrderedDict[uuid.UUID, RecalculationStatus] = OrderedDict()
        self._workers: list[asyncio.Task] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"match-recalc-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("match_queue_started", workers=self._worker_count)

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """Let queued jobs finish for up to ``drain_timeout`` seconds, then
        cancel the workers."""
        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "match_queue_drain_timeout",
                    remaining_jobs=self._queue.qsize(),
                )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("match_queue_stopped")

    async def join(self) -> None:
        """Block until every queued job has been processed."""
        await self._queue.join()

    # ── Producer side ────────────────────────────────────────────────────

    def enqueue(self, owner_id: uuid.UUID, reason: str = "manual") -> bool:
        """Schedule a recompute for ``owner_id``.

        Returns ``False`` when a job for the owner was already waiting and the
        request was folded into it.
        """
        log = logger.bind(owner_id=str(owner_id), reason=reason)

        if owner_id in self._pending:
            log.info("match_recalculation_coalesced")
            return False

        self._pending.add(owner_id)
        self._statuses[owner_id] = RecalculationStatus(
            owner_id=owner_id,
            state=JobState.QUEUED,
            reason=reason,
            enqueued_at=_utcnow(),
        )
        self._statuses.move_to_end(owner_id)
        self._evict_finished_statuses()
        self._queue.put_nowait(owner_id)
        log.info("match_recalculation_enqueued", queue_size=self._queue.qsize())
        return True

    def status(self, owner_id: uuid.UUID) -> RecalculationStatus | None:
        return self._statuses.get(owner_id)

    # ── Consumer side ────────────────────────────────────────────────────

    async def _worker(self, worker_id: int) -> None:
        while True:
            owner_id = await self._queue.get()
            try:
                await self._process(owner_id)
            except Exception:
                logger.exception(
                    "match_worker_unexpected_error",
                    worker=worker_id,
                    owner_id=str(owner_id),
                )
            finally:
                self._queue.task_done()

    async def _process(self, owner_id: uuid.UUID) -> None:
        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        self._lock_users[owner_id] = self._lock_users.get(owner_id, 0) + 1
        try:
            async with lock:
                await self._run_job(owner_id)
        finally:
            self._lock_users[owner_id] -= 1
            if self._lock_users[owner_id] == 0:
                del self._lock_users[owner_id]
                del self._owner_locks[owner_id]

    async def _run_job(self, owner_id: uuid.UUID) -> None:
        log = logger.bind(owner_id=str(owner_id))

        # Leaving the pending set only once the lock is held lets a new
        # trigger queue exactly one follow-up run behind this one.
        self._pending.discard(owner_id)
        status = self._statuses[owner_id]
        status.state = JobState.RUNNING
        status.started_at = _utcnow()
        log.info("match_recalculation_start", reason=status.reason)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_wait_seconds, max=30),
            ):
                with attempt:
                    status.attempts = attempt.retry_state.attempt_number
                    written = await self._run_once(owner_id)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            status.state = JobState.FAILED
            status.last_error = repr(cause)
            status.finished_at = _utcnow()
            log.error(
                "match_recalculation_failed",
                attempts=status.attempts,
                error=repr(cause),
            )
            return

        status.state = JobState.SUCCEEDED
        status.matches_written = written
        status.last_error = None
        status.finished_at = _utcnow()
        log.info(
            "match_recalculation_complete",
            attempts=status.attempts,
            matches_written=written,
        )

    def _evict_finished_statuses(self) -> None:
        """Drop the oldest finished statuses beyond ``status_retention``."""
        excess = len(self._statuses) - self._status_retention
        if excess <= 0:
            return
        finished = [
            oid for oid, s in self._statuses.items()
            if s.state in (JobState.SUCCEEDED, JobState.FAILED)
        ]
        for oid in finished[:excess]:
            del self._statuses[oid]

    async def _run_once(self, owner_id: uuid.UUID) -> int | None:
        guard = self._lock_factory(owner_id) if self._lock_factory else nullcontext()
        try:
            async with guard:
                return await self._handler(owner_id)
        except Exception:
            logger.exception("match_recalculation_attempt_failed", owner_id=str(owner_id))
            raise


def redis_lock_factory(redis_client: Any, timeout_seconds: int) -> LockFactory:
    """Build a per-owner lock factory on top of ``redis.asyncio`` locks."""

    def _factory(owner_id: uuid.UUID) -> AbstractAsyncContextManager[Any]:
        return redis_client.lock(
            f"unmute:match-recalc:{owner_id}",
            timeout=timeout_seconds,
            blocking_timeout=timeout_seconds,
        )

    return _factory
