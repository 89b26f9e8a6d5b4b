"""Typed asyncio job queue with per-type worker pools and retry/backoff.

# ─── HOW THE QUEUE WORKS ──────────────────────────────────────────────
#
#   enqueue(payload) ──→ asyncio.Queue[payload.kind] ──→ N worker tasks
#                                                         │
#                         handler.process(job) ◄──────────┘
#                              │
#            ok ───────────────┼──────────── error
#            │                                 │
#        SUCCEEDED          retryable and attempts < max_attempts?
#                              yes │                      │ no
#                    RETRYING, sleep base * 2^(n-1)     FAILED
#                    then back onto the queue           handler.on_failure(job, exc)
#
# - Each job type has its own queue and a fixed number of worker tasks.
#   Excess jobs wait in the queue; nothing spawns extra workers.
# - A retry waits in a timer task, not in a worker, so backoff never
#   holds a pool slot.
# - Errors carrying ``retryable=False`` fail the job on the spot.
# - Workers never die from a job error: every exception from a handler is
#   caught, logged and turned into a job transition.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol

import structlog
from cachetools import TTLCache

from memoria.models.document import utc_now
from memoria.models.job import Job, JobPayload, JobStatus, JobType
from memoria.pipeline.status_tracker import StatusTracker
from memoria.utils.errors import MemoriaError, PipelineError
from memoria.utils.logging import bind_job_context

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_POOL_SIZES: dict[JobType, int] = {
    JobType.AUDIO: 2,
    JobType.DOCUMENT: 3,
    JobType.WEB: 2,
    JobType.IMAGE: 2,
    JobType.EMBEDDING: 5,
}


class JobHandler(Protocol):
    """What a stage worker must provide to the queue."""

    async def process(self, job: Job) -> None: ...

    async def on_failure(self, job: Job, error: BaseException) -> None: ...


class JobSink(Protocol):
    """The enqueue-only handle stage workers hold to schedule the next stage."""

    async def enqueue(self, payload: JobPayload) -> Job: ...


def is_retryable(error: BaseException) -> bool:
    """Domain errors say whether they are transient; anything else is retried."""
    if isinstance(error, MemoriaError):
        return error.retryable
    return True


class JobQueue:
    """Per-type bounded worker pools over asyncio queues.

    Parameters
    ----------
    pool_sizes:
        Worker count per job type (keys may be JobType or its string value).
        Types not listed use :data:`DEFAULT_POOL_SIZES`.
    max_attempts:
        Attempts per job before it fails terminally.
    backoff_base_seconds:
        Delay before the first retry; doubles on each further retry.
    tracker:
        Optional :class:`StatusTracker` notified on every transition.
    sleep:
        Awaitable used for backoff delays; injectable for tests.
    history_size, history_ttl_seconds:
        Bound on finished jobs kept for inspection.  Active jobs are never
        evicted; finished ones expire after the TTL or when the history is
        full.
    """

    def __init__(
        self,
        pool_sizes: Mapping[JobType | str, int] | None = None,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        tracker: StatusTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        history_size: int = 10_000,
        history_ttl_seconds: float = 3600.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._pool_sizes = dict(DEFAULT_POOL_SIZES)
        for key, size in (pool_sizes or {}).items():
            if size < 1:
                raise ValueError(f"pool size for {key} must be at least 1")
            self._pool_sizes[JobType(key)] = size
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._tracker = tracker
        self._sleep = sleep

        self._handlers: dict[JobType, JobHandler] = {}
        self._queues: dict[JobType, asyncio.Queue[str]] = {}
        self._jobs: dict[str, Job] = {}
        self._finished: TTLCache[str, Job] = TTLCache(maxsize=history_size, ttl=history_ttl_seconds)
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Setup / lifecycle
    # ------------------------------------------------------------------

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        if self._running:
            raise PipelineError("Handlers must be registered before start()")
        self._handlers[job_type] = handler
        self._queues.setdefault(job_type, asyncio.Queue())

    async def start(self) -> None:
        """Spawn the fixed worker pool for every registered job type."""
        if self._running:
            return
        if self._stopped:
            raise PipelineError("A stopped queue cannot be restarted")
        for job_type in self._handlers:
            for index in range(self._pool_sizes[job_type]):
                task = asyncio.create_task(
                    self._worker(job_type), name=f"memoria-{job_type.value}-{index}"
                )
                self._workers.append(task)
        self._running = True
        logger.info(
            "job_queue_started",
            pools={t.value: self._pool_sizes[t] for t in self._handlers},
            max_attempts=self._max_attempts,
        )

    async def stop(self) -> None:
        """Cancel workers and pending retry timers.  Queued jobs are abandoned."""
        self._stopped = True
        self._running = False
        tasks = [*self._workers, *self._timers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()
        logger.info("job_queue_stopped")

    async def join(self) -> None:
        """Wait until no job is queued, running or waiting to retry."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enqueue(self, payload: JobPayload) -> Job:
        if self._stopped:
            raise PipelineError("Job queue is stopped")
        job_type = payload.kind
        if job_type not in self._handlers:
            raise PipelineError(f"No handler registered for {job_type.value} jobs")

        job = Job(payload=payload, max_attempts=self._max_attempts)
        self._jobs[job.job_id] = job
        self._outstanding += 1
        self._idle.clear()
        self._queues[job_type].put_nowait(job.job_id)

        logger.info(
            "job_enqueued",
            job_id=job.job_id,
            job_type=job_type.value,
            document_id=payload.document_id,
            queued=self._queues[job_type].qsize(),
        )
        await self._publish(job)
        return job

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id) or self._finished.get(job_id)

    def jobs_for_document(self, document_id: str) -> list[Job]:
        jobs = [j for j in self._all_jobs() if j.document_id == document_id]
        return sorted(jobs, key=lambda j: j.enqueued_at)

    def stats(self) -> dict[str, dict[str, int]]:
        """Job counts by status for every registered job type."""
        counts: dict[str, dict[str, int]] = {t.value: {} for t in self._handlers}
        tallies = Counter((j.job_type.value, j.status.value) for j in self._all_jobs())
        for (job_type, status), count in tallies.items():
            counts.setdefault(job_type, {})[status] = count
        return counts

    # ------------------------------------------------------------------
    # Worker internals
    # ------------------------------------------------------------------

    async def _worker(self, job_type: JobType) -> None:
        queue = self._queues[job_type]
        while True:
            job_id = await queue.get()
            try:
                await self._run(job_id)
            finally:
                queue.task_done()

    async def _run(self, job_id: str) -> None:
        job = self._set(job_id, status=JobStatus.RUNNING, attempts=self._jobs[job_id].attempts + 1)
        await self._publish(job)
        handler = self._handlers[job.job_type]

        with bind_job_context(
            job_id=job.job_id, job_type=job.job_type.value, document_id=job.document_id
        ):
            try:
                await handler.process(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._handle_error(job, handler, exc)
                return

            job = self._set(job_id, status=JobStatus.SUCCEEDED, last_error=None, finished_at=utc_now())
            logger.info("job_succeeded", attempts=job.attempts)
            await self._publish(job)
            self._finish(job_id)

    async def _handle_error(self, job: Job, handler: JobHandler, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__

        if is_retryable(exc) and job.attempts < job.max_attempts:
            delay = self._backoff_base * (2 ** (job.attempts - 1))
            job = self._set(job.job_id, status=JobStatus.RETRYING, last_error=message)
            logger.warning(
                "job_retry_scheduled",
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                delay_seconds=delay,
                error=message,
            )
            await self._publish(job)
            timer = asyncio.create_task(self._requeue_after(job.job_id, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return

        job = self._set(job.job_id, status=JobStatus.FAILED, last_error=message, finished_at=utc_now())
        logger.error(
            "job_failed",
            attempts=job.attempts,
            retryable=is_retryable(exc),
            error=message,
        )
        try:
            await handler.on_failure(job, exc)
        except Exception as hook_exc:
            logger.error("job_failure_hook_error", error=str(hook_exc))
        await self._publish(job)
        self._finish(job.job_id)

    async def _requeue_after(self, job_id: str, delay: float) -> None:
        await self._sleep(delay)
        job = self._set(job_id, status=JobStatus.ENQUEUED)
        self._queues[job.job_type].put_nowait(job_id)
        await self._publish(job)

    def _set(self, job_id: str, **changes: object) -> Job:
        job = self._jobs[job_id].model_copy(update=changes)
        self._jobs[job_id] = job
        return job

    def _all_jobs(self) -> list[Job]:
        self._finished.expire()
        return [*self._jobs.values(), *self._finished.values()]

    def _finish(self, job_id: str) -> None:
        self._finished[job_id] = self._jobs.pop(job_id)
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()

    async def _publish(self, job: Job) -> None:
        if self._tracker is not None:
            await self._tracker.publish(job)
