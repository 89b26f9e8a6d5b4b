"""Job status tracking with callback-based listener notification.

Records the latest job transition for each document and broadcasts it to
listeners registered for the document's owner, so a UI or socket layer
can show "processing / completed / failed" without polling the store.

    JobQueue --publish()--> StatusTracker --callback(update)--> socket handler
                                                            --> (any other listener)

Listeners are keyed by owner id so one owner never sees another's
updates.  Both sync and async callbacks are supported.  A listener that
raises is logged and skipped; it never blocks the queue or other
listeners.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict, Field

from memoria.models.document import utc_now
from memoria.models.job import Job, JobStatus, JobType
from memoria.utils.logging import get_logger


class JobUpdate(BaseModel):
    """One job transition as seen by listeners."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    document_id: str
    owner_id: str
    job_type: JobType
    status: JobStatus
    attempts: int
    error: str | None = None
    at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_job(cls, job: Job) -> JobUpdate:
        return cls(
            job_id=job.job_id,
            document_id=job.document_id,
            owner_id=job.payload.owner_id,
            job_type=job.job_type,
            status=job.status,
            attempts=job.attempts,
            error=job.last_error,
        )


class StatusTracker:
    """Keeps the latest job update per document and notifies owner listeners.

    Latest updates live in a TTL cache bounded by *max_documents*, so a
    long-running process does not hold every document it ever processed.
    """

    def __init__(self, max_documents: int = 10_000, ttl_seconds: float = 3600.0) -> None:
        self._latest: TTLCache[str, JobUpdate] = TTLCache(maxsize=max_documents, ttl=ttl_seconds)
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def publish(self, job: Job) -> None:
        """Record *job*'s current state and notify the owner's listeners."""
        update = JobUpdate.from_job(job)
        self._latest[update.document_id] = update
        self._logger.debug(
            "job_status_update",
            job_id=update.job_id,
            document_id=update.document_id,
            job_type=update.job_type.value,
            status=update.status.value,
            attempts=update.attempts,
        )
        await self._notify_listeners(update)

    def register_listener(self, owner_id: str, callback: Callable) -> None:
        """Register a sync or async ``callback(update: JobUpdate)`` for *owner_id*."""
        listeners = self._listeners.setdefault(owner_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, owner_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(owner_id, [])
        if callback in listeners:
            listeners.remove(callback)

    def latest(self, document_id: str) -> JobUpdate | None:
        """Most recent job update for *document_id*, if any job has run for it."""
        return self._latest.get(document_id)

    async def _notify_listeners(self, update: JobUpdate) -> None:
        for callback in list(self._listeners.get(update.owner_id, [])):
            try:
                result = callback(update)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    owner_id=update.owner_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
