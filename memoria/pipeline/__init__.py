"""Background processing: the typed job queue, its stage workers and status tracking."""

from memoria.pipeline.job_queue import JobQueue
from memoria.pipeline.status_tracker import JobUpdate, StatusTracker
from memoria.pipeline.workers import EmbeddingWorker, ExtractionWorker

__all__ = [
    "EmbeddingWorker",
    "ExtractionWorker",
    "JobQueue",
    "JobUpdate",
    "StatusTracker",
]
