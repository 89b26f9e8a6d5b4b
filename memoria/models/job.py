"""Job models for the processing pipeline.

Job payloads are a tagged union keyed by ``kind``: one variant per job
type, each carrying only the fields its worker needs.  The queue owns the
:class:`Job` lifecycle (attempts, status, timestamps); workers only read
the payload.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from memoria.models.document import utc_now


class JobType(str, Enum):  # noqa: UP042
    AUDIO = "audio"
    DOCUMENT = "document"
    WEB = "web"
    IMAGE = "image"
    EMBEDDING = "embedding"


class JobStatus(str, Enum):  # noqa: UP042
    """Job lifecycle: enqueued -> running -> succeeded | retrying | failed."""

    ENQUEUED = "enqueued"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class _PayloadBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    owner_id: str


class AudioJobPayload(_PayloadBase):
    kind: Literal[JobType.AUDIO] = JobType.AUDIO
    file_path: str
    mime_type: str
    language: str | None = Field(default=None, description="ISO-639-1 hint for transcription.")


class DocumentJobPayload(_PayloadBase):
    kind: Literal[JobType.DOCUMENT] = JobType.DOCUMENT
    file_path: str
    mime_type: str


class WebJobPayload(_PayloadBase):
    kind: Literal[JobType.WEB] = JobType.WEB
    url: str


class ImageJobPayload(_PayloadBase):
    kind: Literal[JobType.IMAGE] = JobType.IMAGE
    file_path: str
    mime_type: str


class EmbeddingJobPayload(_PayloadBase):
    kind: Literal[JobType.EMBEDDING] = JobType.EMBEDDING


JobPayload = Annotated[
    Union[
        AudioJobPayload,
        DocumentJobPayload,
        WebJobPayload,
        ImageJobPayload,
        EmbeddingJobPayload,
    ],
    Field(discriminator="kind"),
]

ExtractionPayload = Union[AudioJobPayload, DocumentJobPayload, WebJobPayload, ImageJobPayload]


class Job(BaseModel):
    """A unit of work tracked by the job queue."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    payload: JobPayload
    attempts: int = Field(default=0, ge=0, description="Attempts started so far.")
    max_attempts: int = Field(default=3, ge=1)
    status: JobStatus = JobStatus.ENQUEUED
    last_error: str | None = None
    enqueued_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def job_type(self) -> JobType:
        return self.payload.kind

    @property
    def document_id(self) -> str:
        return self.payload.document_id

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)
