"""Maps extraction job types to their extractor."""

from __future__ import annotations

from memoria.interfaces.content_extractor import IContentExtractor
from memoria.models.job import JobType
from memoria.utils.errors import ExtractionError


class ExtractorRegistry:
    """Holds one :class:`IContentExtractor` per extraction job type."""

    def __init__(self, extractors: dict[JobType, IContentExtractor] | None = None) -> None:
        self._extractors: dict[JobType, IContentExtractor] = {}
        for job_type, extractor in (extractors or {}).items():
            self.register(job_type, extractor)

    def register(self, job_type: JobType, extractor: IContentExtractor) -> None:
        if job_type == JobType.EMBEDDING:
            raise ValueError("embedding jobs have no extractor")
        self._extractors[job_type] = extractor

    def get(self, job_type: JobType) -> IContentExtractor:
        extractor = self._extractors.get(job_type)
        if extractor is None:
            raise ExtractionError(
                f"No extractor registered for {job_type.value} content",
                retryable=False,
            )
        return extractor

    def job_types(self) -> list[JobType]:
        return list(self._extractors)

    def all(self) -> list[IContentExtractor]:
        """Distinct registered extractors, in registration order."""
        unique: dict[int, IContentExtractor] = {}
        for extractor in self._extractors.values():
            unique.setdefault(id(extractor), extractor)
        return list(unique.values())
