"""Application settings loaded from environment variables via pydantic-settings.

Values come from three layers, later layers winning:

    1. Field defaults below.
    2. ``config/config.yaml`` (see :mod:`memoria.config.loader`).
    3. ``.env`` file and process environment, e.g. ``PROVIDER_API_KEY``.

Field names are flattened ``<section>_<key>`` so that the YAML section
``provider: {kind: ollama}`` and the env var ``PROVIDER_KIND=ollama`` land
on the same field.

The model provider is chosen by an explicit ``provider_kind`` value and
resolved once at startup into a frozen :class:`ProviderConfig`.  Nothing
downstream inspects credentials to guess which endpoint to talk to.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from memoria.utils.errors import ConfigurationError

ProviderKind = Literal["openai", "openai_compatible", "ollama"]
EmbeddingPolicyName = Literal["strict", "degrade"]

# Default endpoint for each provider kind.  ``None`` means the SDK default.
_DEFAULT_ENDPOINTS: dict[str, str | None] = {
    "openai": None,
    "openai_compatible": None,
    "ollama": "http://localhost:11434/v1",
}


class ProviderConfig(BaseModel):
    """Resolved model-provider configuration shared by every OpenAI-style client."""

    model_config = ConfigDict(frozen=True)

    kind: ProviderKind
    endpoint: str | None = Field(default=None, description="Base URL; None uses the SDK default.")
    api_key: str = Field(default="", repr=False)
    chat_model: str
    embedding_model: str
    classifier_model: str
    transcription_model: str
    embedding_dimension: int = Field(gt=0)
    request_timeout: float = Field(gt=0)


class Settings(BaseSettings):
    """Memoria application settings.

    Environment variables override YAML values and defaults.  Loaded from
    ``.env`` when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Model provider ===
    provider_kind: ProviderKind = "openai"
    provider_endpoint: str = ""
    provider_api_key: str = ""
    provider_chat_model: str = "gpt-4o-mini"
    provider_embedding_model: str = "text-embedding-3-small"
    provider_classifier_model: str = "gpt-4o-mini"
    provider_transcription_model: str = "whisper-1"
    provider_embedding_dimension: int = 1536
    provider_request_timeout: float = 60.0

    # === Storage ===
    store_backend: Literal["sqlite", "memory"] = "sqlite"
    store_sqlite_path: str = "data/memoria.db"
    store_vector_index: Literal["none", "chromadb"] = "none"
    store_chromadb_persist_dir: str = "./data/chromadb"
    store_chromadb_collection: str = "memoria_chunks"

    # === Pipeline ===
    pipeline_max_attempts: int = Field(default=3, ge=1)
    pipeline_backoff_base_seconds: float = Field(default=2.0, ge=0)
    pipeline_audio_workers: int = Field(default=2, ge=1)
    pipeline_document_workers: int = Field(default=3, ge=1)
    pipeline_web_workers: int = Field(default=2, ge=1)
    pipeline_image_workers: int = Field(default=2, ge=1)
    pipeline_embedding_workers: int = Field(default=5, ge=1)
    pipeline_min_extracted_chars: int = Field(default=10, ge=1)
    pipeline_delete_source_files: bool = False
    pipeline_web_fetch_timeout: float = Field(default=30.0, gt=0)
    pipeline_job_history_size: int = Field(default=10_000, ge=1)
    pipeline_job_history_ttl_seconds: float = Field(default=3600.0, gt=0)

    # === Chunking ===
    chunking_size: int = Field(default=1000, gt=0)
    chunking_overlap: int = Field(default=200, ge=0)

    # === Embeddings ===
    embedding_batch_size: int = Field(default=100, ge=1)
    embedding_max_concurrency: int = Field(default=4, ge=1)
    embedding_pipeline_policy: EmbeddingPolicyName = "strict"
    embedding_query_policy: EmbeddingPolicyName = "degrade"
    embedding_cache_ttl: int = Field(default=3600, ge=0)
    embedding_cache_size: int = Field(default=1024, ge=1)

    # === Retrieval ===
    retrieval_similarity_threshold: float = Field(default=0.70, ge=0, le=1)
    retrieval_vector_weight: float = 0.7
    retrieval_lexical_weight: float = 0.3
    retrieval_default_limit: int = Field(default=10, ge=1)
    retrieval_lexical_candidates: int = Field(default=20, ge=1)
    retrieval_default_lookback_days: int = Field(default=365, ge=1)

    # === App ===
    app_env: str = "development"
    app_log_level: str = "INFO"

    def pool_sizes(self) -> dict[str, int]:
        """Worker pool size per job type, keyed by ``JobType`` value."""
        return {
            "audio": self.pipeline_audio_workers,
            "document": self.pipeline_document_workers,
            "web": self.pipeline_web_workers,
            "image": self.pipeline_image_workers,
            "embedding": self.pipeline_embedding_workers,
        }

    def resolve_provider(self) -> ProviderConfig:
        """Build the frozen provider config, validating kind-specific requirements.

        Raises
        ------
        ConfigurationError
            If ``openai_compatible`` has no endpoint, or ``openai`` has no
            API key.
        """
        endpoint = self.provider_endpoint or _DEFAULT_ENDPOINTS[self.provider_kind]
        api_key = self.provider_api_key

        if self.provider_kind == "openai_compatible" and not endpoint:
            raise ConfigurationError(
                "provider_kind 'openai_compatible' requires provider_endpoint",
                provider_name=self.provider_kind,
            )
        if self.provider_kind == "openai" and not api_key:
            raise ConfigurationError(
                "provider_kind 'openai' requires provider_api_key",
                provider_name=self.provider_kind,
            )
        if self.provider_kind == "ollama" and not api_key:
            # Ollama's OpenAI-compatible endpoint ignores the key but the SDK requires one.
            api_key = "ollama"

        return ProviderConfig(
            kind=self.provider_kind,
            endpoint=endpoint,
            api_key=api_key,
            chat_model=self.provider_chat_model,
            embedding_model=self.provider_embedding_model,
            classifier_model=self.provider_classifier_model,
            transcription_model=self.provider_transcription_model,
            embedding_dimension=self.provider_embedding_dimension,
            request_timeout=self.provider_request_timeout,
        )
