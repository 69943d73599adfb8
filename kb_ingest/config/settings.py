"""Application settings loaded from environment variables via pydantic-settings.

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY`` and so on;
environment variables win over the ``.env`` file, which wins over the
defaults below.  :func:`kb_ingest.config.loader.load_settings` adds a YAML
layer underneath the environment.

Components never read ``os.environ`` themselves: :mod:`kb_ingest.main`
builds one ``Settings`` and hands each component the values it needs.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from kb_ingest.utils.errors import ConfigurationError


class Settings(BaseSettings):
    """kb-ingest settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Service credentials / endpoints ===
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_transcription_model: str = "whisper-1"
    openai_timeout_seconds: float = 60.0

    # === Storage ===
    database_path: str = "data/kb_ingest.db"
    blob_root: str = "data/blobs"

    # === Extraction ===
    pdf_sampling_threshold: int = 250
    pdf_max_sampled_pages: int = 200
    pdf_time_budget_seconds: float = 120.0
    pdf_max_text_bytes: int = 20_000_000
    pdf_sampling_seed: int = 42
    web_fetch_timeout_seconds: float = 15.0
    web_min_content_length: int = 200
    transcript_default_language: str = "en"
    transcript_fallback_languages: list[str] = ["en-US", "en-GB", "es", "fr", "de", "pt", "it"]
    transcription_language: str = ""

    # === Chunking ===
    chunk_size: int = 1500
    chunk_overlap: int = 200
    chunk_preserve_structure: bool = True

    # === Embedding ===
    embedding_batch_size: int = 100
    embedding_batch_token_budget: int = 250_000
    embedding_max_input_tokens: int = 8192
    embedding_max_retries: int = 3
    embedding_batch_pause_seconds: float = 0.2

    # === Summarization ===
    summary_batch_threshold: int = 30
    summary_batch_size: int = 10
    summary_batch_pause_seconds: float = 0.1
    summary_concurrency: int = 4
    summary_chunk_max_tokens: int = 400
    summary_section_max_tokens: int = 500
    summary_document_max_tokens: int = 600
    summary_section_input_chars: int = 24_000
    summary_document_input_chars: int = 48_000
    summary_max_retries: int = 3
    claim_lease_seconds: float = 600.0

    # === Retry backoff ===
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 20.0

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def missing_required_keys(self) -> list[str]:
        """Return the names of required settings that are empty."""
        required = {
            "openai_api_key": self.openai_api_key,
            "openai_text_model": self.openai_text_model,
            "openai_embedding_model": self.openai_embedding_model,
            "database_path": self.database_path,
            "blob_root": self.blob_root,
        }
        return [name for name, value in required.items() if not value]

    def require_service_credentials(self) -> None:
        """Raise :class:`ConfigurationError` when a required key is empty."""
        missing = self.missing_required_keys()
        if missing:
            raise ConfigurationError(
                message="Missing required settings: " + ", ".join(m.upper() for m in missing),
            )
