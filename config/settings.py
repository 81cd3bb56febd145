"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Mime types accepted by the resource uploader (mirrors the study app's picker).
DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "text/plain",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/webm",
    "audio/mp4",
]


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Remote indexing service ──────────────────────────────
    # POST {index_service_url}/index replaces the whole topic index.
    index_service_url: str = ""
    # GET {index_storage_url}/indices/{subject}/{topic}.json, then the static copy.
    index_storage_url: str = ""
    index_static_url: str = ""
    remote_api_key: str = ""
    remote_timeout: int = 15  # seconds

    # ── Answering backend ────────────────────────────────────
    ask_url: str = ""  # empty = demo responder

    # ── Embeddings ───────────────────────────────────────────
    embedding_backend: str = "auto"  # "auto" | "litellm" | "hash"
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_dim: int = 1536
    max_concurrent_embeddings: int = 8

    # ── Retrieval ────────────────────────────────────────────
    chunk_max_chars: int = 500
    min_chunk_chars: int = 50
    top_k: int = 5
    index_cache_ttl: int = 300  # seconds (5 min)
    notes_max_chars: int = 3000

    # ── Resources ────────────────────────────────────────────
    max_resource_bytes: int = 20 * 1024 * 1024
    allowed_mime_types: list[str] = DEFAULT_ALLOWED_MIME_TYPES

    # ── Chat sessions ────────────────────────────────────────
    session_ttl: int = 1800  # seconds (30 min)
    session_cleanup_interval: int = 300

    # ── Helpers ───────────────────────────────────────────────

    @property
    def demo_mode(self) -> bool:
        """True when no answering backend is configured."""
        return not self.ask_url.strip()


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
