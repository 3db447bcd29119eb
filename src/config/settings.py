"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources, highest priority first:

1. **Environment variables**, e.g. ``OPENAI_API_KEY=sk-abc123``.
2. **.env file** in the working directory (local development).

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``; the mapping is
case-insensitive.  Defaults apply when neither source sets a value.

Services never import this module directly.  ``src/main.py`` reads the
values once and passes them into constructors.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge-base service settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding Providers ===
    # Empty key = "not configured"; main.py then falls through to Ollama.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, Azure proxy, ...)
    openai_embedding_model: str = "text-embedding-3-small"
    ollama_base_url: str = "http://localhost:11434"
    embedding_dimension: int = Field(default=1536, gt=0)
    embedding_max_chars: int = Field(default=8000, gt=0)
    # 1 = one embedding call at a time per file.
    embedding_concurrency: int = Field(default=1, ge=1)

    # === Vector Store ===
    vector_store_backend: Literal["chromadb", "none"] = "chromadb"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "tutor_knowledge_bases"
    vector_text_max_chars: int = Field(default=1000, gt=0)

    # === Catalog ===
    catalog_db_path: str = "data/catalog.db"

    # === Ingestion ===
    upload_dir: str = "data/uploads"
    max_upload_bytes: int = Field(default=15 * 1024 * 1024, gt=0)
    chunk_max_length: int = Field(default=500, gt=0)
    io_timeout_seconds: float = Field(default=60.0, gt=0)

    # === Retrieval ===
    retrieval_top_k: int = Field(default=5, gt=0)
    retrieval_min_score: float = 0.3

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    def get_cors_origins(self) -> list[str]:
        """Return the comma-separated ``cors_origins`` value as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
