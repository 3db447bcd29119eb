"""Custom exception hierarchy for the knowledge-base service.

All application exceptions inherit from :class:`KnowledgeBaseError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "sqlite_catalog") caused the
failure, and a stable ``error_code`` that API clients can branch on without
parsing message strings.

The hierarchy is organized by pipeline domain:

    KnowledgeBaseError  (base -- catch-all for any service error)
    +-- IngestionError            (file-scoped ingestion failures, carry a stage)
    |   +-- UnsupportedFormatError  (extension not recognised)
    |   +-- FileTooLargeError       (upload exceeds the configured cap)
    |   +-- ExtractionFailedError   (parser could not read the bytes)
    |   +-- EmptyContentError       (no chunks / no extractable text)
    |   +-- EmbeddingFailedError    (a chunk's embedding call failed)
    |   +-- IndexUnavailableError   (vector store unconfigured or unreachable)
    +-- DuplicateNameError       (knowledge-base name already taken)
    +-- NotFoundError            (referenced knowledge base / file missing)
    +-- InvalidRequestError      (malformed caller input)
    +-- CatalogError             (catalog storage failure)
    +-- ConfigurationError       (startup / missing config)
    +-- PipelineError            (invalid ingestion stage transition)
    +-- RAGError                 (embedding or vector-store provider failure)

Providers raise :class:`RAGError`; the ingestion pipeline translates those
into the stage-specific variants above so callers only ever see the closed
taxonomy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.models.ingestion import IngestionStage


class KnowledgeBaseError(Exception):
    """Base exception for all knowledge-base service errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    error_code = "internal_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# File-scoped ingestion errors
# ---------------------------------------------------------------------------

class IngestionError(KnowledgeBaseError):
    """Base for errors that abort the ingestion of a single file.

    ``stage`` records the pipeline stage that was running when the error
    was raised.  It is ``None`` for errors raised before a pipeline run
    starts (e.g. upload validation).
    """

    error_code = "ingestion_failed"

    def __init__(
        self,
        message: str = "File ingestion failed",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.stage = stage


class UnsupportedFormatError(IngestionError):
    """Raised when a file extension has no registered text extractor."""

    error_code = "unsupported_format"

    def __init__(
        self,
        message: str = "Unsupported file format",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class FileTooLargeError(IngestionError):
    """Raised when an upload exceeds the configured size cap."""

    error_code = "file_too_large"

    def __init__(
        self,
        message: str = "File too large",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class ExtractionFailedError(IngestionError):
    """Raised when a parser fails to read the file bytes (corrupt PDF, bad DOCX)."""

    error_code = "extraction_failed"

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class EmptyContentError(IngestionError):
    """Raised when a file yields no chunks worth embedding."""

    error_code = "empty_content"

    def __init__(
        self,
        message: str = "File has no extractable text",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class EmbeddingFailedError(IngestionError):
    """Raised when embedding a chunk fails or times out.

    ``chunk_index`` identifies the failing chunk so operators can find the
    offending passage.  It is ``None`` for query embeddings.
    """

    error_code = "embedding_failed"

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
        chunk_index: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)
        self.chunk_index = chunk_index


class IndexUnavailableError(IngestionError):
    """Raised when the vector store is not configured or cannot be reached."""

    error_code = "index_unavailable"

    def __init__(
        self,
        message: str = "Vector index is unavailable",
        provider_name: str | None = None,
        stage: IngestionStage | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# Catalog errors
# ---------------------------------------------------------------------------

class DuplicateNameError(KnowledgeBaseError):
    """Raised when creating a knowledge base whose name already exists."""

    error_code = "duplicate_name"

    def __init__(
        self,
        message: str = "A knowledge base with this name already exists",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(KnowledgeBaseError):
    """Raised when a referenced knowledge base or file does not exist."""

    error_code = "not_found"

    def __init__(
        self,
        message: str = "Knowledge base not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidRequestError(KnowledgeBaseError):
    """Raised when caller input is missing or malformed."""

    error_code = "invalid_request"

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CatalogError(KnowledgeBaseError):
    """Raised when the catalog storage layer fails."""

    error_code = "catalog_error"

    def __init__(
        self,
        message: str = "Knowledge-base catalog operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(KnowledgeBaseError):
    """Raised when ingestion orchestration fails (invalid stage transition)."""

    error_code = "pipeline_error"

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeBaseError):
    """Raised when configuration is invalid or missing at startup."""

    error_code = "configuration_error"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# RAG / vector-store errors
# ---------------------------------------------------------------------------

class RAGError(KnowledgeBaseError):
    """Raised when an embedding or vector-store provider call fails."""

    error_code = "rag_error"

    def __init__(
        self,
        message: str = "RAG pipeline operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
