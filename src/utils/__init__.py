"""Utility modules for the tutor knowledge-base service.

Available utility modules (all re-exported here for convenience):

- **errors** -- Exception hierarchy rooted at KnowledgeBaseError; every
  class carries a stable ``error_code`` and ingestion errors carry the
  stage they were raised at.
- **concurrency** -- fail-fast bounded fan-out used for per-chunk
  embedding.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    ConfigurationError,
    IngestionError,
    KnowledgeBaseError,
    PipelineError,
    RAGError,
)

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import gather_fail_fast

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import bind_context, clear_context, configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "IngestionError",
    "KnowledgeBaseError",
    "PipelineError",
    "RAGError",
    "bind_context",
    "clear_context",
    "configure_logging",
    "gather_fail_fast",
    "get_logger",
]
