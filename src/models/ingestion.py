"""Ingestion pipeline models: stages, targets, staged uploads and results.

A single file moves through the stages in order::

    RECEIVED → EXTRACTED → CHUNKED → EMBEDDING → INDEXED → CATALOGED → DONE

``FAILED`` is reachable from every non-terminal stage.  The orchestrator
(src/services/ingestion/ingestion_service.py) validates each transition
against ``ALLOWED_TRANSITIONS``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from src.models.knowledge_base import EducationalMetadata, FileManifest, KnowledgeBase


class IngestionStage(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Stages of a single file's ingestion run."""

    RECEIVED = "RECEIVED"      # Bytes staged on disk
    EXTRACTED = "EXTRACTED"    # Plain text pulled out of the file
    CHUNKED = "CHUNKED"        # Text split into chunks
    EMBEDDING = "EMBEDDING"    # Embedding calls in flight
    INDEXED = "INDEXED"        # Vectors upserted
    CATALOGED = "CATALOGED"    # Catalog record written
    DONE = "DONE"
    FAILED = "FAILED"


_ORDER = [
    IngestionStage.RECEIVED,
    IngestionStage.EXTRACTED,
    IngestionStage.CHUNKED,
    IngestionStage.EMBEDDING,
    IngestionStage.INDEXED,
    IngestionStage.CATALOGED,
    IngestionStage.DONE,
]

ALLOWED_TRANSITIONS: dict[IngestionStage, frozenset[IngestionStage]] = {
    stage: frozenset({nxt, IngestionStage.FAILED}) for stage, nxt in zip(_ORDER, _ORDER[1:])
}
ALLOWED_TRANSITIONS[IngestionStage.DONE] = frozenset()
ALLOWED_TRANSITIONS[IngestionStage.FAILED] = frozenset()


# ---------------------------------------------------------------------------
# Targets - where an uploaded file should land.
# ---------------------------------------------------------------------------
class ExistingKnowledgeBase(BaseModel):
    """Append the file to a knowledge base that already exists."""

    model_config = ConfigDict(frozen=True)

    knowledge_base_id: str


class NewKnowledgeBase(BaseModel):
    """Create a knowledge base with the file as its first document."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    metadata: EducationalMetadata


IngestionTarget = ExistingKnowledgeBase | NewKnowledgeBase


class StagedUpload(BaseModel):
    """An upload written to the staging directory, awaiting ingestion."""

    model_config = ConfigDict(frozen=True)

    path: Path
    original_filename: str
    storage_filename: str
    size_bytes: int = Field(ge=0)

    @property
    def extension(self) -> str:
        return Path(self.original_filename).suffix.lower()


# ---------------------------------------------------------------------------
# IngestionResult
# ---------------------------------------------------------------------------
class IngestionResult(BaseModel):
    """Summary of one successful file ingestion."""

    model_config = ConfigDict(frozen=True)

    knowledge_base: KnowledgeBase
    file: FileManifest
    chunks_indexed: int = Field(default=0, ge=0)
    tokens_indexed: int = Field(default=0, ge=0)
    chunks_skipped: int = Field(default=0, ge=0, description="Empty chunks not embedded.")
    stale_vectors_removed: int = Field(default=0, ge=0)
    # True when a file with the same original name was already recorded.
    replaced: bool = False
    created_knowledge_base: bool = False
    elapsed_seconds: float = Field(default=0.0, ge=0.0)
