"""Knowledge-base catalog models.

A *knowledge base* is a named collection of uploaded study documents
(syllabi, past papers, revision notes) tagged with the educational board,
subject and level it targets.  The catalog keeps one record per knowledge
base plus a manifest entry per uploaded file; the chunk and token counters
on the record always equal the sums over its manifest.

All models use frozen config; updates produce new instances via
``model_copy(update={...})``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# EducationalMetadata - the tags every knowledge base carries.
# ---------------------------------------------------------------------------
class EducationalMetadata(BaseModel):
    """Board / subject / level tags copied onto every indexed chunk."""

    model_config = ConfigDict(frozen=True)

    educational_board: str = Field(description="Examining body, e.g. 'AQA' or 'CBSE'.")
    subject: str = Field(description="Subject name, e.g. 'Mathematics'.")
    level: str = Field(description="Qualification level, e.g. 'GCSE' or 'A-Level'.")

    @field_validator("educational_board", "subject", "level")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


# ---------------------------------------------------------------------------
# FileManifest - one uploaded file inside a knowledge base.
# ---------------------------------------------------------------------------
class FileManifest(BaseModel):
    """A file recorded against a knowledge base.

    ``original_filename`` is the caller-supplied name and identifies the file
    inside its knowledge base (a re-upload with the same name replaces this
    entry).  ``storage_filename`` is the timestamp-prefixed name the bytes
    were staged under.
    """

    model_config = ConfigDict(frozen=True)

    storage_filename: str = Field(description="Timestamp-prefixed staged filename.")
    original_filename: str = Field(description="Filename as uploaded by the caller.")
    size_bytes: int = Field(default=0, ge=0, description="Upload size in bytes.")
    uploaded_at: datetime = Field(default_factory=_utc_now)
    chunk_count: int = Field(default=0, ge=0, description="Chunks indexed for this file.")
    token_count: int = Field(default=0, ge=0, description="Approximate tokens indexed.")


# ---------------------------------------------------------------------------
# KnowledgeBase - the catalog record.
# ---------------------------------------------------------------------------
class KnowledgeBase(BaseModel):
    """A named knowledge base with its file manifest and running counters."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Opaque unique identifier.")
    name: str = Field(description="Unique, human-readable name.")
    description: str = Field(default="")
    metadata: EducationalMetadata
    files: list[FileManifest] = Field(default_factory=list)
    total_chunks: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def file_count(self) -> int:
        return len(self.files)

    def find_file(self, original_filename: str) -> FileManifest | None:
        """Return the manifest entry for *original_filename*, if recorded."""
        for manifest in self.files:
            if manifest.original_filename == original_filename:
                return manifest
        return None


class KnowledgeBaseDraft(BaseModel):
    """Fields needed to create a knowledge base."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    metadata: EducationalMetadata


# ---------------------------------------------------------------------------
# CatalogStats - dashboard overview.
# ---------------------------------------------------------------------------
class CatalogStats(BaseModel):
    """Aggregate counts across every knowledge base.

    ``recent`` holds the most recently updated knowledge bases, newest first.
    """

    model_config = ConfigDict(frozen=True)

    total_knowledge_bases: int = Field(default=0, ge=0)
    total_files: int = Field(default=0, ge=0)
    total_chunks: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    avg_files_per_knowledge_base: float = Field(default=0.0, ge=0.0)
    avg_chunks_per_knowledge_base: float = Field(default=0.0, ge=0.0)
    recent: list[KnowledgeBase] = Field(default_factory=list)
