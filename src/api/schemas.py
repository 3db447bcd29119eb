"""Pydantic request/response schemas for the tutor knowledge-base API.

Defines the public contract for the REST endpoints: upload, listing,
stats, detail/update/delete, retrieval and health.

Domain models (KnowledgeBase, FileManifest, ...) stay internal; routes map
them onto these schemas with the ``from_*`` helpers so the wire format can
evolve independently of the catalog store.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.ingestion import IngestionResult
from src.models.knowledge_base import CatalogStats, FileManifest, KnowledgeBase
from src.models.rag import RetrievalResult


# ---------------------------------------------------------------------------
# Knowledge bases
# ---------------------------------------------------------------------------


class FileManifestResponse(BaseModel):
    """One uploaded file inside a knowledge base."""

    filename: str
    original_name: str
    size: int
    uploaded_at: datetime
    chunks: int
    tokens: int

    @classmethod
    def from_manifest(cls, manifest: FileManifest) -> FileManifestResponse:
        return cls(
            filename=manifest.storage_filename,
            original_name=manifest.original_filename,
            size=manifest.size_bytes,
            uploaded_at=manifest.uploaded_at,
            chunks=manifest.chunk_count,
            tokens=manifest.token_count,
        )


class KnowledgeBaseResponse(BaseModel):
    """A knowledge base with its counters and file manifest."""

    id: str
    name: str
    description: str = ""
    educational_board: str
    subject: str
    level: str
    file_count: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    files: list[FileManifestResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, kb: KnowledgeBase) -> KnowledgeBaseResponse:
        return cls(
            id=kb.id,
            name=kb.name,
            description=kb.description,
            educational_board=kb.metadata.educational_board,
            subject=kb.metadata.subject,
            level=kb.metadata.level,
            file_count=kb.file_count,
            total_chunks=kb.total_chunks,
            total_tokens=kb.total_tokens,
            files=[FileManifestResponse.from_manifest(f) for f in kb.files],
            created_at=kb.created_at,
            updated_at=kb.updated_at,
        )


class KnowledgeBaseListResponse(BaseModel):
    """One page of knowledge bases."""

    items: list[KnowledgeBaseResponse] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    pages: int = 0


class KnowledgeBaseUpdateRequest(BaseModel):
    """Rename and/or re-describe a knowledge base; omitted fields are unchanged."""

    name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class StatsOverview(BaseModel):
    total_knowledge_bases: int = 0
    total_files: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    avg_files_per_knowledge_base: float = 0.0
    avg_chunks_per_knowledge_base: float = 0.0


class StatsResponse(BaseModel):
    """Catalog overview plus the most recently updated knowledge bases."""

    overview: StatsOverview
    recent: list[KnowledgeBaseResponse] = Field(default_factory=list)

    @classmethod
    def from_stats(cls, stats: CatalogStats) -> StatsResponse:
        return cls(
            overview=StatsOverview(
                total_knowledge_bases=stats.total_knowledge_bases,
                total_files=stats.total_files,
                total_chunks=stats.total_chunks,
                total_tokens=stats.total_tokens,
                avg_files_per_knowledge_base=stats.avg_files_per_knowledge_base,
                avg_chunks_per_knowledge_base=stats.avg_chunks_per_knowledge_base,
            ),
            recent=[KnowledgeBaseResponse.from_model(kb) for kb in stats.recent],
        )


class DeleteResponse(BaseModel):
    """Result of a knowledge-base or file delete."""

    success: bool = True
    knowledge_base_id: str
    vectors_deleted: int = 0
    criteria: KnowledgeBaseResponse | None = None


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class IngestionSummary(BaseModel):
    """What one upload did to the index."""

    filename: str
    stored_as: str
    chunks_indexed: int
    tokens_indexed: int
    chunks_skipped: int = 0
    stale_vectors_removed: int = 0
    replaced: bool = False
    created_knowledge_base: bool = False
    elapsed_seconds: float = 0.0

    @classmethod
    def from_result(cls, result: IngestionResult) -> IngestionSummary:
        return cls(
            filename=result.file.original_filename,
            stored_as=result.file.storage_filename,
            chunks_indexed=result.chunks_indexed,
            tokens_indexed=result.tokens_indexed,
            chunks_skipped=result.chunks_skipped,
            stale_vectors_removed=result.stale_vectors_removed,
            replaced=result.replaced,
            created_knowledge_base=result.created_knowledge_base,
            elapsed_seconds=result.elapsed_seconds,
        )


class UploadResponse(BaseModel):
    """Response returned after a file has been ingested."""

    success: bool = True
    criteria: KnowledgeBaseResponse
    ingestion: IngestionSummary


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class RetrieveRequest(BaseModel):
    """Ground a chat question in one knowledge base."""

    knowledge_base_id: str = Field(..., min_length=1)
    question: str = Field(..., max_length=4000)
    top_k: int | None = Field(default=None, ge=1, le=50)


class SnippetResponse(BaseModel):
    vector_id: str
    text: str
    score: float
    filename: str
    chunk_index: int


class RetrieveResponse(BaseModel):
    """Retrieval outcome; ``status`` tells 'no matches' apart from 'index down'."""

    status: str
    reason: str | None = None
    snippets: list[SnippetResponse] = Field(default_factory=list)
    context: str = ""

    @classmethod
    def from_result(cls, result: RetrievalResult, context: str) -> RetrieveResponse:
        return cls(
            status=result.status.value,
            reason=result.reason or None,
            snippets=[
                SnippetResponse(
                    vector_id=s.vector_id,
                    text=s.text,
                    score=s.score,
                    filename=s.filename,
                    chunk_index=s.chunk_index,
                )
                for s in result.snippets
            ],
            context=context,
        )


# ---------------------------------------------------------------------------
# Health / errors
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Application health and which providers are configured."""

    status: str = "healthy"
    version: str
    providers: dict[str, str | None] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    details: str | None = None
