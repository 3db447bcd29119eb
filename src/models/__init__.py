"""Domain models, re-exported for ``from src.models import ...``.

The models are organised across three submodules by concern:
    - knowledge_base.py - catalog records, file manifests, stats
    - ingestion.py      - ingestion stages, targets, staged uploads, results
    - rag.py            - chunks, vector entries, matches, retrieval results
"""

from __future__ import annotations

from src.models.ingestion import (
    ALLOWED_TRANSITIONS,
    ExistingKnowledgeBase,
    IngestionResult,
    IngestionStage,
    IngestionTarget,
    NewKnowledgeBase,
    StagedUpload,
)
from src.models.knowledge_base import (
    CatalogStats,
    EducationalMetadata,
    FileManifest,
    KnowledgeBase,
    KnowledgeBaseDraft,
)
from src.models.rag import (
    RetrievalResult,
    RetrievalStatus,
    RetrievedSnippet,
    TextChunk,
    VectorEntry,
    VectorMatch,
    VectorMetadata,
    vector_id,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CatalogStats",
    "EducationalMetadata",
    "ExistingKnowledgeBase",
    "FileManifest",
    "IngestionResult",
    "IngestionStage",
    "IngestionTarget",
    "KnowledgeBase",
    "KnowledgeBaseDraft",
    "NewKnowledgeBase",
    "RetrievalResult",
    "RetrievalStatus",
    "RetrievedSnippet",
    "StagedUpload",
    "TextChunk",
    "VectorEntry",
    "VectorMatch",
    "VectorMetadata",
    "vector_id",
]
