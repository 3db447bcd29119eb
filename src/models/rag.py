"""RAG data models: text chunks, vector entries, matches and retrieval results.

Retrieval-augmented generation in the tutor works in four steps:

1. INGESTION: an uploaded document's text is split into sentence-respecting
   chunks (src/services/ingestion/chunker.py).
2. EMBEDDING: each chunk is converted into a fixed-dimension vector.
3. STORAGE: vectors are upserted into the vector store under a
   deterministic id, with the knowledge base's educational metadata copied
   alongside so queries can be filtered.
4. RETRIEVAL: a student's question is embedded, the nearest chunks inside
   the selected knowledge base are fetched, and their text is handed to the
   chat generator as grounding context.

All models use frozen config.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def vector_id(knowledge_base_id: str, filename: str, chunk_index: int) -> str:
    """Build the composite vector id for a chunk.

    *filename* is the original upload name, so re-uploading the same file
    into the same knowledge base overwrites the same ids.
    """
    return f"{knowledge_base_id}_{filename}_{chunk_index}"


# ---------------------------------------------------------------------------
# TextChunk - output of the chunker.
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """One chunk of document text with its position and approximate size."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="Zero-based position of the chunk in its document.")
    text: str = Field(description="Chunk text, trimmed.")
    # ceil(len/4) estimate, not a real tokenizer count.
    token_count: int = Field(default=0, ge=0, description="Approximate token count.")


# ---------------------------------------------------------------------------
# Vector store records.
# ---------------------------------------------------------------------------
class VectorMetadata(BaseModel):
    """Metadata stored beside every vector.

    Flat scalar fields only; vector backends (ChromaDB included) reject
    nested metadata values.
    """

    model_config = ConfigDict(frozen=True)

    knowledge_base_id: str
    knowledge_base_name: str
    educational_board: str
    subject: str
    level: str
    filename: str
    chunk_index: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0)
    text: str = Field(default="", description="Chunk text, truncated for storage.")


class VectorEntry(BaseModel):
    """A vector ready to be upserted."""

    model_config = ConfigDict(frozen=True)

    id: str
    vector: list[float]
    metadata: VectorMetadata


class VectorMatch(BaseModel):
    """A vector store query hit."""

    model_config = ConfigDict(frozen=True)

    id: str
    # Cosine similarity (1 - cosine distance); higher is closer.
    score: float
    metadata: VectorMetadata


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
class RetrievalStatus(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Outcome of a retrieval call.

    ``OK`` with zero snippets means "nothing relevant"; the other statuses
    mean the answer must be generated without grounding.
    """

    OK = "OK"
    INDEX_UNAVAILABLE = "INDEX_UNAVAILABLE"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"


class RetrievedSnippet(BaseModel):
    """A chunk of knowledge-base text relevant to a question."""

    model_config = ConfigDict(frozen=True)

    vector_id: str
    text: str
    score: float
    knowledge_base_id: str
    filename: str
    chunk_index: int = Field(ge=0)


class RetrievalResult(BaseModel):
    """Snippets for a question plus the status that produced them."""

    model_config = ConfigDict(frozen=True)

    status: RetrievalStatus = RetrievalStatus.OK
    snippets: list[RetrievedSnippet] = Field(default_factory=list)
    reason: str = Field(default="", description="Why retrieval degraded, when it did.")

    @property
    def is_grounded(self) -> bool:
        return self.status == RetrievalStatus.OK and bool(self.snippets)
