"""Shared pytest fixtures for the tutor knowledge-base test suite."""

from __future__ import annotations

import hashlib
import logging
import math
import re
import struct
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.knowledge_base import EducationalMetadata
from src.models.rag import VectorEntry, VectorMatch
from src.providers.catalog.sqlite_catalog_provider import SQLiteCatalogProvider
from src.services.catalog_service import KnowledgeBaseCatalog
from src.services.ingestion.chunker import SentenceChunker
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.ingestion_service import IngestionService
from src.services.ingestion.text_extractor import TextExtractor
from src.services.retrieval_service import RetrievalService
from src.utils.errors import RAGError


@pytest.fixture(autouse=True, scope="session")
def _uncached_logging() -> None:
    """Discard structlog output and never cache loggers during tests.

    A cached logger keeps the ``sys.stdout`` it first saw, which under
    ``capsys`` is closed once that test ends.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.KeyValueRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Embedding fakes
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 128


def _hash_to_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Generate a deterministic fixed-length vector by hashing *text*.

    Uses SHA-256 to hash the text, then unpacks bytes into floats and
    normalises to unit length.  Same text always produces the same vector.
    """
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = digest
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    raw = raw[: dim * 4]
    values = [v if math.isfinite(v) else 0.0 for v in struct.unpack(f"<{dim}f", raw)]
    # Raw float bit patterns span huge magnitudes; squash before normalising.
    values = [math.tanh(v) for v in values]
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


class HashEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests."""

    def __init__(self, dimension: int = _EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self.calls: list[str] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        return _hash_to_vector(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "hash-embedding"

    def is_available(self) -> bool:
        return True


CALCULUS_TERMS = ("derivative", "differentiat", "integral", "calculus", "limit", "slope", "x^2")


class KeywordEmbeddingProvider(IEmbeddingProvider):
    """Embedding fake with known geometry.

    Axis 0 counts calculus vocabulary, axis 1 is a constant bias, and the
    remaining axes carry a small hash-derived offset so distinct texts get
    distinct vectors.  Calculus texts therefore sit close to calculus
    questions and far from everything else.
    """

    _DIM = 8

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        lowered = text.lower()
        hits = sum(lowered.count(term) for term in CALCULUS_TERMS)
        digest = hashlib.sha256(lowered.encode("utf-8")).digest()
        noise = [b / 255.0 * 0.1 for b in digest[: self._DIM - 2]]
        values = [float(hits) * 2.0, 1.0, *noise]
        magnitude = sum(v * v for v in values) ** 0.5
        return [v / magnitude for v in values]

    def get_dimension(self) -> int:
        return self._DIM

    def get_provider_name(self) -> str:
        return "keyword-embedding"

    def is_available(self) -> bool:
        return True


class FlakyEmbeddingProvider(HashEmbeddingProvider):
    """Hash provider whose *fail_on_call*-th call (1-based) raises."""

    def __init__(self, fail_on_call: int, dimension: int = _EMBEDDING_DIM) -> None:
        super().__init__(dimension)
        self._fail_on_call = fail_on_call

    async def embed_single(self, text: str) -> list[float]:
        if len(self.calls) + 1 == self._fail_on_call:
            self.calls.append(text)
            raise RAGError(message="upstream 500", provider_name=self.get_provider_name())
        return await super().embed_single(text)

    def get_provider_name(self) -> str:
        return "flaky-embedding"


# ---------------------------------------------------------------------------
# Vector store fake
# ---------------------------------------------------------------------------


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = (sum(x * x for x in a) ** 0.5) * (sum(y * y for y in b) ** 0.5)
    return dot / norm if norm else 0.0


class InMemoryVectorStore(IVectorStoreProvider):
    """In-memory vector store backed by a dict keyed by vector id.

    Honours flat equality filters and the configured dimension.  Set
    ``fail_upsert`` / ``fail_query`` / ``fail_delete`` to simulate an
    unavailable backend.  ``writes`` counts upsert and delete calls.
    """

    def __init__(self, dimension: int = _EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self.entries: dict[str, VectorEntry] = {}
        self.writes = 0
        self.fail_upsert = False
        self.fail_query = False
        self.fail_delete = False
        self.available = True

    async def upsert(self, entries: list[VectorEntry]) -> int:
        if self.fail_upsert:
            raise RAGError(message="upsert refused", provider_name=self.get_provider_name())
        for entry in entries:
            if len(entry.vector) != self._dimension:
                raise RAGError(message="dimension mismatch", provider_name=self.get_provider_name())
        self.writes += 1
        for entry in entries:
            self.entries[entry.id] = entry
        return len(entries)

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        if self.fail_query:
            raise RAGError(message="query refused", provider_name=self.get_provider_name())
        matches = [
            VectorMatch(id=e.id, score=_cosine(vector, e.vector), metadata=e.metadata)
            for e in self.entries.values()
            if self._matches(e, filters)
        ]
        matches.sort(key=lambda m: (-m.score, m.metadata.chunk_index, m.id))
        return matches[:top_k]

    async def existing_ids(self, ids: list[str]) -> set[str]:
        return {i for i in ids if i in self.entries}

    async def delete_ids(self, ids: list[str]) -> int:
        if self.fail_delete:
            raise RAGError(message="delete refused", provider_name=self.get_provider_name())
        self.writes += 1
        removed = 0
        for i in ids:
            if self.entries.pop(i, None) is not None:
                removed += 1
        return removed

    async def delete_by_knowledge_base(self, knowledge_base_id: str) -> int:
        ids = [i for i, e in self.entries.items() if e.metadata.knowledge_base_id == knowledge_base_id]
        return await self.delete_ids(ids)

    async def delete_by_file(self, knowledge_base_id: str, filename: str) -> int:
        ids = [
            i
            for i, e in self.entries.items()
            if e.metadata.knowledge_base_id == knowledge_base_id and e.metadata.filename == filename
        ]
        return await self.delete_ids(ids)

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        return sum(1 for e in self.entries.values() if self._matches(e, filters))

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "memory-vector-store"

    def is_available(self) -> bool:
        return self.available

    @staticmethod
    def _matches(entry: VectorEntry, filters: dict[str, Any] | None) -> bool:
        if not filters:
            return True
        return all(getattr(entry.metadata, key, None) == value for key, value in filters.items())


# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------


def make_sentences(count: int, length: int, topic: str = "Revision") -> str:
    """Return *count* sentences, each exactly *length* characters long."""
    sentences = []
    for i in range(count):
        stem = f"{topic} sentence {i} "
        filler = "x" * max(0, length - len(stem) - 1)
        sentences.append(f"{stem}{filler}.")
    return " ".join(sentences)


def count_sentences(text: str) -> int:
    return len(re.findall(r"[.!?]+(?=\s|$)", text))


@pytest.fixture
def gcse_maths() -> EducationalMetadata:
    return EducationalMetadata(educational_board="AQA", subject="Mathematics", level="GCSE")


@pytest.fixture
def hash_embedding_provider() -> HashEmbeddingProvider:
    return HashEmbeddingProvider()


@pytest.fixture
def keyword_embedding_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def memory_vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def catalog_provider(tmp_path: Path) -> SQLiteCatalogProvider:
    provider = SQLiteCatalogProvider(db_path=tmp_path / "catalog.db")
    await provider.initialize()
    return provider


@pytest.fixture
def catalog_service(
    catalog_provider: SQLiteCatalogProvider, memory_vector_store: InMemoryVectorStore
) -> KnowledgeBaseCatalog:
    return KnowledgeBaseCatalog(
        catalog=catalog_provider, vector_store=memory_vector_store, timeout_seconds=5
    )


def build_ingestion_service(
    catalog: KnowledgeBaseCatalog,
    embedding_provider: IEmbeddingProvider | None,
    vector_store: IVectorStoreProvider | None,
    upload_dir: Path,
    **overrides: Any,
) -> IngestionService:
    client = (
        EmbeddingClient(embedding_provider, timeout_seconds=5)
        if embedding_provider is not None
        else None
    )
    options: dict[str, Any] = {
        "upload_dir": upload_dir,
        "timeout_seconds": 5,
    }
    options.update(overrides)
    return IngestionService(
        extractor=TextExtractor(timeout_seconds=5),
        chunker=SentenceChunker(max_chunk_length=500),
        embedding_client=client,
        vector_store=vector_store,
        catalog=catalog,
        **options,
    )


@pytest.fixture
def ingestion_service(
    catalog_service: KnowledgeBaseCatalog,
    hash_embedding_provider: HashEmbeddingProvider,
    memory_vector_store: InMemoryVectorStore,
    tmp_path: Path,
) -> IngestionService:
    return build_ingestion_service(
        catalog_service, hash_embedding_provider, memory_vector_store, tmp_path / "uploads"
    )


@pytest.fixture
def retrieval_service(
    hash_embedding_provider: HashEmbeddingProvider,
    memory_vector_store: InMemoryVectorStore,
) -> RetrievalService:
    return RetrievalService(
        embedding_client=EmbeddingClient(hash_embedding_provider, timeout_seconds=5),
        vector_store=memory_vector_store,
        min_score=-1.0,
        timeout_seconds=5,
    )
