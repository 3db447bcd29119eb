"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Uses cosine distance for similarity search.  Fully local, no external
service required.

ChromaDB's client API is synchronous; every call is pushed onto a worker
thread with ``asyncio.to_thread`` so a slow disk never stalls the event
loop and callers can bound each call with ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# ChromaDB ships PostHog telemetry; the env var must be set before import
# and Settings(anonymized_telemetry=False) is passed to the client below.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.rag import VectorEntry, VectorMatch, VectorMetadata
from src.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

# Upsert page size; keeps ChromaDB's per-call allocations bounded.
_UPSERT_BATCH_SIZE = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that refuses to run.

    Every vector is computed by an IEmbeddingProvider before it reaches
    ChromaDB.  Passing this stops ChromaDB from downloading and loading its
    default ONNX model on collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "Embeddings are pre-computed; ChromaDB's built-in embedding must not be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    dimension:
        Length every stored vector must have.  Checked against the
        collection's existing vectors at startup and against each entry on
        upsert.
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_name:
        Collection holding every knowledge base's vectors; knowledge bases
        are separated by the ``knowledge_base_id`` metadata field.
    """

    def __init__(
        self,
        dimension: int,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "tutor_knowledge_bases",
    ) -> None:
        self._dimension = dimension
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # Collections created by other tooling may have a persisted default
        # embedding function; ChromaDB then rejects ours with ValueError and
        # the collection is opened as-is.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

        self._validate_embedding_dimensions()

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def _validate_embedding_dimensions(self) -> None:
        """Verify the configured dimension matches vectors already stored.

        Peeks at a single stored vector.  A mismatch means every query would
        compare vectors from different models, so startup fails.
        """
        collection_count = self._collection.count()
        if collection_count == 0:
            return

        sample = self._collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return

        stored_dim = len(embeddings[0])
        if stored_dim != self._dimension:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=self._dimension,
                collection=self._collection_name,
            )
            raise RAGError(
                message=(
                    f"Embedding dimension mismatch: collection '{self._collection_name}' "
                    f"holds {stored_dim}-dim vectors but {self._dimension} is configured. "
                    f"Use the embedding model the collection was built with."
                ),
                provider_name=self.get_provider_name(),
            )

        logger.info(
            "embedding_dimension_validated",
            dimension=stored_dim,
            stored_vectors=collection_count,
        )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, entries: list[VectorEntry]) -> int:
        """Upsert vectors in pages of ``_UPSERT_BATCH_SIZE``."""
        if not entries:
            return 0

        for entry in entries:
            if len(entry.vector) != self._dimension:
                raise RAGError(
                    message=(
                        f"Vector '{entry.id}' has dimension {len(entry.vector)}, "
                        f"expected {self._dimension}"
                    ),
                    provider_name=self.get_provider_name(),
                )

        try:
            total_stored = 0
            for start in range(0, len(entries), _UPSERT_BATCH_SIZE):
                batch = entries[start : start + _UPSERT_BATCH_SIZE]
                await asyncio.to_thread(
                    self._collection.upsert,
                    ids=[e.id for e in batch],
                    embeddings=[e.vector for e in batch],
                    documents=[e.metadata.text for e in batch],
                    metadatas=[self._entry_to_metadata(e) for e in batch],
                )
                total_stored += len(batch)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("chromadb_upsert", count=total_stored)
        return total_stored

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Cosine k-NN search, scores reported as ``1 - distance``."""
        if len(vector) != self._dimension:
            raise RAGError(
                message=f"Query vector has dimension {len(vector)}, expected {self._dimension}",
                provider_name=self.get_provider_name(),
            )

        try:
            if await asyncio.to_thread(self._collection.count) == 0:
                return []

            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": top_k,
                "include": ["documents", "metadatas", "distances"],
            }
            where_clause = self._translate_filters(filters)
            if where_clause:
                kwargs["where"] = where_clause

            results = await asyncio.to_thread(self._collection.query, **kwargs)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(ids)

        matches = [
            VectorMatch(
                id=vid,
                score=1.0 - float(distance),
                metadata=self._metadata_to_model(meta, doc),
            )
            for vid, doc, meta, distance in zip(ids, documents, metadatas, distances, strict=True)
        ]
        matches.sort(key=lambda m: (-m.score, m.metadata.chunk_index, m.id))

        logger.debug(
            "chromadb_query",
            results_count=len(matches),
            top_score=matches[0].score if matches else 0.0,
        )
        return matches[:top_k]

    async def existing_ids(self, ids: list[str]) -> set[str]:
        if not ids:
            return set()
        try:
            found = await asyncio.to_thread(self._collection.get, ids=ids, include=[])
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB get failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return set(found["ids"] or [])

    async def delete_ids(self, ids: list[str]) -> int:
        present = await self.existing_ids(ids)
        if not present:
            return 0
        try:
            await asyncio.to_thread(self._collection.delete, ids=sorted(present))
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_ids", deleted_count=len(present))
        return len(present)

    async def delete_by_knowledge_base(self, knowledge_base_id: str) -> int:
        deleted = await self._delete_where({"knowledge_base_id": knowledge_base_id})
        logger.info(
            "chromadb_delete_by_knowledge_base",
            knowledge_base_id=knowledge_base_id,
            deleted_count=deleted,
        )
        return deleted

    async def delete_by_file(self, knowledge_base_id: str, filename: str) -> int:
        deleted = await self._delete_where(
            {"knowledge_base_id": knowledge_base_id, "filename": filename}
        )
        logger.info(
            "chromadb_delete_by_file",
            knowledge_base_id=knowledge_base_id,
            filename=filename,
            deleted_count=deleted,
        )
        return deleted

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        try:
            where_clause = self._translate_filters(filters)
            if not where_clause:
                return await asyncio.to_thread(self._collection.count)
            found = await asyncio.to_thread(
                self._collection.get, where=where_clause, include=[]
            )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return len(found["ids"] or [])

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the collection answers a count."""
        try:
            self._collection.count()
        except Exception as exc:  # noqa: BLE001
            logger.warning("chromadb_unavailable", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _delete_where(self, filters: dict[str, Any]) -> int:
        where_clause = self._translate_filters(filters)
        try:
            existing = await asyncio.to_thread(
                self._collection.get, where=where_clause, include=[]
            )
            ids = existing["ids"] or []
            if ids:
                await asyncio.to_thread(self._collection.delete, ids=ids)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return len(ids)

    @staticmethod
    def _translate_filters(filters: dict[str, Any] | None) -> dict[str, Any] | None:
        """Translate a flat equality dict into a ChromaDB ``where`` clause.

        ChromaDB accepts a single ``{field: value}`` pair directly but needs
        ``$and`` to combine more than one.
        """
        if not filters:
            return None
        clauses = [{key: value} for key, value in filters.items()]
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    @staticmethod
    def _entry_to_metadata(entry: VectorEntry) -> dict[str, Any]:
        # Text lives in the document column, not duplicated into metadata.
        return entry.metadata.model_dump(exclude={"text"})

    @staticmethod
    def _metadata_to_model(meta: dict[str, Any] | None, document: str | None) -> VectorMetadata:
        meta = dict(meta or {})
        meta["text"] = document or ""
        return VectorMetadata.model_validate(meta)
