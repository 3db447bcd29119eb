"""Abstract base class for vector-store service providers.

Defines the contract for storing, querying and deleting embedded chunks of
knowledge-base documents.  The ChromaDB adapter is the bundled
implementation; any store with upsert-by-id, cosine k-NN and equality
metadata filters can be plugged in behind this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.rag import VectorEntry, VectorMatch


# Concrete implementation: ChromaDBProvider (src/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for vector-store services.

    All query and mutation methods are async so network-backed stores do
    not block the event loop.

    **Filter syntax** (the *filters* dict in :meth:`query`, :meth:`count`):
    a flat mapping of metadata field to required value, combined with AND.
    For example ``{"knowledge_base_id": "kb-1", "filename": "notes.pdf"}``.

    Every vector stored must have exactly :meth:`get_dimension` components;
    implementations reject mismatches instead of silently storing them.
    """

    @abstractmethod
    async def upsert(self, entries: list[VectorEntry]) -> int:
        """Insert or overwrite vectors by id.

        Upserting the same entry twice leaves exactly one stored vector.

        Parameters
        ----------
        entries:
            Vectors with their ids and metadata.

        Returns
        -------
        int
            The number of entries written.

        Raises
        ------
        src.utils.errors.RAGError
            If a vector has the wrong dimension or the store call fails.
        """

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return the *top_k* nearest stored vectors.

        Parameters
        ----------
        vector:
            The query embedding.
        top_k:
            Maximum number of matches to return.
        filters:
            Optional flat equality filter on metadata fields.

        Returns
        -------
        list[VectorMatch]
            Matches ranked by score descending, ties broken by chunk index
            then id ascending.

        Raises
        ------
        src.utils.errors.RAGError
            If the store query fails.
        """

    @abstractmethod
    async def existing_ids(self, ids: list[str]) -> set[str]:
        """Return the subset of *ids* that are currently stored."""

    @abstractmethod
    async def delete_ids(self, ids: list[str]) -> int:
        """Delete vectors by id.  Unknown ids are ignored.

        Returns
        -------
        int
            The number of vectors actually removed.
        """

    @abstractmethod
    async def delete_by_knowledge_base(self, knowledge_base_id: str) -> int:
        """Delete every vector whose ``knowledge_base_id`` matches.

        Returns
        -------
        int
            The number of vectors deleted.
        """

    @abstractmethod
    async def delete_by_file(self, knowledge_base_id: str, filename: str) -> int:
        """Delete every vector of one file inside one knowledge base.

        Returns
        -------
        int
            The number of vectors deleted.
        """

    @abstractmethod
    async def count(self, filters: dict[str, Any] | None = None) -> int:
        """Return the number of stored vectors matching *filters*."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the vector dimension this store accepts."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is configured and reachable."""
