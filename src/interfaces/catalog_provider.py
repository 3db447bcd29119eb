"""Abstract base class for knowledge-base catalog storage.

The catalog is the system of record for knowledge bases: their names,
educational metadata, file manifests and chunk/token counters.  The bundled
implementation is SQLite via ``aiosqlite``; a PostgreSQL or document-store
backend only has to honour the uniqueness and atomicity rules below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.knowledge_base import (
    CatalogStats,
    FileManifest,
    KnowledgeBase,
    KnowledgeBaseDraft,
)


class ICatalogProvider(ABC):
    """Contract for knowledge-base catalog persistence.

    Implementations must guarantee:

    * knowledge-base names are unique (enforced by the store, not by a
      read-then-write check), so concurrent creates have exactly one winner;
    * ``total_chunks`` / ``total_tokens`` always equal the sums over the
      file manifest, including under concurrent :meth:`append_file` calls.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if they don't exist.  Called at startup."""

    @abstractmethod
    async def create(
        self,
        knowledge_base_id: str,
        draft: KnowledgeBaseDraft,
        first_file: FileManifest | None = None,
    ) -> KnowledgeBase:
        """Insert a knowledge base, optionally with its first file, atomically.

        Raises
        ------
        src.utils.errors.DuplicateNameError
            If ``draft.name`` is already taken.
        """

    @abstractmethod
    async def get(self, knowledge_base_id: str) -> KnowledgeBase | None:
        """Return the knowledge base with its manifest, or ``None``."""

    @abstractmethod
    async def get_by_name(self, name: str) -> KnowledgeBase | None:
        """Return the knowledge base with exactly this name, or ``None``."""

    @abstractmethod
    async def list_knowledge_bases(
        self,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[KnowledgeBase]:
        """List knowledge bases, most recently updated first.

        Parameters
        ----------
        search:
            Optional case-insensitive substring matched against name and
            description.
        offset, limit:
            Pagination window.
        """

    @abstractmethod
    async def count_knowledge_bases(self, search: str | None = None) -> int:
        """Return how many knowledge bases match *search*."""

    @abstractmethod
    async def update(
        self,
        knowledge_base_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> KnowledgeBase | None:
        """Rename or re-describe a knowledge base.

        Returns ``None`` if the id does not exist.

        Raises
        ------
        src.utils.errors.DuplicateNameError
            If the new name is taken by another knowledge base.
        """

    @abstractmethod
    async def append_file(
        self,
        knowledge_base_id: str,
        manifest: FileManifest,
    ) -> tuple[KnowledgeBase, FileManifest | None]:
        """Record a file against a knowledge base in one transaction.

        A manifest with the same ``original_filename`` is replaced and the
        counters are adjusted by the difference.

        Returns
        -------
        tuple[KnowledgeBase, FileManifest | None]
            The updated knowledge base and the replaced manifest, if any.

        Raises
        ------
        src.utils.errors.NotFoundError
            If the knowledge base does not exist.
        """

    @abstractmethod
    async def remove_file(self, knowledge_base_id: str, filename: str) -> KnowledgeBase:
        """Remove one file's manifest and subtract its counters.

        Raises
        ------
        src.utils.errors.NotFoundError
            If the knowledge base or the file does not exist.
        """

    @abstractmethod
    async def delete(self, knowledge_base_id: str) -> bool:
        """Delete a knowledge base and its manifest.  Returns ``False`` if absent."""

    @abstractmethod
    async def stats(self, recent_limit: int = 5) -> CatalogStats:
        """Return aggregate counts plus the most recently updated records."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
