"""Knowledge-base catalog service.

Composes the catalog store (:class:`ICatalogProvider`) with the vector
store so that every catalog operation that removes content also removes
the matching vectors.  Deletes go vector store first, catalog second: if
the vector delete fails, the catalog record stays and the caller can
retry, so no vectors are ever orphaned without a catalog entry pointing at
them.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable

import structlog

from src.interfaces.catalog_provider import ICatalogProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.knowledge_base import (
    CatalogStats,
    EducationalMetadata,
    FileManifest,
    KnowledgeBase,
    KnowledgeBaseDraft,
)
from src.utils.errors import (
    DuplicateNameError,
    IndexUnavailableError,
    InvalidRequestError,
    NotFoundError,
    RAGError,
)

logger = structlog.get_logger(logger_name=__name__)


def new_knowledge_base_id() -> str:
    """Return a fresh opaque knowledge-base id."""
    return uuid.uuid4().hex


class KnowledgeBaseCatalog:
    """Create, read, update and delete knowledge bases.

    Parameters
    ----------
    catalog:
        Persistent catalog store.
    vector_store:
        Vector store holding the knowledge bases' chunks, or ``None`` when
        no backend is configured.  Deletes require it.
    timeout_seconds:
        Upper bound for each vector-store call.
    """

    def __init__(
        self,
        catalog: ICatalogProvider,
        vector_store: IVectorStoreProvider | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._catalog = catalog
        self._vector_store = vector_store
        self._timeout = timeout_seconds

    async def initialize(self) -> None:
        await self._catalog.initialize()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @staticmethod
    def build_draft(
        name: str,
        metadata: EducationalMetadata,
        description: str = "",
    ) -> KnowledgeBaseDraft:
        """Validate and normalise creation input.

        Raises
        ------
        InvalidRequestError
            If the name or any educational tag is blank.
        """
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidRequestError(message="Knowledge base name must not be empty")
        missing = [
            field
            for field in ("educational_board", "subject", "level")
            if not getattr(metadata, field)
        ]
        if missing:
            raise InvalidRequestError(
                message=f"Missing educational metadata: {', '.join(missing)}"
            )
        return KnowledgeBaseDraft(
            name=clean_name,
            description=(description or "").strip(),
            metadata=metadata,
        )

    async def create(
        self,
        name: str,
        metadata: EducationalMetadata,
        description: str = "",
        first_file: FileManifest | None = None,
        knowledge_base_id: str | None = None,
    ) -> KnowledgeBase:
        """Create a knowledge base, failing if the name is taken.

        *knowledge_base_id* lets the ingestion pipeline pick the id up front,
        since it is baked into vector ids before the catalog write.

        Raises
        ------
        DuplicateNameError
            If another knowledge base already uses *name*.
        """
        draft = self.build_draft(name, metadata, description)
        return await self._catalog.create(
            knowledge_base_id or new_knowledge_base_id(), draft, first_file
        )

    async def create_or_get(
        self,
        name: str,
        metadata: EducationalMetadata,
        description: str = "",
    ) -> tuple[KnowledgeBase, bool]:
        """Return the knowledge base named *name*, creating it if needed.

        The store's uniqueness constraint picks the winner of concurrent
        creates; the loser re-reads and returns the winner's record.

        Returns
        -------
        tuple[KnowledgeBase, bool]
            The record and whether this call created it.
        """
        draft = self.build_draft(name, metadata, description)
        existing = await self._catalog.get_by_name(draft.name)
        if existing is not None:
            return existing, False
        try:
            created = await self._catalog.create(new_knowledge_base_id(), draft)
        except DuplicateNameError:
            winner = await self._catalog.get_by_name(draft.name)
            if winner is None:
                raise
            logger.info("knowledge_base_create_raced", name=draft.name)
            return winner, False
        return created, True

    async def append_file(
        self, knowledge_base_id: str, manifest: FileManifest
    ) -> tuple[KnowledgeBase, FileManifest | None]:
        """Record *manifest* against the knowledge base (see ICatalogProvider)."""
        return await self._catalog.append_file(knowledge_base_id, manifest)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def find(self, knowledge_base_id: str) -> KnowledgeBase | None:
        return await self._catalog.get(knowledge_base_id)

    async def find_by_name(self, name: str) -> KnowledgeBase | None:
        return await self._catalog.get_by_name((name or "").strip())

    async def get(self, knowledge_base_id: str) -> KnowledgeBase:
        """Return the knowledge base or raise :class:`NotFoundError`."""
        knowledge_base = await self._catalog.get(knowledge_base_id)
        if knowledge_base is None:
            raise NotFoundError(message=f"Knowledge base {knowledge_base_id} not found")
        return knowledge_base

    async def list_page(
        self,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[KnowledgeBase], int]:
        """Return one page of knowledge bases and the total match count."""
        if page < 1 or limit < 1:
            raise InvalidRequestError(message="page and limit must be positive")
        search = (search or "").strip() or None
        items = await self._catalog.list_knowledge_bases(
            search=search, offset=(page - 1) * limit, limit=limit
        )
        total = await self._catalog.count_knowledge_bases(search=search)
        return items, total

    async def stats(self, recent_limit: int = 5) -> CatalogStats:
        return await self._catalog.stats(recent_limit=recent_limit)

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def update(
        self,
        knowledge_base_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> KnowledgeBase:
        """Rename and/or re-describe a knowledge base.

        Raises
        ------
        InvalidRequestError
            If *name* is given but blank.
        NotFoundError
            If the knowledge base does not exist.
        DuplicateNameError
            If *name* belongs to another knowledge base.
        """
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidRequestError(message="Knowledge base name must not be empty")
        if description is not None:
            description = description.strip()

        updated = await self._catalog.update(knowledge_base_id, name=name, description=description)
        if updated is None:
            raise NotFoundError(message=f"Knowledge base {knowledge_base_id} not found")
        logger.info("knowledge_base_updated", knowledge_base_id=knowledge_base_id)
        return updated

    async def delete(self, knowledge_base_id: str) -> int:
        """Delete a knowledge base and all of its vectors.

        Returns
        -------
        int
            The number of vectors removed.

        Raises
        ------
        NotFoundError
            If the knowledge base does not exist.
        IndexUnavailableError
            If the vector store is missing or the vector delete fails; the
            catalog record is kept in that case.
        """
        await self.get(knowledge_base_id)
        store = self._require_vector_store()
        deleted = await self._vector_call(
            store.delete_by_knowledge_base(knowledge_base_id), "delete_by_knowledge_base"
        )
        await self._catalog.delete(knowledge_base_id)
        logger.info(
            "knowledge_base_removed",
            knowledge_base_id=knowledge_base_id,
            vectors_deleted=deleted,
        )
        return deleted

    async def delete_file(self, knowledge_base_id: str, filename: str) -> tuple[KnowledgeBase, int]:
        """Remove one file and its vectors from a knowledge base.

        Returns
        -------
        tuple[KnowledgeBase, int]
            The updated record and the number of vectors removed.
        """
        knowledge_base = await self.get(knowledge_base_id)
        if knowledge_base.find_file(filename) is None:
            raise NotFoundError(
                message=f"File '{filename}' not found in knowledge base {knowledge_base_id}"
            )
        store = self._require_vector_store()
        deleted = await self._vector_call(
            store.delete_by_file(knowledge_base_id, filename), "delete_by_file"
        )
        updated = await self._catalog.remove_file(knowledge_base_id, filename)
        logger.info(
            "knowledge_base_file_deleted",
            knowledge_base_id=knowledge_base_id,
            filename=filename,
            vectors_deleted=deleted,
        )
        return updated, deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_vector_store(self) -> IVectorStoreProvider:
        if self._vector_store is None or not self._vector_store.is_available():
            raise IndexUnavailableError(message="No vector store is configured")
        return self._vector_store

    async def _vector_call(self, call: Awaitable[int], operation: str) -> int:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except (RAGError, asyncio.TimeoutError) as exc:
            logger.warning("vector_store_call_failed", operation=operation, error=str(exc))
            raise IndexUnavailableError(
                message=f"Vector store {operation} failed: {exc}",
                provider_name=self._vector_store.get_provider_name() if self._vector_store else None,
            ) from exc
