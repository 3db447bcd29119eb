"""Orchestrator for single-file knowledge-base ingestion.

Pipeline stages: **extract -> chunk -> embed -> index -> catalog**.

The :class:`IngestionService` coordinates its collaborators (text
extractor, chunker, embedding client, vector store, catalog) without any of
them knowing about each other.  All dependencies are injected through the
constructor so providers can be swapped without touching this class.

Consistency rules for one file:

* The target knowledge base is resolved before any work: an unknown id, a
  taken name, or a missing vector store fail immediately.
* Embedding is all-or-nothing.  Nothing reaches the vector store unless
  every non-blank chunk embedded successfully.
* Vectors are written before the catalog.  If the catalog write fails, the
  vector ids this run created are deleted again before the error is raised.
* Re-uploading a filename into the same knowledge base overwrites its
  vectors by id and replaces the manifest entry; counters move by the
  difference.  Ids the shorter new version no longer produces are deleted
  only after the catalog write succeeds.
* The staged upload is deleted whatever the outcome.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Awaitable, TypeVar

import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.ingestion import (
    ALLOWED_TRANSITIONS,
    ExistingKnowledgeBase,
    IngestionResult,
    IngestionStage,
    IngestionTarget,
    NewKnowledgeBase,
    StagedUpload,
)
from src.models.knowledge_base import FileManifest, KnowledgeBase, KnowledgeBaseDraft
from src.models.rag import TextChunk, VectorEntry, VectorMetadata, vector_id
from src.services.catalog_service import KnowledgeBaseCatalog, new_knowledge_base_id
from src.services.ingestion.chunker import SentenceChunker, estimate_tokens
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.text_extractor import TextExtractor, normalize_extension
from src.utils.errors import (
    CatalogError,
    ConfigurationError,
    DuplicateNameError,
    EmptyContentError,
    FileTooLargeError,
    IndexUnavailableError,
    IngestionError,
    InvalidRequestError,
    KnowledgeBaseError,
    NotFoundError,
    PipelineError,
    RAGError,
    UnsupportedFormatError,
)
from src.utils.logging import bind_context, clear_context

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

ALLOWED_EXTENSIONS = frozenset({".pdf", ".txt", ".docx"})
DEFAULT_MAX_UPLOAD_BYTES = 15 * 1024 * 1024


class StageTracker:
    """Tracks one file's progress through :class:`IngestionStage`.

    Illegal transitions raise :class:`PipelineError`.  On failure the stage
    that was running and the reason are recorded in :attr:`failure`.
    """

    def __init__(self) -> None:
        self.stage = IngestionStage.RECEIVED
        self.history: list[IngestionStage] = [IngestionStage.RECEIVED]
        self.failure: tuple[IngestionStage, str] | None = None

    def advance(self, to: IngestionStage) -> None:
        if to not in ALLOWED_TRANSITIONS[self.stage]:
            raise PipelineError(
                message=f"Invalid ingestion transition {self.stage.value} -> {to.value}"
            )
        self.stage = to
        self.history.append(to)
        logger.debug("ingestion_stage", stage=to.value)

    def fail(self, reason: str) -> None:
        failed_at = self.stage
        if IngestionStage.FAILED in ALLOWED_TRANSITIONS[failed_at]:
            self.stage = IngestionStage.FAILED
            self.history.append(IngestionStage.FAILED)
        self.failure = (failed_at, reason)


class IngestionService:
    """Orchestrates the ingestion of one uploaded file into a knowledge base.

    Parameters
    ----------
    extractor:
        Turns file bytes into normalised text.
    chunker:
        Splits text into sentence-respecting chunks.
    embedding_client:
        Embeds chunks; ``None`` when no embedding provider is configured.
    vector_store:
        Stores chunk vectors; ``None`` when no backend is configured.
    catalog:
        Knowledge-base system of record.
    upload_dir:
        Directory uploads are staged in before ingestion.
    max_upload_bytes:
        Upload size cap.
    vector_text_max_chars:
        Chunk text stored beside each vector is cut to this length.
    timeout_seconds:
        Upper bound for each vector-store call.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        chunker: SentenceChunker,
        embedding_client: EmbeddingClient | None,
        vector_store: IVectorStoreProvider | None,
        catalog: KnowledgeBaseCatalog,
        upload_dir: str | Path = "data/uploads",
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        vector_text_max_chars: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._catalog = catalog
        self._upload_dir = Path(upload_dir)
        self._max_upload_bytes = max_upload_bytes
        self._vector_text_max_chars = vector_text_max_chars
        self._timeout = timeout_seconds

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    # ------------------------------------------------------------------
    # Upload handling
    # ------------------------------------------------------------------

    def validate_upload(self, filename: str, size: int) -> None:
        """Check an upload's name and size before its bytes are staged.

        Raises
        ------
        InvalidRequestError
            If *filename* is blank.
        UnsupportedFormatError
            If the extension is not pdf, txt or docx.
        FileTooLargeError
            If *size* exceeds the configured cap.
        """
        if not filename or not Path(filename).name.strip():
            raise InvalidRequestError(message="No file uploaded")
        extension = normalize_extension(Path(filename).suffix)
        if extension not in ALLOWED_EXTENSIONS or not self._extractor.is_supported(extension):
            allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
            raise UnsupportedFormatError(
                message=f"Invalid file type '{extension or filename}'. Allowed: {allowed}",
            )
        if size > self._max_upload_bytes:
            raise FileTooLargeError(
                message=(
                    f"File is {size} bytes; the limit is {self._max_upload_bytes} bytes"
                ),
            )

    async def stage_upload(self, content: bytes, original_filename: str) -> StagedUpload:
        """Validate *content* and write it to ``upload_dir/{timestamp_ms}_{name}``."""
        self.validate_upload(original_filename, len(content))
        safe_name = Path(original_filename).name
        storage_filename = f"{int(time.time() * 1000)}_{safe_name}"
        path = self._upload_dir / storage_filename
        self._upload_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, content)
        logger.info("upload_staged", filename=safe_name, storage_filename=storage_filename)
        return StagedUpload(
            path=path,
            original_filename=safe_name,
            storage_filename=storage_filename,
            size_bytes=len(content),
        )

    async def ingest_bytes(
        self, content: bytes, original_filename: str, target: IngestionTarget
    ) -> IngestionResult:
        """Stage *content* and ingest it in one call."""
        staged = await self.stage_upload(content, original_filename)
        return await self.ingest(staged, target)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def ingest(self, staged: StagedUpload, target: IngestionTarget) -> IngestionResult:
        """Run a staged upload through extract -> chunk -> embed -> index -> catalog.

        Returns
        -------
        IngestionResult
            The updated knowledge base, the file manifest and counts.

        Raises
        ------
        KnowledgeBaseError
            A typed error from the closed taxonomy; ingestion errors carry
            the stage that was running.
        """
        start = time.monotonic()
        tracker = StageTracker()
        filename = staged.original_filename
        bind_context(ingest_file=filename)

        try:
            existing, draft = await self._resolve_target(target)
            store = self._require_vector_store()
            client = self._require_embedding_client()

            # Extract
            data = await asyncio.to_thread(staged.path.read_bytes)
            text = await self._extractor.extract(data, staged.extension)
            tracker.advance(IngestionStage.EXTRACTED)

            # Chunk
            chunks = self._chunker.chunk(text)
            if not chunks:
                raise EmptyContentError(message=f"'{filename}' contains no usable text")
            tracker.advance(IngestionStage.CHUNKED)

            # Embed (all-or-nothing)
            tracker.advance(IngestionStage.EMBEDDING)
            embedded = await client.embed_chunks(chunks)
            if not embedded:
                raise EmptyContentError(message=f"'{filename}' produced no embeddable chunks")

            # Index
            knowledge_base_id = existing.id if existing else new_knowledge_base_id()
            bind_context(knowledge_base_id=knowledge_base_id)
            entries = self._build_entries(knowledge_base_id, existing, draft, filename, embedded)
            new_ids = [e.id for e in entries]
            previous = existing.find_file(filename) if existing else None
            stale_ids = self._stale_ids(knowledge_base_id, filename, previous, set(new_ids))

            pre_existing = await self._vector_call(store.existing_ids(new_ids))
            await self._vector_call(store.upsert(entries))
            tracker.advance(IngestionStage.INDEXED)

            # Catalog
            manifest = FileManifest(
                storage_filename=staged.storage_filename,
                original_filename=filename,
                size_bytes=staged.size_bytes,
                chunk_count=len(entries),
                token_count=estimate_tokens(text),
            )
            created_ids = [i for i in new_ids if i not in pre_existing]
            knowledge_base, replaced = await self._write_catalog(
                knowledge_base_id, existing, draft, manifest, store, created_ids
            )
            tracker.advance(IngestionStage.CATALOGED)

            # Stale ids go only once the catalog no longer lists them.
            stale_removed = await self._remove_stale(store, stale_ids)
            tracker.advance(IngestionStage.DONE)

            result = IngestionResult(
                knowledge_base=knowledge_base,
                file=manifest,
                chunks_indexed=manifest.chunk_count,
                tokens_indexed=manifest.token_count,
                chunks_skipped=len(chunks) - len(embedded),
                stale_vectors_removed=stale_removed,
                replaced=replaced,
                created_knowledge_base=existing is None,
                elapsed_seconds=round(time.monotonic() - start, 3),
            )
            logger.info(
                "ingestion_complete",
                chunks=result.chunks_indexed,
                tokens=result.tokens_indexed,
                skipped=result.chunks_skipped,
                replaced=replaced,
                elapsed=result.elapsed_seconds,
            )
            return result

        except KnowledgeBaseError as exc:
            if isinstance(exc, IngestionError) and exc.stage is None:
                exc.stage = tracker.stage
            tracker.fail(str(exc))
            logger.warning(
                "ingestion_stage_failed",
                stage=tracker.failure[0].value if tracker.failure else None,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        except Exception as exc:
            tracker.fail(str(exc))
            logger.error(
                "ingestion_unexpected_error",
                stage=tracker.failure[0].value if tracker.failure else None,
                error=str(exc),
            )
            raise
        finally:
            self._discard_staged(staged)
            clear_context()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve_target(
        self, target: IngestionTarget
    ) -> tuple[KnowledgeBase | None, KnowledgeBaseDraft | None]:
        if isinstance(target, ExistingKnowledgeBase):
            existing = await self._catalog.find(target.knowledge_base_id)
            if existing is None:
                raise NotFoundError(
                    message=f"Knowledge base {target.knowledge_base_id} not found"
                )
            return existing, None

        if isinstance(target, NewKnowledgeBase):
            draft = self._catalog.build_draft(target.name, target.metadata, target.description)
            if await self._catalog.find_by_name(draft.name) is not None:
                raise DuplicateNameError(
                    message=f"A knowledge base named '{draft.name}' already exists"
                )
            return None, draft

        raise InvalidRequestError(message="An existing knowledge base id or a new name is required")

    def _require_vector_store(self) -> IVectorStoreProvider:
        if self._vector_store is None or not self._vector_store.is_available():
            raise IndexUnavailableError(
                message="No vector store is configured",
                stage=IngestionStage.RECEIVED,
            )
        return self._vector_store

    def _require_embedding_client(self) -> EmbeddingClient:
        if self._embedding_client is None:
            raise ConfigurationError(message="No embedding provider is configured")
        return self._embedding_client

    async def _vector_call(self, call: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except (RAGError, asyncio.TimeoutError) as exc:
            provider = self._vector_store.get_provider_name() if self._vector_store else None
            raise IndexUnavailableError(
                message=f"Vector store call failed: {str(exc) or 'timed out'}",
                provider_name=provider,
            ) from exc

    def _build_entries(
        self,
        knowledge_base_id: str,
        existing: KnowledgeBase | None,
        draft: KnowledgeBaseDraft | None,
        filename: str,
        embedded: list[tuple[TextChunk, list[float]]],
    ) -> list[VectorEntry]:
        source = existing if existing is not None else draft
        if source is None:
            raise PipelineError(message="Ingestion target was not resolved")
        return [
            VectorEntry(
                id=vector_id(knowledge_base_id, filename, chunk.index),
                vector=vector,
                metadata=VectorMetadata(
                    knowledge_base_id=knowledge_base_id,
                    knowledge_base_name=source.name,
                    educational_board=source.metadata.educational_board,
                    subject=source.metadata.subject,
                    level=source.metadata.level,
                    filename=filename,
                    chunk_index=chunk.index,
                    token_count=chunk.token_count,
                    text=chunk.text[: self._vector_text_max_chars],
                ),
            )
            for chunk, vector in embedded
        ]

    @staticmethod
    def _stale_ids(
        knowledge_base_id: str,
        filename: str,
        previous: FileManifest | None,
        new_ids: set[str],
    ) -> list[str]:
        # Chunk indices are contiguous from 0, so the previous upload's
        # ids are exactly indices 0..chunk_count-1.
        if previous is None:
            return []
        return [
            vid
            for vid in (
                vector_id(knowledge_base_id, filename, i) for i in range(previous.chunk_count)
            )
            if vid not in new_ids
        ]

    async def _write_catalog(
        self,
        knowledge_base_id: str,
        existing: KnowledgeBase | None,
        draft: KnowledgeBaseDraft | None,
        manifest: FileManifest,
        store: IVectorStoreProvider,
        created_ids: list[str],
    ) -> tuple[KnowledgeBase, bool]:
        try:
            if existing is not None:
                knowledge_base, replaced_manifest = await self._catalog.append_file(
                    knowledge_base_id, manifest
                )
                return knowledge_base, replaced_manifest is not None
            if draft is None:
                raise PipelineError(message="Ingestion target was not resolved")
            knowledge_base = await self._catalog.create(
                draft.name,
                draft.metadata,
                draft.description,
                first_file=manifest,
                knowledge_base_id=knowledge_base_id,
            )
            return knowledge_base, False
        except Exception as exc:
            await self._compensate(store, created_ids)
            if isinstance(exc, KnowledgeBaseError):
                raise
            raise CatalogError(message=f"Catalog write failed: {exc}") from exc

    async def _remove_stale(self, store: IVectorStoreProvider, stale_ids: list[str]) -> int:
        """Delete ids a longer, earlier upload of the same file left behind."""
        if not stale_ids:
            return 0
        try:
            return await self._vector_call(store.delete_ids(stale_ids))
        except IndexUnavailableError as exc:
            # The catalog is already committed; the ids are logged so an
            # operator can remove them.
            logger.error("ingestion_stale_cleanup_failed", vector_ids=stale_ids, error=str(exc))
            return 0

    async def _compensate(self, store: IVectorStoreProvider, created_ids: list[str]) -> None:
        """Delete vector ids this run created after a failed catalog write."""
        if not created_ids:
            return
        try:
            removed = await self._vector_call(store.delete_ids(created_ids))
        except IndexUnavailableError as exc:
            # The catalog error is the one reported; these ids are logged
            # so an operator can remove them.
            logger.error("ingestion_compensation_failed", vector_ids=created_ids, error=str(exc))
            return
        logger.warning("ingestion_compensated", vectors_removed=removed)

    @staticmethod
    def _discard_staged(staged: StagedUpload) -> None:
        try:
            staged.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("staged_upload_cleanup_failed", path=str(staged.path), error=str(exc))
