"""Per-chunk embedding with timeouts, truncation and fail-fast semantics.

Wraps an injected :class:`IEmbeddingProvider` and adds the rules the
ingestion pipeline relies on:

* blank chunks are skipped (logged, never sent to the provider);
* text longer than ``max_chars`` is truncated before the call;
* every call is bounded by ``timeout_seconds``;
* any provider failure, timeout, or wrong-length vector raises
  :class:`EmbeddingFailedError` carrying the chunk index;
* :meth:`EmbeddingClient.embed_chunks` stops at the first failure, so a
  file is either fully embedded or not at all.
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.ingestion import IngestionStage
from src.models.rag import TextChunk
from src.utils.concurrency import gather_fail_fast
from src.utils.errors import EmbeddingFailedError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_CHARS = 8000


class EmbeddingClient:
    """Embeds chunks and queries through an :class:`IEmbeddingProvider`.

    Parameters
    ----------
    provider:
        The embedding backend.
    dimension:
        Required vector length.  Defaults to the provider's dimension.
    max_chars:
        Texts longer than this are truncated before embedding.
    timeout_seconds:
        Upper bound for a single provider call.
    concurrency:
        Maximum chunk embeddings in flight; ``1`` embeds sequentially.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        dimension: int | None = None,
        max_chars: int = DEFAULT_MAX_CHARS,
        timeout_seconds: float = 60.0,
        concurrency: int = 1,
    ) -> None:
        self._provider = provider
        self._dimension = dimension if dimension is not None else provider.get_dimension()
        self._max_chars = max_chars
        self._timeout = timeout_seconds
        self._concurrency = max(1, concurrency)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    async def embed(self, text: str) -> list[float]:
        """Embed a single query text.

        Raises
        ------
        EmbeddingFailedError
            If *text* is blank, the call fails or times out, or the vector
            has the wrong length.
        """
        if not text or not text.strip():
            raise EmbeddingFailedError(
                message="Cannot embed empty text",
                provider_name=self.provider_name,
            )
        return await self._call(text, chunk_index=None)

    async def embed_chunk(self, chunk: TextChunk) -> list[float] | None:
        """Embed one chunk; returns ``None`` for a blank chunk."""
        if not chunk.text.strip():
            logger.info("chunk_skipped_empty", chunk_index=chunk.index)
            return None
        return await self._call(chunk.text, chunk_index=chunk.index)

    async def embed_chunks(
        self, chunks: list[TextChunk]
    ) -> list[tuple[TextChunk, list[float]]]:
        """Embed every chunk, preserving order and dropping skipped ones.

        Raises
        ------
        EmbeddingFailedError
            On the first chunk that fails; calls still in flight are
            cancelled and no partial result is returned.
        """
        vectors = await gather_fail_fast(
            [self.embed_chunk(c) for c in chunks],
            limit=self._concurrency,
        )
        return [(c, v) for c, v in zip(chunks, vectors) if v is not None]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, text: str, chunk_index: int | None) -> list[float]:
        if len(text) > self._max_chars:
            logger.info(
                "embedding_input_truncated",
                chunk_index=chunk_index,
                original_chars=len(text),
                max_chars=self._max_chars,
            )
            text = text[: self._max_chars]

        try:
            vector = await asyncio.wait_for(
                self._provider.embed_single(text), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning("embedding_timeout", chunk_index=chunk_index, timeout=self._timeout)
            raise EmbeddingFailedError(
                message=f"Embedding timed out after {self._timeout}s",
                provider_name=self.provider_name,
                stage=IngestionStage.EMBEDDING,
                chunk_index=chunk_index,
            ) from exc
        except Exception as exc:
            logger.warning("embedding_failed", chunk_index=chunk_index, error=str(exc))
            raise EmbeddingFailedError(
                message=f"Embedding failed: {exc}",
                provider_name=self.provider_name,
                stage=IngestionStage.EMBEDDING,
                chunk_index=chunk_index,
            ) from exc

        if len(vector) != self._dimension:
            raise EmbeddingFailedError(
                message=(
                    f"Embedding has dimension {len(vector)}, expected {self._dimension}"
                ),
                provider_name=self.provider_name,
                stage=IngestionStage.EMBEDDING,
                chunk_index=chunk_index,
            )
        return list(vector)
