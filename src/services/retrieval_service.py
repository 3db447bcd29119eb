"""Knowledge-base retrieval for grounding tutor chat answers.

Embeds a student's question, fetches the nearest chunks inside one
knowledge base and returns them as :class:`RetrievedSnippet` objects.

Retrieval never raises for backend trouble.  A chat answer can always be
generated without grounding, so failures are reported through
:class:`RetrievalStatus` instead:

* ``OK`` -- the search ran; zero snippets means nothing scored high enough.
* ``EMBEDDING_FAILED`` -- the question could not be embedded.
* ``INDEX_UNAVAILABLE`` -- no vector store, or the query failed/timed out.
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.rag import RetrievalResult, RetrievalStatus, RetrievedSnippet
from src.services.ingestion.embedding_client import EmbeddingClient
from src.utils.errors import EmbeddingFailedError, RAGError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOP_K = 5
DEFAULT_MIN_SCORE = 0.3


def build_context(result: RetrievalResult, separator: str = "\n\n") -> str:
    """Join snippet texts, best first, into a grounding block for the chat prompt."""
    return separator.join(snippet.text for snippet in result.snippets)


class RetrievalService:
    """Nearest-neighbour search scoped to a single knowledge base.

    Parameters
    ----------
    embedding_client:
        Embeds the question; ``None`` when no embedding provider is set up.
    vector_store:
        The vector store; ``None`` when no backend is configured.
    top_k:
        Default number of snippets to return.
    min_score:
        Matches scoring below this are dropped.
    timeout_seconds:
        Upper bound for the vector-store query.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient | None,
        vector_store: IVectorStoreProvider | None,
        top_k: int = DEFAULT_TOP_K,
        min_score: float = DEFAULT_MIN_SCORE,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._top_k = top_k
        self._min_score = min_score
        self._timeout = timeout_seconds

    @property
    def is_available(self) -> bool:
        return self._embedding_client is not None and self._vector_store is not None

    async def retrieve(
        self,
        knowledge_base_id: str,
        query_text: str,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Return the snippets of *knowledge_base_id* most similar to *query_text*.

        Snippets are ordered by score descending, then chunk index and id
        ascending, so equal inputs always give equal output.
        """
        if not query_text or not query_text.strip():
            return RetrievalResult(status=RetrievalStatus.OK)

        k = top_k if top_k is not None and top_k > 0 else self._top_k

        if self._vector_store is None:
            return self._degraded(RetrievalStatus.INDEX_UNAVAILABLE, "No vector store is configured")
        if self._embedding_client is None:
            return self._degraded(
                RetrievalStatus.EMBEDDING_FAILED, "No embedding provider is configured"
            )

        try:
            vector = await self._embedding_client.embed(query_text.strip())
        except EmbeddingFailedError as exc:
            return self._degraded(RetrievalStatus.EMBEDDING_FAILED, str(exc))

        try:
            matches = await asyncio.wait_for(
                self._vector_store.query(
                    vector, top_k=k, filters={"knowledge_base_id": knowledge_base_id}
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return self._degraded(
                RetrievalStatus.INDEX_UNAVAILABLE, f"Vector query timed out after {self._timeout}s"
            )
        except RAGError as exc:
            return self._degraded(RetrievalStatus.INDEX_UNAVAILABLE, str(exc))

        snippets = [
            RetrievedSnippet(
                vector_id=m.id,
                text=m.metadata.text,
                score=m.score,
                knowledge_base_id=m.metadata.knowledge_base_id,
                filename=m.metadata.filename,
                chunk_index=m.metadata.chunk_index,
            )
            for m in matches
            if m.score >= self._min_score and m.metadata.knowledge_base_id == knowledge_base_id
        ]
        snippets.sort(key=lambda s: (-s.score, s.chunk_index, s.vector_id))
        snippets = snippets[:k]

        logger.info(
            "retrieval_complete",
            knowledge_base_id=knowledge_base_id,
            candidates=len(matches),
            returned=len(snippets),
            top_score=snippets[0].score if snippets else None,
        )
        return RetrievalResult(status=RetrievalStatus.OK, snippets=snippets)

    @staticmethod
    def _degraded(status: RetrievalStatus, reason: str) -> RetrievalResult:
        logger.warning("retrieval_degraded", status=status.value, reason=reason)
        return RetrievalResult(status=status, reason=reason)
