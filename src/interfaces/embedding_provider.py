"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations wrap OpenAI ``text-embedding-3-small`` (or any
OpenAI-compatible endpoint) and Nomic ``nomic-embed-text`` served locally by
Ollama.  Providers are interchangeable; the ingestion pipeline and the
retrieval service only ever see this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (src/providers/embedding/):
#   OpenAIEmbeddingProvider  - text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   - nomic-embed-text via Ollama (local)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services.

    Vectors produced here are stored by
    :class:`~src.interfaces.vector_store_provider.IVectorStoreProvider`
    and compared against query vectors at retrieval time, so one provider
    (and one dimension) must be used for a given vector collection.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations handle
            batching internally if the underlying API has a per-call limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        src.utils.errors.RAGError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Parameters
        ----------
        text:
            The text string to embed.

        Returns
        -------
        list[float]
            The embedding vector with length equal to :meth:`get_dimension`.

        Raises
        ------
        src.utils.errors.RAGError
            If the embedding API call fails.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Example values: ``1536`` (OpenAI ``text-embedding-3-small``),
        ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable.

        Implementations verify credentials or reachability without
        generating an embedding.
        """
