"""Public interface definitions for all external service providers.

Every storage or model backend is accessed exclusively through the abstract
base classes defined in this package.  Concrete adapters live in
``src/providers/`` and are injected by ``src/main.py`` at startup, so
swapping a backend changes one line of wiring and unit tests can pass
in-memory fakes.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider         →  OpenAIEmbeddingProvider,
                                  NomicEmbeddingProvider
    IVectorStoreProvider       →  ChromaDBProvider
    ICatalogProvider           →  SQLiteCatalogProvider
"""

from src.interfaces.catalog_provider import ICatalogProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "ICatalogProvider",
    "IEmbeddingProvider",
    "IVectorStoreProvider",
]
