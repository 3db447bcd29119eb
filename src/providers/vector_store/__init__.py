"""Vector store provider implementations.

ChromaDB is the bundled vector store.  It keeps every knowledge base's
chunk embeddings on disk in one collection and separates knowledge bases
with the ``knowledge_base_id`` metadata field.

To use another vector database, implement IVectorStoreProvider and
register it in ``src/main.py``.
"""

from src.providers.vector_store.chromadb_provider import ChromaDBProvider

__all__ = ["ChromaDBProvider"]
