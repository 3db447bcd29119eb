"""Knowledge-base catalog providers.

SQLiteCatalogProvider stores knowledge bases and their file manifests in
data/catalog.db.  The catalog is the system of record for names,
educational metadata and chunk/token counters; the vector store only holds
the embedded chunks.
"""

from src.providers.catalog.sqlite_catalog_provider import SQLiteCatalogProvider

__all__ = ["SQLiteCatalogProvider"]
