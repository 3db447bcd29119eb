"""Document ingestion pipeline for tutor knowledge bases.

Runs one uploaded file through **extract -> chunk -> embed -> index ->
catalog**:

1. **Extract** (text_extractor.py / TextExtractor) -- PDF, DOCX and TXT
   bytes become normalised plain text.

2. **Chunk** (chunker.py / SentenceChunker) -- Text is packed into chunks
   of at most ~500 characters, cut only at sentence boundaries.

3. **Embed** (embedding_client.py / EmbeddingClient) -- Every chunk is
   embedded through the configured IEmbeddingProvider; one failure aborts
   the file.

4. **Index** (via IVectorStoreProvider) -- Vectors are upserted under
   deterministic ``{knowledge_base_id}_{filename}_{chunk_index}`` ids.

5. **Catalog** (via KnowledgeBaseCatalog) -- The file manifest and the
   knowledge base's counters are recorded.

IngestionService orchestrates all five stages.
"""

from src.services.ingestion.chunker import SentenceChunker
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.ingestion_service import IngestionService
from src.services.ingestion.text_extractor import TextExtractor

__all__ = [
    "EmbeddingClient",
    "IngestionService",
    "SentenceChunker",
    "TextExtractor",
]
