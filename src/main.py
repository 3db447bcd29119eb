"""Tutor knowledge-base FastAPI application entry point.

Wires together all providers and services via dependency injection.
Loads configuration from ``.env`` / the environment, configures structured
logging, and exposes the same component graph to the CLI through
:func:`build_components`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.providers.catalog.sqlite_catalog_provider import SQLiteCatalogProvider
from src.services.catalog_service import KnowledgeBaseCatalog
from src.services.ingestion.chunker import SentenceChunker
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.ingestion_service import IngestionService
from src.services.ingestion.text_extractor import TextExtractor
from src.services.retrieval_service import RetrievalService
from src.utils.errors import RAGError
from src.utils.logging import configure_logging, get_logger

_APP_VERSION = "0.1.0"

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider | None:
    """Select the first available embedding provider.

    Priority: OpenAI/OpenAI-compatible (if API key set) ->
              Nomic/Ollama (if reachable).
    Returns ``None`` if no embedding provider is available.
    """
    if app_settings.openai_api_key:
        from src.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    from src.providers.embedding.nomic_embedding_provider import (
        NomicEmbeddingProvider,
    )

    provider = NomicEmbeddingProvider(settings=app_settings)
    if provider.is_available():
        return provider

    return None


def _build_vector_store(app_settings: Settings, dimension: int) -> IVectorStoreProvider | None:
    """Open the configured vector store, or return ``None`` if there is none."""
    if app_settings.vector_store_backend == "none":
        return None

    from src.providers.vector_store.chromadb_provider import ChromaDBProvider

    try:
        return ChromaDBProvider(
            dimension=dimension,
            persist_directory=app_settings.chromadb_persist_dir,
            collection_name=app_settings.chromadb_collection,
        )
    except RAGError as exc:
        _logger.error("vector_store_unavailable", backend="chromadb", error=str(exc))
        return None


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    *embedding_provider* and *vector_store* override provider selection
    (tests pass in-memory fakes).  Returns a flat dict of named components
    to be stored on ``app.state``.
    """
    timeout = app_settings.io_timeout_seconds

    # -- Embedding --
    if embedding_provider is None:
        embedding_provider = _build_embedding_provider(app_settings)
    embedding_client = (
        EmbeddingClient(
            embedding_provider,
            max_chars=app_settings.embedding_max_chars,
            timeout_seconds=timeout,
            concurrency=app_settings.embedding_concurrency,
        )
        if embedding_provider is not None
        else None
    )

    # -- Vector store (dimension follows the embedding provider) --
    if vector_store is None:
        dimension = (
            embedding_provider.get_dimension()
            if embedding_provider is not None
            else app_settings.embedding_dimension
        )
        vector_store = _build_vector_store(app_settings, dimension)

    # -- Catalog --
    catalog_provider = SQLiteCatalogProvider(db_path=app_settings.catalog_db_path)
    catalog_service = KnowledgeBaseCatalog(
        catalog=catalog_provider,
        vector_store=vector_store,
        timeout_seconds=timeout,
    )

    # -- Services --
    ingestion_service = IngestionService(
        extractor=TextExtractor(timeout_seconds=timeout),
        chunker=SentenceChunker(max_chunk_length=app_settings.chunk_max_length),
        embedding_client=embedding_client,
        vector_store=vector_store,
        catalog=catalog_service,
        upload_dir=app_settings.upload_dir,
        max_upload_bytes=app_settings.max_upload_bytes,
        vector_text_max_chars=app_settings.vector_text_max_chars,
        timeout_seconds=timeout,
    )
    retrieval_service = RetrievalService(
        embedding_client=embedding_client,
        vector_store=vector_store,
        top_k=app_settings.retrieval_top_k,
        min_score=app_settings.retrieval_min_score,
        timeout_seconds=timeout,
    )

    _logger.info(
        "components_built",
        embedding_provider=embedding_provider.get_provider_name() if embedding_provider else None,
        vector_store=vector_store.get_provider_name() if vector_store else None,
        catalog=catalog_provider.get_provider_name(),
    )
    if embedding_provider is None:
        _logger.warning("no_embedding_provider", msg="Uploads and retrieval are disabled.")

    return {
        "settings": app_settings,
        "embedding_provider": embedding_provider,
        "embedding_client": embedding_client,
        "vector_store": vector_store,
        "catalog_provider": catalog_provider,
        "catalog_service": catalog_service,
        "ingestion_service": ingestion_service,
        "retrieval_service": retrieval_service,
    }


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Components are built on startup unless *components* is given.
    """
    app_settings = app_settings or Settings()

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        """Initialise all providers and services on startup."""
        built = components if components is not None else build_components(app_settings)
        for key, value in built.items():
            setattr(application.state, key, value)

        await built["catalog_service"].initialize()

        _logger.info(
            "app_startup",
            version=_APP_VERSION,
            environment=app_settings.app_env,
        )
        yield
        _logger.info("app_shutdown")

    application = FastAPI(
        title="Tutor Knowledge Base API",
        version=_APP_VERSION,
        description=(
            "Upload study documents into named knowledge bases tagged with "
            "board, subject and level, and retrieve grounding snippets for "
            "tutor chat answers."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=app_settings.get_cors_origins())

    application.include_router(api_router)
    return application


def main() -> None:
    """Run the API server with uvicorn."""
    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
        app_env=app_settings.app_env,
    )
    uvicorn.run(
        create_app(app_settings),
        host=app_settings.app_host,
        port=app_settings.app_port,
    )


if __name__ == "__main__":
    main()
