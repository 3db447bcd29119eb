"""FastAPI route definitions for the tutor knowledge-base API.

All endpoints are mounted under ``/api/v1``.  Service and provider
dependencies are resolved from ``app.state`` via FastAPI's ``Depends``
mechanism; see :func:`src.main.build_components`.

# ─── ROUTE MAP ─────────────────────────────────────────────────────────
#
# Endpoint                                          Method  Purpose
# ────────────────────────────────────────────────  ──────  ───────────────────────────────
# /api/v1/knowledge-bases/upload                    POST    Ingest one file (new or existing KB)
# /api/v1/knowledge-bases                           GET     Paginated, searchable listing
# /api/v1/knowledge-bases/stats                     GET     Catalog overview + recent KBs
# /api/v1/knowledge-bases/{id}                      GET     One knowledge base with manifest
# /api/v1/knowledge-bases/{id}                      PUT     Rename / re-describe
# /api/v1/knowledge-bases/{id}                      DELETE  Delete KB and all its vectors
# /api/v1/knowledge-bases/{id}/files/{filename}     DELETE  Delete one file and its vectors
# /api/v1/retrieve                                  POST    Ground a question in one KB
# /api/v1/health                                    GET     Health check + provider status
#
# Application errors are raised as KnowledgeBaseError subclasses and turned
# into JSON responses by ErrorHandlingMiddleware (src/api/middleware.py).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import math
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from src.api.schemas import (
    DeleteResponse,
    HealthResponse,
    IngestionSummary,
    KnowledgeBaseListResponse,
    KnowledgeBaseResponse,
    KnowledgeBaseUpdateRequest,
    RetrieveRequest,
    RetrieveResponse,
    StatsResponse,
    UploadResponse,
)
from src.models.ingestion import ExistingKnowledgeBase, IngestionTarget, NewKnowledgeBase
from src.models.knowledge_base import EducationalMetadata
from src.services.catalog_service import KnowledgeBaseCatalog
from src.services.ingestion.ingestion_service import IngestionService
from src.services.retrieval_service import RetrievalService, build_context
from src.utils.errors import ConfigurationError, FileTooLargeError, InvalidRequestError
from src.utils.logging import get_logger

router = APIRouter(prefix="/api/v1")

_logger: structlog.BoundLogger = get_logger(__name__)

_APP_VERSION = "0.1.0"

# Uploads are read in 64 KB pieces so oversized files are rejected
# without buffering the whole body.
_UPLOAD_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------
# Each helper reads one component from app.state (populated at startup by
# main.py) and raises ConfigurationError (503) when it was never built.


def _get_catalog_service(request: Request) -> KnowledgeBaseCatalog:
    service = getattr(request.app.state, "catalog_service", None)
    if service is None:
        raise ConfigurationError(message="Catalog is not initialised")
    return service


def _get_ingestion_service(request: Request) -> IngestionService:
    service = getattr(request.app.state, "ingestion_service", None)
    if service is None:
        raise ConfigurationError(message="Ingestion is not initialised")
    return service


def _get_retrieval_service(request: Request) -> RetrievalService:
    service = getattr(request.app.state, "retrieval_service", None)
    if service is None:
        raise ConfigurationError(message="Retrieval is not initialised")
    return service


CatalogDep = Annotated[KnowledgeBaseCatalog, Depends(_get_catalog_service)]
IngestionDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
RetrievalDep = Annotated[RetrievalService, Depends(_get_retrieval_service)]


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


def _resolve_target(
    criteria_id: str | None,
    criteria_name: str | None,
    description: str | None,
    educational_board: str | None,
    subject: str | None,
    level: str | None,
) -> IngestionTarget:
    """Turn the upload form fields into an ingestion target.

    An existing id wins over a name; a new knowledge base needs all three
    educational tags.
    """
    criteria_id = (criteria_id or "").strip()
    criteria_name = (criteria_name or "").strip()
    if criteria_id:
        return ExistingKnowledgeBase(knowledge_base_id=criteria_id)
    if not criteria_name:
        raise InvalidRequestError(message="Either criteriaId or criteriaName is required")

    tags = {
        "educationalBoard": (educational_board or "").strip(),
        "subject": (subject or "").strip(),
        "level": (level or "").strip(),
    }
    missing = [field for field, value in tags.items() if not value]
    if missing:
        raise InvalidRequestError(
            message=f"New knowledge bases require: {', '.join(missing)}"
        )
    return NewKnowledgeBase(
        name=criteria_name,
        description=(description or "").strip(),
        metadata=EducationalMetadata(
            educational_board=tags["educationalBoard"],
            subject=tags["subject"],
            level=tags["level"],
        ),
    )


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    pieces: list[bytes] = []
    total = 0
    while True:
        piece = await file.read(_UPLOAD_CHUNK_SIZE)
        if not piece:
            break
        total += len(piece)
        if total > max_bytes:
            raise FileTooLargeError(
                message=f"File exceeds the {max_bytes} byte upload limit",
            )
        pieces.append(piece)
    return b"".join(pieces)


@router.post(
    "/knowledge-bases/upload",
    response_model=UploadResponse,
    summary="Upload a document into a knowledge base",
)
async def upload_document(
    ingestion: IngestionDep,
    file: Annotated[UploadFile | None, File()] = None,
    criteria_name: Annotated[str | None, Form(alias="criteriaName")] = None,
    criteria_id: Annotated[str | None, Form(alias="criteriaId")] = None,
    description: Annotated[str | None, Form()] = None,
    educational_board: Annotated[str | None, Form(alias="educationalBoard")] = None,
    subject: Annotated[str | None, Form()] = None,
    level: Annotated[str | None, Form()] = None,
) -> UploadResponse:
    """Ingest one PDF, DOCX or TXT file into a new or existing knowledge base."""
    if file is None or not file.filename:
        raise InvalidRequestError(message="No file uploaded")

    target = _resolve_target(
        criteria_id, criteria_name, description, educational_board, subject, level
    )
    # Reject the wrong extension before reading any bytes.
    ingestion.validate_upload(file.filename, 0)
    content = await _read_upload(file, ingestion.max_upload_bytes)

    result = await ingestion.ingest_bytes(content, file.filename, target)
    _logger.info(
        "document_uploaded",
        knowledge_base_id=result.knowledge_base.id,
        filename=result.file.original_filename,
        chunks=result.chunks_indexed,
    )
    return UploadResponse(
        criteria=KnowledgeBaseResponse.from_model(result.knowledge_base),
        ingestion=IngestionSummary.from_result(result),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get(
    "/knowledge-bases",
    response_model=KnowledgeBaseListResponse,
    summary="List knowledge bases",
)
async def list_knowledge_bases(
    catalog: CatalogDep,
    search: Annotated[str | None, Query(max_length=200)] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> KnowledgeBaseListResponse:
    """Return one page of knowledge bases, newest activity first."""
    items, total = await catalog.list_page(search=search, page=page, limit=limit)
    return KnowledgeBaseListResponse(
        items=[KnowledgeBaseResponse.from_model(kb) for kb in items],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


# Declared before /knowledge-bases/{knowledge_base_id} so "stats" is not
# captured as an id.
@router.get(
    "/knowledge-bases/stats",
    response_model=StatsResponse,
    summary="Catalog overview",
)
async def knowledge_base_stats(catalog: CatalogDep) -> StatsResponse:
    stats = await catalog.stats(recent_limit=5)
    return StatsResponse.from_stats(stats)


@router.get(
    "/knowledge-bases/{knowledge_base_id}",
    response_model=KnowledgeBaseResponse,
    summary="Get one knowledge base",
)
async def get_knowledge_base(knowledge_base_id: str, catalog: CatalogDep) -> KnowledgeBaseResponse:
    knowledge_base = await catalog.get(knowledge_base_id)
    return KnowledgeBaseResponse.from_model(knowledge_base)


@router.put(
    "/knowledge-bases/{knowledge_base_id}",
    response_model=KnowledgeBaseResponse,
    summary="Rename or re-describe a knowledge base",
)
async def update_knowledge_base(
    knowledge_base_id: str,
    body: KnowledgeBaseUpdateRequest,
    catalog: CatalogDep,
) -> KnowledgeBaseResponse:
    updated = await catalog.update(
        knowledge_base_id, name=body.name, description=body.description
    )
    return KnowledgeBaseResponse.from_model(updated)


@router.delete(
    "/knowledge-bases/{knowledge_base_id}",
    response_model=DeleteResponse,
    summary="Delete a knowledge base and all of its vectors",
)
async def delete_knowledge_base(knowledge_base_id: str, catalog: CatalogDep) -> DeleteResponse:
    deleted = await catalog.delete(knowledge_base_id)
    return DeleteResponse(knowledge_base_id=knowledge_base_id, vectors_deleted=deleted)


@router.delete(
    "/knowledge-bases/{knowledge_base_id}/files/{filename}",
    response_model=DeleteResponse,
    summary="Delete one file and its vectors from a knowledge base",
)
async def delete_knowledge_base_file(
    knowledge_base_id: str,
    filename: str,
    catalog: CatalogDep,
) -> DeleteResponse:
    updated, deleted = await catalog.delete_file(knowledge_base_id, filename)
    return DeleteResponse(
        knowledge_base_id=knowledge_base_id,
        vectors_deleted=deleted,
        criteria=KnowledgeBaseResponse.from_model(updated),
    )


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@router.post(
    "/retrieve",
    response_model=RetrieveResponse,
    summary="Retrieve grounding snippets for a question",
)
async def retrieve(
    body: RetrieveRequest,
    catalog: CatalogDep,
    retrieval: RetrievalDep,
) -> RetrieveResponse:
    """Return the best-matching snippets of one knowledge base.

    Backend trouble is reported in ``status`` rather than as an HTTP error,
    so a chat caller can still answer without grounding.
    """
    await catalog.get(body.knowledge_base_id)
    result = await retrieval.retrieve(body.knowledge_base_id, body.question, top_k=body.top_k)
    return RetrieveResponse.from_result(result, build_context(result))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and which providers are configured."""
    state = request.app.state
    embedding = getattr(state, "embedding_provider", None)
    vector_store = getattr(state, "vector_store", None)
    catalog_provider = getattr(state, "catalog_provider", None)
    providers = {
        "embedding": embedding.get_provider_name() if embedding else None,
        "vector_store": vector_store.get_provider_name() if vector_store else None,
        "catalog": catalog_provider.get_provider_name() if catalog_provider else None,
    }
    status = "healthy" if all(providers.values()) else "degraded"
    return HealthResponse(status=status, version=_APP_VERSION, providers=providers)
