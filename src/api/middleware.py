"""API middleware: CORS, request logging, and error handling.

Provides helper functions and middleware classes to configure cross-origin
resource sharing, structured request logging (via structlog), and automatic
conversion of ``KnowledgeBaseError`` subclasses into JSON ``ErrorResponse``
bodies with a status code chosen per error class.

# ─── MIDDLEWARE EXECUTION ORDER ────────────────────────────────────────
#
# Starlette middleware is a stack (last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)    # added 1st, inner
#     app.add_middleware(RequestLoggingMiddleware)   # added 2nd, outermost
#
#   Request flow:
#     Client → RequestLogging → ErrorHandling → route handler
#   Response flow:
#     Client ← RequestLogging ← ErrorHandling ← route handler
#
# So RequestLoggingMiddleware sees the *final* response status code
# (even when ErrorHandling turned an exception into a JSON error).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import (
    ConfigurationError,
    DuplicateNameError,
    EmbeddingFailedError,
    EmptyContentError,
    ExtractionFailedError,
    FileTooLargeError,
    IndexUnavailableError,
    InvalidRequestError,
    KnowledgeBaseError,
    NotFoundError,
    UnsupportedFormatError,
)
from src.utils.logging import bind_context, clear_context, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Most specific class first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[KnowledgeBaseError], int], ...] = (
    (UnsupportedFormatError, 415),
    (FileTooLargeError, 413),
    (InvalidRequestError, 400),
    (ExtractionFailedError, 422),
    (EmptyContentError, 422),
    (EmbeddingFailedError, 502),
    (IndexUnavailableError, 503),
    (DuplicateNameError, 409),
    (NotFoundError, 404),
    (ConfigurationError, 503),
)


def status_for_error(exc: KnowledgeBaseError) -> int:
    """Return the HTTP status code for an application error (500 if unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration.

    A short request id is bound into the structlog context so every log
    line emitted while serving the request carries it.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        bind_context(request_id=request_id)

        try:
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )
            clear_context()


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch ``KnowledgeBaseError`` subclasses and return structured JSON errors.

    The body is ``{"error": <error_code>, "details": <message>}``.  Stack
    traces are logged server-side only and never sent to the client.
    Generic Python exceptions bubble up to FastAPI's default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except KnowledgeBaseError as exc:
            status_code = status_for_error(exc)
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                error_code=exc.error_code,
                message=exc.message,
                provider=exc.provider_name,
                stage=getattr(getattr(exc, "stage", None), "value", None),
                status=status_code,
                path=str(request.url.path),
            )
            body = ErrorResponse(error=exc.error_code, details=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
