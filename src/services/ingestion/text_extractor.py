"""Plain-text extraction from uploaded study documents.

Each supported extension maps to a parser function that turns raw file
bytes into text:

* ``.pdf``  - PyMuPDF (``fitz``), page texts joined by newlines.
* ``.docx`` - python-docx, paragraph texts then table cell texts.
* ``.txt``  - UTF-8 (a BOM is stripped, invalid sequences replaced).

Parsers are blocking, so :meth:`TextExtractor.extract` runs them on a
worker thread with a timeout.  Extraction is all-or-nothing: a parser
failure raises :class:`ExtractionFailedError` and no partial text is
returned.
"""

from __future__ import annotations

import asyncio
import io
import re
from collections.abc import Callable

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from docx import Document

from src.models.ingestion import IngestionStage
from src.utils.errors import ExtractionFailedError, UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)

Parser = Callable[[bytes], str]

_HORIZONTAL_WS = re.compile(r"[^\S\n]+")
_NEWLINE_RUNS = re.compile(r"\s*\n\s*")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and trim.

    Runs of spaces/tabs become one space; runs of newlines (and any
    whitespace between them) become one newline.
    """
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _NEWLINE_RUNS.sub("\n", text)
    return text.strip()


def normalize_extension(extension: str) -> str:
    """Return *extension* lower-cased with a leading dot (``"PDF"`` → ``".pdf"``)."""
    extension = extension.strip().lower()
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return extension


# ---------------------------------------------------------------------------
# Format parsers
# ---------------------------------------------------------------------------

def _parse_pdf(data: bytes) -> str:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "\n".join(page.get_text("text") for page in doc)
    finally:
        doc.close()


def _parse_docx(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    parts = [para.text for para in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


def _parse_txt(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


_DEFAULT_PARSERS: dict[str, Parser] = {
    ".pdf": _parse_pdf,
    ".docx": _parse_docx,
    ".txt": _parse_txt,
}


class TextExtractor:
    """Extension-keyed registry of text parsers.

    Parameters
    ----------
    timeout_seconds:
        Upper bound for one parser run in :meth:`extract`.
    """

    def __init__(self, timeout_seconds: float = 60.0) -> None:
        self._timeout = timeout_seconds
        self._parsers: dict[str, Parser] = dict(_DEFAULT_PARSERS)

    def register(self, extension: str, parser: Parser) -> None:
        """Register (or replace) the parser for *extension*."""
        self._parsers[normalize_extension(extension)] = parser

    def supported_extensions(self) -> frozenset[str]:
        return frozenset(self._parsers)

    def is_supported(self, extension: str) -> bool:
        return normalize_extension(extension) in self._parsers

    def extract_sync(self, data: bytes, extension: str) -> str:
        """Parse *data* and return normalised text.

        Raises
        ------
        UnsupportedFormatError
            If no parser is registered for *extension*.
        ExtractionFailedError
            If the parser raises.
        """
        parser = self._get_parser(extension)
        try:
            raw = parser(data)
        except Exception as exc:
            logger.warning(
                "text_extraction_failed",
                extension=normalize_extension(extension),
                error=str(exc),
            )
            raise ExtractionFailedError(
                message=f"Could not read {normalize_extension(extension)} file: {exc}",
                stage=IngestionStage.RECEIVED,
            ) from exc

        text = normalize_text(raw)
        logger.debug(
            "text_extracted",
            extension=normalize_extension(extension),
            bytes=len(data),
            chars=len(text),
        )
        return text

    async def extract(self, data: bytes, extension: str) -> str:
        """Run :meth:`extract_sync` on a worker thread, bounded by the timeout."""
        # Fail on unknown formats before spending a thread on them.
        self._get_parser(extension)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.extract_sync, data, extension),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionFailedError(
                message=f"Text extraction timed out after {self._timeout}s",
                stage=IngestionStage.RECEIVED,
            ) from exc

    def _get_parser(self, extension: str) -> Parser:
        parser = self._parsers.get(normalize_extension(extension))
        if parser is None:
            supported = ", ".join(sorted(self._parsers))
            raise UnsupportedFormatError(
                message=f"Unsupported file type '{extension}'. Supported: {supported}",
                stage=IngestionStage.RECEIVED,
            )
        return parser
