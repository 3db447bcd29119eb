"""Sentence-respecting text chunking.

Splits extracted document text into :class:`~src.models.rag.TextChunk`
objects no longer than ``max_chunk_length`` characters, cutting only at
sentence boundaries so each chunk embeds a complete thought.

Two heuristics here are deliberately approximate:

1. **Sentences** are the shortest spans ending in one or more of ``.``,
   ``!``, ``?`` that are followed by whitespace or the end of the text.
   Abbreviations ("e.g. ", "Dr. ") will split a sentence early.  Text
   after the last terminal punctuation is kept as a final sentence.

2. **Tokens** are estimated as ``ceil(len(text) / 4)``, close enough for
   budgeting but never an exact tokenizer count.

A single sentence longer than the limit becomes its own oversized chunk
rather than being cut mid-sentence.
"""

from __future__ import annotations

import math
import re

import structlog

from src.models.rag import TextChunk

logger = structlog.get_logger(logger_name=__name__)

_SENTENCE_RE = re.compile(r".*?[.!?]+(?=\s|$)", re.DOTALL)

DEFAULT_MAX_CHUNK_LENGTH = 500


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def split_sentences(text: str) -> list[str]:
    """Split *text* into sentences, keeping each sentence's leading whitespace.

    Returns ``[]`` when the text contains no terminal punctuation at all.
    """
    sentences: list[str] = []
    last = 0
    for match in _SENTENCE_RE.finditer(text):
        sentences.append(match.group())
        last = match.end()

    if not sentences:
        return []

    remainder = text[last:]
    if remainder.strip():
        sentences.append(remainder)
    return sentences


def split_text(text: str, max_length: int = DEFAULT_MAX_CHUNK_LENGTH) -> list[str]:
    """Greedily pack sentences into chunks of at most *max_length* characters.

    A chunk is flushed when appending the next sentence would exceed
    *max_length*.  Chunks are stripped; empty chunks are never returned.
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")

    chunks: list[str] = []
    buffer = ""
    for sentence in split_sentences(text):
        if buffer and len(buffer + sentence) > max_length:
            flushed = buffer.strip()
            if flushed:
                chunks.append(flushed)
            buffer = sentence
        else:
            buffer += sentence

    flushed = buffer.strip()
    if flushed:
        chunks.append(flushed)
    return chunks


class SentenceChunker:
    """Splits text into ordered :class:`TextChunk` objects.

    Parameters
    ----------
    max_chunk_length:
        Character budget per chunk (default 500).
    """

    def __init__(self, max_chunk_length: int = DEFAULT_MAX_CHUNK_LENGTH) -> None:
        if max_chunk_length <= 0:
            raise ValueError(f"max_chunk_length must be positive, got {max_chunk_length}")
        self._max_chunk_length = max_chunk_length

    @property
    def max_chunk_length(self) -> int:
        return self._max_chunk_length

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into chunks indexed in text order.

        Returns an empty list for blank text or text with no sentence
        punctuation; callers treat that as "nothing to index".
        """
        if not text or not text.strip():
            return []

        pieces = split_text(text, self._max_chunk_length)
        chunks = [
            TextChunk(index=i, text=piece, token_count=estimate_tokens(piece))
            for i, piece in enumerate(pieces)
        ]

        oversized = sum(1 for c in chunks if len(c.text) > self._max_chunk_length)
        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            oversized=oversized,
            total_tokens=sum(c.token_count for c in chunks),
        )
        return chunks
