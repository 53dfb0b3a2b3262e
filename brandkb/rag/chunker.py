"""Text chunking with overlap for the knowledge pipeline.

Implements character-based chunking to avoid tokenizer dependencies. Cut
points prefer paragraph breaks, then line breaks, sentence ends, clause ends
and finally word boundaries.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

import structlog

from brandkb import config
from brandkb.errors import ConfigError

logger = structlog.get_logger()

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " "]

_CRLF = re.compile(r"\r\n?")
_BLANK_LINES = re.compile(r"\n{3,}")
_INLINE_SPACE = re.compile(r"[ \t]+")


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int
    metadata: Dict[str, Any] = field(default_factory=dict)


def normalize_text(text: str) -> str:
    """Collapse whitespace runs while keeping paragraph breaks.

    Line endings become ``\\n``, three or more newlines collapse to two,
    runs of spaces/tabs collapse to one space, and the result is stripped.
    """
    text = _CRLF.sub("\n", text)
    text = _BLANK_LINES.sub("\n\n", text)
    text = _INLINE_SPACE.sub(" ", text)
    return text.strip()


def estimate_token_count(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


class TextChunker:
    """Character-based text chunker with overlap support."""

    # Window searched for a separator, relative to the proposed cut. The
    # backward reach is further capped at chunk_overlap.
    SEARCH_BEHIND = 200
    SEARCH_AHEAD = 100

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        separators: Optional[Sequence[str]] = None,
        preserve_whitespace: bool = False,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            separators: Cut points in order of preference
            preserve_whitespace: Skip whitespace normalization

        Raises:
            ConfigError: If the size/overlap combination is invalid
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.separators = list(separators) if separators else list(DEFAULT_SEPARATORS)
        self.preserve_whitespace = preserve_whitespace

        if self.chunk_size <= 0:
            raise ConfigError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ConfigError(
                f"Chunk overlap must not be negative, got {self.chunk_overlap}"
            )
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def prepare(self, text: str) -> str:
        """Return the text exactly as the chunker will see it."""
        if self.preserve_whitespace:
            return text
        return normalize_text(text)

    def iter_chunks(
        self, text: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Iterator[TextChunk]:
        """Yield overlapping chunks of ``text`` in order.

        Offsets refer to the prepared (normalized) text. Every call starts
        over from the beginning, so the sequence can be re-read.

        Args:
            text: Text to chunk
            metadata: Metadata copied onto every chunk

        Yields:
            TextChunk objects with strictly increasing ``chunk_index``
        """
        text = self.prepare(text or "")
        text_length = len(text)
        chunk_index = 0
        start = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            if end < text_length:
                end = self._find_cut(text, start, end)

            raw = text[start:end]
            content = raw.strip()
            if content:
                leading = len(raw) - len(raw.lstrip())
                char_start = start + leading
                yield TextChunk(
                    content=content,
                    char_start=char_start,
                    char_end=char_start + len(content),
                    chunk_index=chunk_index,
                    metadata=dict(metadata or {}),
                )
                chunk_index += 1

            if end >= text_length:
                break

            # Advance at least chunk_size - chunk_overlap without passing the cut
            next_start = max(end - self.chunk_overlap, start + self.chunk_size - self.chunk_overlap)
            start = min(next_start, end)

    def chunk_text(
        self, text: str, metadata: Optional[Dict[str, Any]] = None
    ) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk
            metadata: Metadata copied onto every chunk

        Returns:
            List of TextChunk objects
        """
        chunks = list(self.iter_chunks(text, metadata))

        if chunks:
            logger.info(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _find_cut(self, text: str, start: int, end: int) -> int:
        """Pick the cut position for a chunk proposed to end at ``end``.

        The highest-priority separator whose last occurrence inside the
        search window starts at or before ``end`` wins; the cut lands just
        after it. Without any separator the cut is ``end`` itself. The window
        never reaches further back than ``chunk_overlap``, so each chunk moves
        the cursor forward by at least ``chunk_size - chunk_overlap``.
        """
        search_start = max(start, end - min(self.SEARCH_BEHIND, self.chunk_overlap))
        search_end = min(end + self.SEARCH_AHEAD, len(text))

        for separator in self.separators:
            limit = min(end + len(separator), search_end)
            position = text.rfind(separator, search_start, limit)
            if position != -1:
                return position + len(separator)

        return end

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
