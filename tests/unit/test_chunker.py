"""Unit tests for TextChunker - overlapping, separator-aware character chunking."""

import math

import pytest

from brandkb.errors import ConfigError
from brandkb.rag.chunker import TextChunker, estimate_token_count, normalize_text


def _covered(text: str, chunks) -> bool:
    """True when every non-whitespace character lies inside some chunk span."""
    covered = [False] * len(text)
    for chunk in chunks:
        for i in range(chunk.char_start, chunk.char_end):
            covered[i] = True
    return all(covered[i] for i, ch in enumerate(text) if not ch.isspace())


class TestConfiguration:
    """Invalid size/overlap combinations are rejected before any chunking."""

    def test_overlap_equal_to_size_rejected(self) -> None:
        with pytest.raises(ConfigError):
            TextChunker(chunk_size=100, chunk_overlap=100)

    def test_overlap_larger_than_size_rejected(self) -> None:
        with pytest.raises(ConfigError):
            TextChunker(chunk_size=100, chunk_overlap=150)

    def test_non_positive_size_rejected(self) -> None:
        with pytest.raises(ConfigError):
            TextChunker(chunk_size=0, chunk_overlap=0)

    def test_negative_overlap_rejected(self) -> None:
        with pytest.raises(ConfigError):
            TextChunker(chunk_size=100, chunk_overlap=-1)

    def test_defaults_from_config(self) -> None:
        chunker = TextChunker()
        assert chunker.chunk_size == 1000
        assert chunker.chunk_overlap == 200


class TestNormalization:
    def test_collapses_whitespace_and_blank_lines(self) -> None:
        text = "  Hello \t  world\r\n\r\n\r\n\r\nNext   paragraph  "
        assert normalize_text(text) == "Hello world\n\nNext paragraph"

    def test_normalization_is_idempotent(self) -> None:
        text = "A  b\n\n\n\nc\t\td\r\ne"
        once = normalize_text(text)
        assert normalize_text(once) == once

    def test_preserve_whitespace_skips_normalization(self) -> None:
        chunker = TextChunker(chunk_size=100, chunk_overlap=10, preserve_whitespace=True)
        chunks = chunker.chunk_text("a    b")
        assert chunks[0].content == "a    b"


class TestChunking:
    def test_empty_and_whitespace_text_yield_nothing(self) -> None:
        chunker = TextChunker(chunk_size=100, chunk_overlap=10)
        assert chunker.chunk_text("") == []
        assert chunker.chunk_text("   \n\n\t ") == []

    def test_short_text_is_single_chunk(self) -> None:
        chunker = TextChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk_text("Our tone is friendly and direct.")

        assert len(chunks) == 1
        assert chunks[0].content == "Our tone is friendly and direct."
        assert chunks[0].char_start == 0
        assert chunks[0].chunk_index == 0

    @pytest.mark.parametrize(
        "length,size,overlap",
        [(1000, 100, 20), (2500, 300, 299), (999, 50, 0), (10_000, 1000, 200)],
    )
    def test_iteration_bound_for_hard_cuts(self, length: int, size: int, overlap: int) -> None:
        text = "x" * length
        chunker = TextChunker(chunk_size=size, chunk_overlap=overlap)

        chunks = chunker.chunk_text(text)

        assert len(chunks) <= math.ceil(length / (size - overlap))
        assert _covered(text, chunks)

    @pytest.mark.parametrize(
        "size,overlap",
        [(1000, 200), (300, 60), (120, 100), (200, 0), (80, 10)],
    )
    def test_iteration_bound_with_separator_cuts(self, size: int, overlap: int) -> None:
        paragraph = (
            "Keep it short. Lead with the benefit, then the detail; "
            "close with one clear call to action! Questions? Ask us.\n"
        )
        text = normalize_text("\n\n".join(paragraph * (i % 4 + 1) for i in range(25)))
        chunker = TextChunker(chunk_size=size, chunk_overlap=overlap)

        chunks = chunker.chunk_text(text)

        assert len(chunks) > 1
        assert len(chunks) <= math.ceil(len(text) / (size - overlap))
        assert _covered(text, chunks)

    def test_separator_cut_still_advances_full_step(self) -> None:
        sentence = "a" * 50 + ". "
        text = normalize_text(sentence * 40)
        chunker = TextChunker(chunk_size=200, chunk_overlap=50)

        chunks = chunker.chunk_text(text)

        for previous, current in zip(chunks, chunks[1:]):
            assert current.char_start - previous.char_start >= 150
            assert current.char_start <= previous.char_end

    def test_chunks_cover_all_content(self) -> None:
        paragraph = "Short sentences keep posts readable. Use active voice, always. "
        text = normalize_text("\n\n".join([paragraph * 5] * 8))
        chunker = TextChunker(chunk_size=300, chunk_overlap=60)

        chunks = chunker.chunk_text(text)

        assert len(chunks) > 1
        assert _covered(text, chunks)

    def test_chunks_are_trimmed_and_non_empty(self) -> None:
        text = normalize_text(("word " * 80 + "\n\n") * 6)
        chunker = TextChunker(chunk_size=200, chunk_overlap=50)

        for chunk in chunker.chunk_text(text):
            assert chunk.content
            assert chunk.content == chunk.content.strip()
            assert text[chunk.char_start:chunk.char_end] == chunk.content

    def test_indexes_strictly_increasing(self) -> None:
        text = "Sentence number one. " * 200
        chunker = TextChunker(chunk_size=250, chunk_overlap=50)

        indexes = [c.chunk_index for c in chunker.chunk_text(text)]

        assert indexes == list(range(len(indexes)))

    def test_starts_strictly_increasing(self) -> None:
        text = "alpha beta gamma delta. " * 300
        chunker = TextChunker(chunk_size=120, chunk_overlap=100)

        starts = [c.char_start for c in chunker.chunk_text(text)]

        assert starts == sorted(set(starts))

    def test_prefers_paragraph_break(self) -> None:
        first = "a" * 150
        second = "b" * 150
        text = f"{first}\n\n{second}"
        chunker = TextChunker(chunk_size=200, chunk_overlap=60)

        chunks = chunker.chunk_text(text)

        assert chunks[0].content == first

    def test_falls_back_to_sentence_end(self) -> None:
        text = "First sentence here. " * 15
        chunker = TextChunker(chunk_size=100, chunk_overlap=30)

        chunks = chunker.chunk_text(text)

        assert chunks[0].content.endswith(".")

    def test_consecutive_chunks_overlap(self) -> None:
        text = "x" * 500
        chunker = TextChunker(chunk_size=200, chunk_overlap=50)

        chunks = chunker.chunk_text(text)

        for previous, current in zip(chunks, chunks[1:]):
            assert current.char_start == previous.char_end - 50

    def test_metadata_copied_per_chunk(self) -> None:
        chunker = TextChunker(chunk_size=100, chunk_overlap=10)
        metadata = {"source_file": "guide.md"}

        chunks = chunker.chunk_text("word " * 100, metadata)
        chunks[0].metadata["section"] = "Voice"

        assert all(c.metadata["source_file"] == "guide.md" for c in chunks)
        assert "section" not in chunks[1].metadata
        assert "section" not in metadata

    def test_iter_chunks_is_restartable(self) -> None:
        text = "Restartable sequence of words. " * 50
        chunker = TextChunker(chunk_size=150, chunk_overlap=30)

        first = [c.content for c in chunker.iter_chunks(text)]
        second = [c.content for c in chunker.iter_chunks(text)]

        assert first == second


class TestHelpers:
    def test_estimate_token_count(self) -> None:
        assert estimate_token_count("") == 0
        assert estimate_token_count("abcd") == 1
        assert estimate_token_count("abcde") == 2

    def test_chunk_stats(self) -> None:
        chunker = TextChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk_text("y" * 250)

        stats = chunker.get_chunk_stats(chunks)

        assert stats["chunk_count"] == len(chunks)
        assert stats["max_chunk_size"] == 100
        assert stats["overlap"] == 10
        assert chunker.get_chunk_stats([])["chunk_count"] == 0
