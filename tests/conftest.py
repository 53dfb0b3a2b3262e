"""Shared pytest fixtures for the brandkb test suite."""

import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from brandkb.db import KnowledgeDB
from brandkb.errors import ProviderError
from brandkb.rag.embeddings import EmbeddingGenerator, ProviderEmbedding
from brandkb.rag.ingest import IngestPipeline
from brandkb.rag.reader import DocumentContent, DocumentReader
from brandkb.rag.retriever import Retriever
from brandkb.rag.store import KnowledgeRecord, KnowledgeStore, SourceTag

# ---------------------------------------------------------------------------
# Stub embedding provider
# ---------------------------------------------------------------------------

VOCABULARY = [
    "tone", "friendly", "direct", "formal", "voice", "brand", "guidelines",
    "example", "post", "about", "launch", "product", "social", "media",
    "linkedin", "instagram", "what", "should", "we", "use", "announcement",
    "customers", "emoji", "hashtags", "community", "coffee", "roastery",
]

_WORD = re.compile(r"[a-z]+")


def lexical_vector(text: str) -> List[float]:
    """Count vocabulary words in ``text``; one dimension per word."""
    counts = dict.fromkeys(VOCABULARY, 0.0)
    for word in _WORD.findall(text.lower()):
        if word in counts:
            counts[word] += 1.0
    return [counts[word] for word in VOCABULARY]


class StubEmbeddingProvider:
    """Deterministic provider scoring lexical overlap over a fixed vocabulary.

    Records every call so tests can assert on batching and query templates.
    """

    name = "stub"

    def __init__(self, fail_on_call: Optional[int] = None, fail_on_text: Optional[str] = None):
        self.fail_on_call = fail_on_call
        self.fail_on_text = fail_on_text
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str], model: str) -> ProviderEmbedding:
        self.calls.append(list(texts))

        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise ProviderError("stub provider unavailable", provider_name=self.name)
        if self.fail_on_text and any(self.fail_on_text in t for t in texts):
            raise ProviderError("stub provider rejected input", provider_name=self.name)

        return ProviderEmbedding(
            vectors=[lexical_vector(t) for t in texts],
            tokens_used=sum(len(t.split()) for t in texts),
        )

    @property
    def embedded_texts(self) -> List[str]:
        return [text for call in self.calls for text in call]


class ThreePageReader(DocumentReader):
    """Reader that ignores file contents and returns a fixed 3-page document."""

    FILLER = (
        "Layout margins and colour palettes are described here in detail. "
        "Logos keep clear space on every side. "
    )

    def read(self, file_path: Path) -> DocumentContent:
        pages = [
            self.FILLER * 12,
            self.FILLER * 6 + "Our tone is friendly and direct. " + self.FILLER * 6,
            self.FILLER * 12,
        ]
        return DocumentContent(
            path=Path(file_path),
            text="\n\n".join(pages),
            page_count=3,
            metadata={"title": "Brand Style Guide"},
        )


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stub_provider() -> StubEmbeddingProvider:
    return StubEmbeddingProvider()


@pytest.fixture
def embedder(stub_provider: StubEmbeddingProvider) -> EmbeddingGenerator:
    return EmbeddingGenerator(stub_provider, model="stub-embed", batch_size=100)


@pytest.fixture
def knowledge_db(tmp_path: Path) -> KnowledgeDB:
    return KnowledgeDB(tmp_path / "data" / "knowledge.sqlite")


@pytest.fixture
def store(knowledge_db: KnowledgeDB) -> KnowledgeStore:
    return KnowledgeStore(knowledge_db, write_batch_size=50)


@pytest.fixture
def pipeline(embedder: EmbeddingGenerator, store: KnowledgeStore) -> IngestPipeline:
    return IngestPipeline(embedder, store, chunk_size=1000, chunk_overlap=200)


@pytest.fixture
def retriever(embedder: EmbeddingGenerator, store: KnowledgeStore) -> Retriever:
    return Retriever(embedder, store, top_k=5, min_similarity=0.7)


@pytest.fixture
def three_page_reader() -> ThreePageReader:
    return ThreePageReader()


@pytest.fixture
def make_record() -> Callable[..., KnowledgeRecord]:
    """Factory for records with controllable provenance and age."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _make(
        text: str = "Our tone is friendly.",
        source_tag: SourceTag = SourceTag.STYLE_GUIDE,
        source_file: str = "style_guide.md",
        embedding: Optional[List[float]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        age_minutes: int = 0,
    ) -> KnowledgeRecord:
        return KnowledgeRecord(
            source_tag=source_tag,
            source_file=source_file,
            text=text,
            embedding=embedding if embedding is not None else lexical_vector(text),
            metadata=metadata or {},
            created_at=base - timedelta(minutes=age_minutes),
        )

    return _make


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

STYLE_GUIDE_MD = """---
title: Roastery Brand Style Guide
tags: [brand, voice]
author: Marketing
created: 2025-03-01
---

# Voice

Our tone is friendly and direct. We speak to customers like neighbours.

## Social media

On LinkedIn keep posts formal but warm. On Instagram emoji are welcome.

# Visual identity

Logos keep clear space on every side.
"""

EXAMPLE_POSTS_TXT = """Launch announcement: our new single-origin coffee lands Friday.
Come taste it at the roastery and tell us what you think.

Community post: thank you to every customer who joined the latte art night.
"""

KNOWLEDGE_MD = """# Product knowledge

The roastery sources coffee directly from three farms.
Every product page lists the farm and the roast date.
"""

UNMATCHED_TXT = "Random meeting notes about the coffee roastery schedule.\n"


@pytest.fixture
def documents_dir(tmp_path: Path) -> Path:
    """Directory with one document per tag rule plus one unmatched file."""
    directory = tmp_path / "documents"
    directory.mkdir()
    (directory / "brand_style_guide.md").write_text(STYLE_GUIDE_MD, encoding="utf-8")
    (directory / "example_posts.txt").write_text(EXAMPLE_POSTS_TXT, encoding="utf-8")
    (directory / "knowledge_products.md").write_text(KNOWLEDGE_MD, encoding="utf-8")
    (directory / "meeting_notes.txt").write_text(UNMATCHED_TXT, encoding="utf-8")
    (directory / "logo.png").write_bytes(b"\x89PNG\r\n")
    return directory
