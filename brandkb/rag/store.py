"""Knowledge store with brute-force cosine similarity search.

Handles:
- Record types and provenance tags
- Bulk inserts in bounded write batches
- Filtered fetch, delete-by-provenance and count aggregation
- Exact similarity scoring over the filtered candidate set

Every search scores every candidate, which is fine up to roughly 10^4-10^5
records. An approximate index can replace ``similarity_search`` later as
long as the (top_k, min_similarity, source_tags) contract stays the same.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from brandkb import config
from brandkb.db import KnowledgeDB

logger = structlog.get_logger()


class SourceTag(str, Enum):
    """Category of the document a record came from."""

    STYLE_GUIDE = "style_guide"
    EXAMPLE_POST = "example_post"
    KNOWLEDGE_BASE = "knowledge_base"
    FEEDBACK = "feedback"
    OTHER = "other"


@dataclass
class KnowledgeRecord:
    """A stored chunk: text, embedding, metadata and provenance."""

    source_tag: SourceTag
    source_file: Optional[str]
    text: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_tag": SourceTag(self.source_tag).value,
            "source_file": self.source_file,
            "text": self.text,
            "embedding": list(self.embedding),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "KnowledgeRecord":
        try:
            source_tag = SourceTag(row["source_tag"])
        except ValueError:
            source_tag = SourceTag.OTHER
        return cls(
            id=row["id"],
            source_tag=source_tag,
            source_file=row.get("source_file"),
            text=row["text"],
            embedding=row["embedding"],
            metadata=row.get("metadata") or {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )


@dataclass
class RetrievalResult:
    """A stored record with its similarity to the query."""

    record: KnowledgeRecord
    similarity: float

    @property
    def text(self) -> str:
        return self.record.text

    @property
    def source_tag(self) -> SourceTag:
        return self.record.source_tag

    @property
    def source_file(self) -> Optional[str]:
        return self.record.source_file

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.record.metadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record.id,
            "text": self.record.text,
            "source_tag": self.record.source_tag.value,
            "source_file": self.record.source_file,
            "similarity": round(self.similarity, 4),
            "metadata": self.record.metadata,
            "created_at": self.record.created_at.isoformat(),
        }


@dataclass
class KnowledgeStats:
    """Record counts overall, per tag and per file."""

    total: int
    by_source_tag: Dict[str, int]
    by_source_file: Dict[str, int]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 instead of raising when either vector has zero magnitude or
    the dimensions differ, so malformed data lowers retrieval quality
    without breaking it.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # Clamp floating error
    return max(-1.0, min(1.0, similarity))


def _tag_values(source_tags: Optional[Sequence[SourceTag]]) -> Optional[List[str]]:
    if source_tags is None:
        return None
    return [SourceTag(tag).value for tag in source_tags]


class KnowledgeStore:
    """Persists knowledge records and answers similarity queries."""

    def __init__(self, db: KnowledgeDB, write_batch_size: int = None):
        """Initialize the knowledge store.

        Args:
            db: Persistence collaborator
            write_batch_size: Records per insert call (default from config)
        """
        self.db = db
        self.write_batch_size = write_batch_size or config.STORE_WRITE_BATCH_SIZE

    async def insert_one(self, record: KnowledgeRecord) -> KnowledgeRecord:
        """Insert a single record.

        Raises:
            StoreError: If the write fails
        """
        await asyncio.to_thread(self.db.insert_records, [record.to_row()])
        return record

    async def insert_bulk(self, records: Sequence[KnowledgeRecord]) -> int:
        """Insert records in groups of ``write_batch_size``.

        Each group is committed on its own; a failure leaves earlier groups
        in place.

        Returns:
            Number of records inserted

        Raises:
            StoreError: If any write fails
        """
        records = list(records)
        inserted = 0

        for i in range(0, len(records), self.write_batch_size):
            batch = records[i : i + self.write_batch_size]
            inserted += await asyncio.to_thread(
                self.db.insert_records, [r.to_row() for r in batch]
            )

        if records:
            logger.info("records_inserted", count=inserted)

        return inserted

    async def query_by_filter(
        self,
        source_tag: Optional[SourceTag] = None,
        source_file: Optional[str] = None,
    ) -> List[KnowledgeRecord]:
        """Fetch records by provenance, newest first."""
        rows = await asyncio.to_thread(
            self.db.query_records,
            _tag_values([source_tag]) if source_tag is not None else None,
            source_file,
        )
        return [KnowledgeRecord.from_row(row) for row in rows]

    async def similarity_search(
        self,
        query_vector: Sequence[float],
        top_k: int = None,
        min_similarity: float = None,
        source_tags: Optional[Sequence[SourceTag]] = None,
    ) -> List[RetrievalResult]:
        """Rank stored records by cosine similarity to ``query_vector``.

        Args:
            query_vector: Embedding of the query
            top_k: Maximum results (default from config)
            min_similarity: Drop results scoring below this (default from config)
            source_tags: Only consider records with these tags

        Returns:
            Results in descending similarity; ties go to the newest record
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        min_similarity = (
            config.MIN_SIMILARITY if min_similarity is None else min_similarity
        )

        if top_k <= 0:
            return []

        rows = await asyncio.to_thread(
            self.db.query_records, _tag_values(source_tags), None
        )

        results = []
        for row in rows:
            similarity = cosine_similarity(query_vector, row["embedding"])
            if similarity >= min_similarity:
                results.append(RetrievalResult(KnowledgeRecord.from_row(row), similarity))

        results.sort(
            key=lambda r: (r.similarity, r.record.created_at.timestamp()),
            reverse=True,
        )
        results = results[:top_k]

        logger.info(
            "similarity_search_completed",
            candidates=len(rows),
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return results

    async def delete_by_file(self, source_file: str) -> int:
        """Delete every record that came from ``source_file``."""
        return await asyncio.to_thread(self.db.delete_by_key, "source_file", source_file)

    async def delete_by_source(self, source_tag: SourceTag) -> int:
        """Delete every record tagged ``source_tag``."""
        return await asyncio.to_thread(
            self.db.delete_by_key, "source_tag", SourceTag(source_tag).value
        )

    async def stats(self) -> KnowledgeStats:
        """Count records overall, per tag and per file."""
        total = await asyncio.to_thread(self.db.count_records)
        by_tag = await asyncio.to_thread(self.db.aggregate_counts, "source_tag")
        by_file = await asyncio.to_thread(self.db.aggregate_counts, "source_file")
        return KnowledgeStats(total=total, by_source_tag=by_tag, by_source_file=by_file)
