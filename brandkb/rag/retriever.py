"""Retriever for brand-voice context.

Handles:
- Query embedding generation
- Similarity search over the knowledge store
- Guideline and example presets
- Formatting retrieved context for prompts
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import structlog

from brandkb import config
from brandkb.rag.embeddings import EmbeddingGenerator
from brandkb.rag.store import KnowledgeStore, RetrievalResult, SourceTag

logger = structlog.get_logger()

NO_CONTEXT_MESSAGE = "No specific brand voice guidelines found for this context."

SECTION_SEPARATOR = "\n\n---\n\n"

GUIDELINES_TOP_K = 3
GUIDELINES_MIN_SIMILARITY = 0.7
GUIDELINES_SOURCE_TAGS = [SourceTag.STYLE_GUIDE]

EXAMPLES_TOP_K = 5
EXAMPLES_MIN_SIMILARITY = 0.6
EXAMPLES_SOURCE_TAGS = [SourceTag.EXAMPLE_POST, SourceTag.KNOWLEDGE_BASE]


@dataclass
class ComprehensiveContext:
    """Guidelines and examples for one piece of content, plus prompt text."""

    guidelines: List[RetrievalResult]
    examples: List[RetrievalResult]
    formatted_context: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guidelines": [r.to_dict() for r in self.guidelines],
            "examples": [r.to_dict() for r in self.examples],
            "formatted_context": self.formatted_context,
        }


def format_for_prompt(
    results: Sequence[RetrievalResult],
    max_chars: Optional[int] = None,
) -> str:
    """Format retrieved records as reference sections for an LLM prompt.

    Args:
        results: Retrieved records, in the order they should appear
        max_chars: Optional budget for the whole string; the section that
            crosses it is truncated (or dropped when little room is left)

    Returns:
        Formatted context string, or a fixed fallback sentence when empty
    """
    if not results:
        return NO_CONTEXT_MESSAGE

    sections = []
    total_chars = 0

    for i, result in enumerate(results, 1):
        provenance = [f"from {result.source_file}"] if result.source_file else []
        provenance.append(SourceTag(result.source_tag).value)
        provenance.append(f"similarity {result.similarity:.2f}")
        header = f"[Reference {i}] ({', '.join(provenance)})"

        section = f"{header}\n{result.text.strip()}"
        if result.metadata.get("section"):
            section += f"\nSection: {result.metadata['section']}"

        if max_chars is not None:
            cost = len(section) + (len(SECTION_SEPARATOR) if sections else 0)
            if total_chars + cost > max_chars:
                remaining = max_chars - total_chars - (cost - len(section))
                if remaining > 200:
                    sections.append(section[:remaining] + "...")
                break
            total_chars += cost

        sections.append(section)

    if not sections:
        return NO_CONTEXT_MESSAGE

    context = SECTION_SEPARATOR.join(sections)

    logger.debug(
        "context_formatted",
        num_sections=len(sections),
        total_chars=len(context),
    )

    return context


class Retriever:
    """Semantic retriever over the brand-voice knowledge store."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        store: KnowledgeStore,
        top_k: int = None,
        min_similarity: float = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding generator, same model as used at ingestion
            store: Knowledge store to search
            top_k: Default number of results (default from config)
            min_similarity: Default similarity threshold (default from config)
        """
        self.embedder = embedder
        self.store = store
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.min_similarity = (
            config.MIN_SIMILARITY if min_similarity is None else min_similarity
        )

        logger.info(
            "retriever_initialized",
            embedding_model=self.embedder.model,
            top_k=self.top_k,
            min_similarity=self.min_similarity,
        )

    async def retrieve_context(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        source_tags: Optional[Sequence[SourceTag]] = None,
    ) -> List[RetrievalResult]:
        """Retrieve the records most similar to a query.

        Args:
            query: Query text
            top_k: Number of results (overrides default)
            min_similarity: Similarity threshold (overrides default)
            source_tags: Only search records with these tags

        Returns:
            List of RetrievalResult, best first

        Raises:
            ProviderError: If the query can't be embedded
            StoreError: If the store can't be read
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = self.top_k if top_k is None else top_k
        min_similarity = self.min_similarity if min_similarity is None else min_similarity

        logger.info(
            "retrieval_started",
            query_length=len(query),
            top_k=top_k,
            min_similarity=min_similarity,
            source_tags=[SourceTag(t).value for t in source_tags] if source_tags else None,
        )

        query_vector = await self.embedder.embed_one(query)

        results = await self.store.similarity_search(
            query_vector,
            top_k=top_k,
            min_similarity=min_similarity,
            source_tags=source_tags,
        )

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return results

    async def get_guidelines(
        self, content_type: str, platform: Optional[str] = None
    ) -> List[RetrievalResult]:
        """Retrieve style-guide records for a content type and platform."""
        if platform:
            query = f"Guidelines for {content_type} on {platform} social media"
        else:
            query = f"Guidelines for {content_type}"

        return await self.retrieve_context(
            query,
            top_k=GUIDELINES_TOP_K,
            min_similarity=GUIDELINES_MIN_SIMILARITY,
            source_tags=GUIDELINES_SOURCE_TAGS,
        )

    async def get_examples(self, topic: str, post_type: str) -> List[RetrievalResult]:
        """Retrieve example posts and knowledge-base records for a topic."""
        return await self.retrieve_context(
            f"Example {post_type} post about {topic}",
            top_k=EXAMPLES_TOP_K,
            min_similarity=EXAMPLES_MIN_SIMILARITY,
            source_tags=EXAMPLES_SOURCE_TAGS,
        )

    async def get_comprehensive_context(
        self,
        content_summary: str,
        content_type: str,
        platform: str,
        post_type: str,
    ) -> ComprehensiveContext:
        """Retrieve guidelines and examples together and format them.

        Guidelines come first in the formatted text, then examples; the two
        groups are not re-sorted against each other.
        """
        guidelines, examples = await asyncio.gather(
            self.get_guidelines(content_type, platform),
            self.get_examples(content_summary, post_type),
        )

        return ComprehensiveContext(
            guidelines=guidelines,
            examples=examples,
            formatted_context=self.format_for_prompt([*guidelines, *examples]),
        )

    def format_for_prompt(
        self,
        results: Sequence[RetrievalResult],
        max_chars: Optional[int] = None,
    ) -> str:
        return format_for_prompt(results, max_chars=max_chars)

    async def is_initialized(self) -> bool:
        """True once at least one record has been stored."""
        stats = await self.store.stats()
        return stats.total > 0

    async def get_debug_info(self) -> Dict[str, Any]:
        """Summarize store contents for status endpoints and debugging."""
        stats = await self.store.stats()
        return {
            "initialized": stats.total > 0,
            "total_records": stats.total,
            "by_source_tag": stats.by_source_tag,
            "by_source_file": stats.by_source_file,
        }
