"""Embedding generation for chunks and queries.

Chunks and queries are embedded through the same generator and model so
that they share one vector space. Results are never cached here.
"""
import math
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import httpx
import structlog

from brandkb import config
from brandkb.errors import ConfigError, ProviderError
from brandkb.ollama_client import OllamaClient

logger = structlog.get_logger()


@dataclass
class ProviderEmbedding:
    """Raw output of one provider call."""

    vectors: List[List[float]]
    tokens_used: int = 0


@dataclass
class BatchEmbeddingResult:
    """Embeddings for a list of texts, in input order."""

    vectors: List[List[float]]
    total_tokens: int
    model: str

    @property
    def dimension(self) -> Optional[int]:
        return len(self.vectors[0]) if self.vectors else None


class EmbeddingProvider(Protocol):
    """Anything that can turn a list of texts into vectors in one call."""

    name: str

    async def embed(self, texts: List[str], model: str) -> ProviderEmbedding:
        ...


class OllamaEmbeddingProvider:
    """Embedding provider backed by Ollama's ``/api/embed`` endpoint."""

    name = "ollama"

    def __init__(self, client: OllamaClient):
        self.client = client

    async def embed(self, texts: List[str], model: str) -> ProviderEmbedding:
        try:
            data = await self.client.embed(texts, model=model)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Embedding request failed: {e}", provider_name=self.name
            ) from e

        return ProviderEmbedding(
            vectors=data.get("embeddings") or [],
            tokens_used=int(data.get("prompt_eval_count") or 0),
        )


class EmbeddingGenerator:
    """Batches texts through an embedding provider and reassembles the results."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        model: str = None,
        batch_size: int = None,
    ):
        """Initialize the embedding generator.

        Args:
            provider: Embedding provider handle
            model: Embedding model name (default from config)
            batch_size: Maximum texts per provider call (default from config)
        """
        self.provider = provider
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE

        logger.debug(
            "embedding_generator_initialized",
            provider=getattr(provider, "name", type(provider).__name__),
            model=self.model,
            batch_size=self.batch_size,
        )

    async def embed_one(self, text: str, model: str = None) -> List[float]:
        """Embed a single text.

        Raises:
            ProviderError: If the provider call fails
        """
        result = await self.embed_batch([text], model=model)
        return result.vectors[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        model: str = None,
        batch_size: int = None,
    ) -> BatchEmbeddingResult:
        """Embed many texts, one provider call per sub-batch.

        Args:
            texts: Texts to embed
            model: Model override
            batch_size: Sub-batch size override

        Returns:
            BatchEmbeddingResult with one vector per input text, in order

        Raises:
            ProviderError: If any sub-batch fails; no partial result is returned
        """
        model = model or self.model
        batch_size = batch_size or self.batch_size
        texts = list(texts)

        if batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {batch_size}")

        vectors: List[List[float]] = []
        total_tokens = 0
        batch_count = math.ceil(len(texts) / batch_size)

        for batch_number, i in enumerate(range(0, len(texts), batch_size), 1):
            batch = texts[i : i + batch_size]

            try:
                response = await self.provider.embed(batch, model)
            except ProviderError:
                logger.error(
                    "embedding_batch_failed",
                    batch=batch_number,
                    batch_count=batch_count,
                    model=model,
                )
                raise
            except Exception as e:
                logger.error(
                    "embedding_batch_failed",
                    batch=batch_number,
                    batch_count=batch_count,
                    model=model,
                    error=str(e),
                )
                raise ProviderError(
                    f"Failed to generate embeddings: {e}",
                    provider_name=getattr(self.provider, "name", None),
                ) from e

            self._validate(batch, response.vectors, vectors)
            vectors.extend(response.vectors)
            total_tokens += response.tokens_used

            logger.debug(
                "embeddings_batch_generated",
                batch=batch_number,
                batch_count=batch_count,
                batch_size=len(batch),
                total_so_far=len(vectors),
            )

        if texts:
            logger.info(
                "embeddings_generated",
                count=len(vectors),
                tokens=total_tokens,
                model=model,
            )

        return BatchEmbeddingResult(
            vectors=vectors, total_tokens=total_tokens, model=model
        )

    def _validate(
        self,
        batch: List[str],
        batch_vectors: List[List[float]],
        previous: List[List[float]],
    ) -> None:
        provider_name = getattr(self.provider, "name", None)

        if len(batch_vectors) != len(batch):
            raise ProviderError(
                f"Provider returned {len(batch_vectors)} embeddings "
                f"for {len(batch)} inputs",
                provider_name=provider_name,
            )

        expected = len(previous[0]) if previous else None
        for vector in batch_vectors:
            if not vector:
                raise ProviderError(
                    "Empty embedding returned", provider_name=provider_name
                )
            if expected is None:
                expected = len(vector)
            elif len(vector) != expected:
                raise ProviderError(
                    f"Embedding dimension mismatch: expected {expected}, "
                    f"got {len(vector)}",
                    provider_name=provider_name,
                )
