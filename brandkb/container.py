"""Application wiring.

Builds the collaborators once and hands them to the web app and the CLI.
Tests pass their own provider and database path instead of touching
Ollama or the configured data directory.
"""
from pathlib import Path
from typing import Optional

import structlog

from brandkb import config
from brandkb.db import KnowledgeDB
from brandkb.ollama_client import OllamaClient
from brandkb.rag.embeddings import (
    EmbeddingGenerator,
    EmbeddingProvider,
    OllamaEmbeddingProvider,
)
from brandkb.rag.ingest import IngestPipeline
from brandkb.rag.reader import DocumentReader
from brandkb.rag.retriever import Retriever
from brandkb.rag.store import KnowledgeStore

logger = structlog.get_logger()


class AppContainer:
    """Owns object instantiation and application wiring."""

    def __init__(
        self,
        db_path: Path = None,
        documents_dir: Path = None,
        provider: Optional[EmbeddingProvider] = None,
        ollama_client: Optional[OllamaClient] = None,
        embedding_model: str = None,
        concurrency: int = None,
    ):
        self.documents_dir = Path(documents_dir or config.DOCUMENTS_DIR)

        # Embedding provider
        self.ollama_client = ollama_client or OllamaClient()
        self.provider = provider or OllamaEmbeddingProvider(self.ollama_client)
        self.embedder = EmbeddingGenerator(self.provider, model=embedding_model)

        # Persistence
        self.db = KnowledgeDB(db_path)
        self.store = KnowledgeStore(self.db)

        # Pipelines
        self.reader = DocumentReader()
        self.ingest_pipeline = IngestPipeline(
            self.embedder,
            self.store,
            reader=self.reader,
            concurrency=concurrency,
        )
        self.retriever = Retriever(self.embedder, self.store)

        logger.info(
            "app_container_initialized",
            db_path=str(self.db.db_path),
            documents_dir=str(self.documents_dir),
            provider=getattr(self.provider, "name", type(self.provider).__name__),
            embedding_model=self.embedder.model,
        )
