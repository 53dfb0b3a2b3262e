"""Brand voice knowledge base: document ingestion and semantic retrieval."""

__version__ = "0.1.0"
