"""Knowledge pipeline components.

This package contains modules for:
- PDF, markdown and text extraction
- Document chunking with overlap
- Embedding generation
- Record storage and similarity search
- Ingestion and retrieval orchestration
"""
