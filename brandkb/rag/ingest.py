"""Ingest pipeline for turning reference documents into knowledge records.

Orchestrates, per document:
- Existence check and optional removal of the file's previous records
- Text extraction
- Text chunking
- Embedding generation
- Record storage

and, per directory, discovery, source-tag inference and fault isolation
between documents.

Re-ingestion deletes the file's old records before the new ones are
written. The two steps are not atomic: a crash in between leaves the file
without records until it is ingested again.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from brandkb import config
from brandkb.errors import BrandKBError, MalformedInputError, NotFoundError
from brandkb.rag.chunker import TextChunk, TextChunker, estimate_token_count
from brandkb.rag.embeddings import EmbeddingGenerator
from brandkb.rag.reader import DocumentContent, DocumentReader
from brandkb.rag.store import KnowledgeRecord, KnowledgeStore, SourceTag

logger = structlog.get_logger()

# Filename substring -> tag, checked in order, case-insensitive
DEFAULT_SOURCE_TAG_RULES: List[Tuple[str, SourceTag]] = [
    ("style", SourceTag.STYLE_GUIDE),
    ("knowledge", SourceTag.KNOWLEDGE_BASE),
    ("example", SourceTag.EXAMPLE_POST),
    ("feedback", SourceTag.FEEDBACK),
]

ProgressCallback = Callable[[int, int, Path], None]


def infer_source_tag(
    file_name: str,
    rules: Optional[Sequence[Tuple[str, SourceTag]]] = None,
) -> Optional[SourceTag]:
    """Guess a document's tag from its file name.

    Returns:
        The tag of the first matching rule, or None when nothing matches
    """
    lowered = file_name.lower()
    for needle, tag in rules if rules is not None else DEFAULT_SOURCE_TAG_RULES:
        if needle.lower() in lowered:
            return tag
    return None


@dataclass
class IngestionStats:
    """Counters for one document or a whole batch."""

    pages: int = 0
    characters: int = 0
    chunks: int = 0
    embeddings_stored: int = 0
    tokens: int = 0

    def __add__(self, other: "IngestionStats") -> "IngestionStats":
        return IngestionStats(
            pages=self.pages + other.pages,
            characters=self.characters + other.characters,
            chunks=self.chunks + other.chunks,
            embeddings_stored=self.embeddings_stored + other.embeddings_stored,
            tokens=self.tokens + other.tokens,
        )


@dataclass
class IngestionResult:
    """Outcome of ingesting one document."""

    success: bool
    file_name: str
    source_tag: SourceTag
    stats: IngestionStats = field(default_factory=IngestionStats)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_name": self.file_name,
            "source_tag": SourceTag(self.source_tag).value,
            "stats": asdict(self.stats),
            "errors": list(self.errors),
        }


@dataclass
class DirectoryIngestionResult:
    """Outcome of ingesting every eligible document in a directory."""

    success: bool
    results: List[IngestionResult]
    aggregate_stats: IngestionStats
    unmatched_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "aggregate_stats": asdict(self.aggregate_stats),
            "unmatched_files": list(self.unmatched_files),
        }


class IngestPipeline:
    """Pipeline for ingesting reference documents into the knowledge store."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        store: KnowledgeStore,
        reader: Optional[DocumentReader] = None,
        chunk_size: int = None,
        chunk_overlap: int = None,
        source_tag_rules: Optional[Sequence[Tuple[str, SourceTag]]] = None,
        concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding generator shared with retrieval
            store: Knowledge store to write to
            reader: Document reader (default DocumentReader())
            chunk_size: Chunk size in characters (default from config)
            chunk_overlap: Chunk overlap in characters (default from config)
            source_tag_rules: Filename substring rules for tag inference
            concurrency: Documents ingested at once by ingest_directory

        Raises:
            ConfigError: If the chunking parameters are invalid
        """
        self.embedder = embedder
        self.store = store
        self.reader = reader or DocumentReader()
        self.chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.source_tag_rules = (
            list(source_tag_rules)
            if source_tag_rules is not None
            else list(DEFAULT_SOURCE_TAG_RULES)
        )
        self.concurrency = max(1, concurrency or config.INGEST_CONCURRENCY)
        # file name -> (lock, number of ingests holding or waiting on it)
        self._file_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=self.embedder.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    def _chunker_for(self, chunk_size: Optional[int], chunk_overlap: Optional[int]) -> TextChunker:
        if chunk_size is None and chunk_overlap is None:
            return self.chunker
        return TextChunker(
            chunk_size=self.chunker.chunk_size if chunk_size is None else chunk_size,
            chunk_overlap=(
                self.chunker.chunk_overlap if chunk_overlap is None else chunk_overlap
            ),
        )

    def discover_documents(self, directory: Path) -> List[Path]:
        """Find eligible documents directly inside ``directory``.

        Returns:
            Document paths sorted by name

        Raises:
            NotFoundError: If the directory doesn't exist
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise NotFoundError(f"Documents directory not found: {directory}")

        documents = sorted(
            path
            for path in directory.iterdir()
            if path.is_file()
            and not path.name.startswith(".")
            and self.reader.supports(path)
        )

        logger.info(
            "documents_discovered",
            count=len(documents),
            directory=str(directory),
        )

        return documents

    async def ingest(
        self,
        path: Path,
        source_tag: SourceTag,
        re_ingest: bool = False,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ) -> IngestionResult:
        """Ingest a single document.

        Failures of any step are recorded in the result rather than raised.

        Args:
            path: Path to the document
            source_tag: Category of the document
            re_ingest: Delete the file's existing records first
            chunk_size: Chunk size override
            chunk_overlap: Chunk overlap override

        Returns:
            IngestionResult with per-document stats and errors

        Raises:
            ConfigError: If the chunking overrides are invalid (before any I/O)
        """
        chunker = self._chunker_for(chunk_size, chunk_overlap)
        return await self._ingest_locked(Path(path), SourceTag(source_tag), re_ingest, chunker)

    async def _ingest_locked(
        self,
        file_path: Path,
        source_tag: SourceTag,
        re_ingest: bool,
        chunker: TextChunker,
    ) -> IngestionResult:
        name = file_path.name
        lock, users = self._file_locks.get(name, (None, 0))
        lock = lock or asyncio.Lock()
        self._file_locks[name] = (lock, users + 1)

        try:
            async with lock:
                return await self._ingest_file(file_path, source_tag, re_ingest, chunker)
        finally:
            _, users = self._file_locks[name]
            if users <= 1:
                del self._file_locks[name]
            else:
                self._file_locks[name] = (lock, users - 1)

    async def _ingest_file(
        self,
        file_path: Path,
        source_tag: SourceTag,
        re_ingest: bool,
        chunker: TextChunker,
    ) -> IngestionResult:
        file_name = file_path.name
        log = logger.bind(file_name=file_name, source_tag=source_tag.value)
        log.info("ingesting_file", path=str(file_path), re_ingest=re_ingest)

        try:
            if not file_path.is_file():
                raise NotFoundError(f"File not found: {file_path}")

            if re_ingest:
                deleted = await self.store.delete_by_file(file_name)
                if deleted:
                    log.info("existing_records_deleted", count=deleted)

            document = await asyncio.to_thread(self.reader.read, file_path)
            if not document.text.strip():
                raise MalformedInputError(f"No extractable text in {file_name}")

            chunks = self._chunk_document(document, chunker, file_name, source_tag)
            if not chunks:
                raise MalformedInputError(f"No chunks produced for {file_name}")

            embeddings = await self.embedder.embed_batch([c.content for c in chunks])

            records = [
                KnowledgeRecord(
                    source_tag=source_tag,
                    source_file=file_name,
                    text=chunk.content,
                    embedding=vector,
                    metadata={
                        **chunk.metadata,
                        "chunk_index": chunk.chunk_index,
                        "char_start": chunk.char_start,
                        "char_end": chunk.char_end,
                        "model": embeddings.model,
                        "dimensions": len(vector),
                        "estimated_tokens": estimate_token_count(chunk.content),
                    },
                )
                for chunk, vector in zip(chunks, embeddings.vectors)
            ]

            stored = await self.store.insert_bulk(records)

        except BrandKBError as e:
            log.error("file_ingestion_failed", error=str(e), error_type=type(e).__name__)
            return IngestionResult(
                success=False,
                file_name=file_name,
                source_tag=source_tag,
                errors=[str(e)],
            )
        except Exception as e:
            log.error("file_ingestion_crashed", error=str(e), error_type=type(e).__name__)
            return IngestionResult(
                success=False,
                file_name=file_name,
                source_tag=source_tag,
                errors=[f"Unexpected error: {e}"],
            )

        stats = IngestionStats(
            pages=document.page_count,
            characters=len(document.text),
            chunks=len(chunks),
            embeddings_stored=stored,
            tokens=embeddings.total_tokens,
        )

        log.info("file_ingested", **asdict(stats))

        return IngestionResult(
            success=True,
            file_name=file_name,
            source_tag=source_tag,
            stats=stats,
        )

    def _chunk_document(
        self,
        document: DocumentContent,
        chunker: TextChunker,
        file_name: str,
        source_tag: SourceTag,
    ) -> List[TextChunk]:
        metadata = {
            "source_file": file_name,
            "source_tag": source_tag.value,
            "title": document.metadata.get("title"),
            "page_count": document.page_count,
        }

        prepared = chunker.prepare(document.text)
        chunks = chunker.chunk_text(prepared, metadata)

        headings = self.reader.extract_headings(prepared)
        if headings:
            for chunk in chunks:
                section = self.reader.get_heading_context(headings, chunk.char_start)
                if section:
                    chunk.metadata["section"] = section

        return chunks

    async def ingest_directory(
        self,
        directory: Path = None,
        source_tag: Optional[SourceTag] = None,
        re_ingest: bool = False,
        chunk_size: int = None,
        chunk_overlap: int = None,
        concurrency: int = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DirectoryIngestionResult:
        """Ingest every eligible document in a directory.

        Each document is ingested independently; one failing document does
        not stop the others.

        Args:
            directory: Directory to scan (default from config)
            source_tag: Tag for every document, skipping filename inference
            re_ingest: Replace each file's existing records
            chunk_size: Chunk size override
            chunk_overlap: Chunk overlap override
            concurrency: Documents processed at once (default from pipeline)
            progress_callback: Optional callback(current, total, file_path)

        Returns:
            DirectoryIngestionResult with per-document results and summed stats

        Raises:
            ConfigError: If the chunking overrides are invalid
            NotFoundError: If the directory doesn't exist
        """
        chunker = self._chunker_for(chunk_size, chunk_overlap)
        directory = Path(directory or config.DOCUMENTS_DIR)

        logger.info("starting_ingest_directory", directory=str(directory), re_ingest=re_ingest)

        documents = self.discover_documents(directory)
        unmatched: List[str] = []
        planned: List[Tuple[Path, SourceTag]] = []

        for path in documents:
            tag = SourceTag(source_tag) if source_tag is not None else None
            if tag is None:
                tag = infer_source_tag(path.name, self.source_tag_rules)
            if tag is None:
                logger.warning("source_tag_unmatched", file_name=path.name, fallback=SourceTag.OTHER.value)
                unmatched.append(path.name)
                tag = SourceTag.OTHER
            planned.append((path, tag))

        semaphore = asyncio.Semaphore(max(1, concurrency or self.concurrency))
        total = len(planned)

        async def run(index: int, path: Path, tag: SourceTag) -> IngestionResult:
            async with semaphore:
                if progress_callback:
                    progress_callback(index, total, path)
                try:
                    return await self._ingest_locked(path, tag, re_ingest, chunker)
                except Exception as e:
                    # Continue with next file instead of failing entirely
                    logger.error(
                        "file_ingestion_crashed",
                        file_name=path.name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return IngestionResult(
                        success=False,
                        file_name=path.name,
                        source_tag=tag,
                        errors=[f"Unexpected error: {e}"],
                    )

        results = list(
            await asyncio.gather(
                *(run(i, path, tag) for i, (path, tag) in enumerate(planned, 1))
            )
        )

        aggregate = IngestionStats()
        for result in results:
            aggregate = aggregate + result.stats

        success = all(r.success for r in results)
        failed = [r.file_name for r in results if not r.success]

        logger.info(
            "ingest_directory_completed",
            documents=len(results),
            failed=failed,
            unmatched=unmatched,
            success=success,
            **asdict(aggregate),
        )

        return DirectoryIngestionResult(
            success=success,
            results=results,
            aggregate_stats=aggregate,
            unmatched_files=unmatched,
        )
