#!/usr/bin/env python
"""Ingest brand-voice documents into the knowledge store.

Usage:
    python scripts/ingest_documents.py               # Ingest new documents
    python scripts/ingest_documents.py --reingest    # Replace existing records per file
    python scripts/ingest_documents.py --stats       # Show store contents afterwards
    python scripts/ingest_documents.py --verbose     # Show detailed progress
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from brandkb import config
from brandkb.container import AppContainer
from brandkb.errors import BrandKBError
from brandkb.log_config import configure_logging
from brandkb.rag.ingest import DirectoryIngestionResult
from brandkb.rag.store import SourceTag

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, result: DirectoryIngestionResult):
        """Print per-document outcomes and totals."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()
        stats = result.aggregate_stats
        failed = [r for r in result.results if not r.success]

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")

        for r in result.results:
            mark = "✅" if r.success else "❌"
            print(
                f"  {mark} {r.file_name:<35} {r.source_tag.value:<15} "
                f"{r.stats.chunks:>4} chunks"
            )
            for error in r.errors:
                print(f"       {error}")

        print()
        print(f"  📁 Documents processed:  {len(result.results)}")
        print(f"  ❌ Documents failed:     {len(failed)}")
        print(f"  📄 Pages read:           {stats.pages}")
        print(f"  📝 Chunks created:       {stats.chunks}")
        print(f"  🧮 Embeddings stored:    {stats.embeddings_stored}")
        print(f"  🔤 Tokens used:          {stats.tokens}")
        print(f"  ⏱️  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats.chunks > 0 and elapsed_seconds > 0:
            rate = stats.chunks / elapsed_seconds
            print(f"  ⚡ Ingestion rate:       {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if result.unmatched_files:
            print("⚠️  No source tag rule matched these files; stored as 'other':")
            for name in result.unmatched_files:
                print(f"   - {name}")
            print()

        if failed:
            print(f"⚠️  Warning: {len(failed)} document(s) failed to ingest.")
            print("   Check logs for details.\n")


def print_store_stats(info: dict):
    """Print what the knowledge store holds."""
    print("📊 Knowledge store:")
    print(f"   Total records: {info['total_records']}")
    for tag, count in sorted(info["by_source_tag"].items()):
        print(f"   {tag:<20} {count}")
    if info["by_source_file"]:
        print("   By file:")
        for name, count in sorted(info["by_source_file"].items()):
            print(f"     {name:<35} {count}")
    print()


async def main():
    """Main entry point for the ingestion script."""
    parser = argparse.ArgumentParser(
        description="Ingest brand-voice documents into the knowledge store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest_documents.py                       # Ingest documents
  python scripts/ingest_documents.py --reingest            # Replace existing records
  python scripts/ingest_documents.py --source style_guide  # Tag every document
        """,
    )

    parser.add_argument(
        "--documents-dir",
        type=Path,
        default=None,
        help=f"Documents directory (default: {config.DOCUMENTS_DIR})",
    )

    parser.add_argument(
        "--reingest",
        action="store_true",
        help="Delete each file's existing records before ingesting it",
    )

    parser.add_argument(
        "--source",
        choices=[tag.value for tag in SourceTag],
        default=None,
        help="Source tag for every document (default: inferred from file name)",
    )

    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help=f"Documents ingested at once (default: {config.INGEST_CONCURRENCY})",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show knowledge store statistics after ingesting",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()

    configure_logging(
        log_level="DEBUG" if args.verbose else "WARNING",
        json_output=False,
    )

    progress = ProgressReporter(verbose=args.verbose)

    try:
        container = AppContainer(
            documents_dir=args.documents_dir,
            concurrency=args.concurrency,
        )

        print("\n📋 Configuration:")
        print(f"   Documents directory: {container.documents_dir}")
        print(f"   Database:            {container.db.db_path}")
        print(f"   Embedding model:     {container.embedder.model}")
        print(f"   Chunk size:          {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:       {config.CHUNK_OVERLAP} chars")

        if args.reingest:
            print("\n⚠️  Re-ingest mode: existing records for each file will be replaced.")

        progress.start("Ingesting Documents")

        result = await container.ingest_pipeline.ingest_directory(
            container.documents_dir,
            source_tag=SourceTag(args.source) if args.source else None,
            re_ingest=args.reingest,
            concurrency=args.concurrency,
            progress_callback=progress.update,
        )

        progress.finish(result)

        if args.stats:
            print_store_stats(await container.retriever.get_debug_info())

        if not result.success:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except BrandKBError as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
