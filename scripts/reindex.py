#!/usr/bin/env python
"""Reindex the document store and the documentation site.

Usage:
    python scripts/reindex.py                  # Reindex both sources
    python scripts/reindex.py --source drive   # Document store only
    python scripts/reindex.py --source guide --no-embed
    python scripts/reindex.py --embed-only     # Embed persisted guide fragments
    python scripts/reindex.py --status         # Show index statistics
    python scripts/reindex.py --clear          # Empty the index
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docqa import config
from docqa.errors import DocQAError
from docqa.log import configure_logging
from docqa.rag.ingest import build_pipeline

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, name: str):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, label: str, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print(f"  {label} complete")
        print(f"{'=' * 60}\n")
        print(f"  Documents found:        {stats['documents_found']}")
        print(f"  Documents indexed:      {stats['documents_indexed']}")
        print(f"  Documents skipped:      {stats['documents_failed']}")
        print(f"  Fragments created:      {stats['fragments_created']}")
        print(f"  Fragments rejected:     {stats['fragments_rejected']}")
        print(f"  Embeddings generated:   {stats['embeddings_generated']}")
        print(f"  Embeddings failed:      {stats['embeddings_failed']}")
        print(f"  Time elapsed:           {elapsed_seconds:.1f}s")

        embedding_seconds = stats.get("embedding_seconds")
        if embedding_seconds:
            rate = stats["embeddings_generated"] / embedding_seconds
            print(f"  Embedding rate:         {rate:.1f} fragments/sec")

        chunk_stats = stats["chunk_stats"]
        if chunk_stats["chunk_count"]:
            print(f"  Average fragment size:  {chunk_stats['avg_chunk_size']} chars")

        print(f"\n{'=' * 60}\n")

        if stats["embeddings_failed"] > 0:
            print(f"Warning: {stats['embeddings_failed']} fragment(s) have no embedding.")
            print("   They stay searchable through keyword matching.\n")


def print_status(status: dict):
    print("\nIndex status:")
    print(f"   Indexed:          {status['is_indexed']}")
    print(f"   Total fragments:  {status['total_fragments']}")
    print(f"   Last indexed:     {status['indexed_at'] or 'never'}")
    for source, counts in status["sources"].items():
        print(
            f"   {source:<18}{counts['documents']} documents, "
            f"{counts['fragments']} fragments, {counts['embedded']} embedded"
        )
    print()


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Reindex the document store and documentation site",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py                  # Reindex both sources
  python scripts/reindex.py --source guide   # Documentation site only
  python scripts/reindex.py --embed-only     # Embed persisted guide fragments
        """,
    )

    parser.add_argument(
        "--source",
        choices=["drive", "guide", "all"],
        default="all",
        help="Which source to reindex (default: all)",
    )
    parser.add_argument(
        "--no-embed",
        action="store_true",
        help="Scrape and chunk the guide without embedding it",
    )
    parser.add_argument(
        "--embed-only",
        action="store_true",
        help="Only embed the persisted guide fragments",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Empty the index for every source and exit",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show index statistics and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else None)

    progress = ProgressReporter(verbose=args.verbose)

    try:
        pipeline = build_pipeline()

        if args.status:
            print_status(pipeline.store.status())
            return

        if args.clear:
            print("\nClearing index. Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)
            pipeline.store.clear()
            print("Index cleared.\n")
            return

        print("\nConfiguration:")
        print(f"   Data directory:   {config.DATA_DIR}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Drive folder:     {config.DRIVE_FOLDER_ID or '(not set)'}")
        print(f"   Docs site:        {config.DOCS_SITE_URL}")
        print(f"   Top-K retrieval:  {config.RETRIEVAL_TOP_K}")

        def on_progress(current, total, name):
            progress.update(current, total, name)

        callback = on_progress if not args.verbose else None

        if args.embed_only:
            progress.start("Embedding guide fragments")
            stats = await pipeline.embed_guide()
            progress.finish("Guide embedding", stats)
            return

        if args.source in ("drive", "all"):
            progress.start("Indexing document store")
            stats = await pipeline.index_drive(progress_callback=callback)
            progress.finish("Document store indexing", stats)

        if args.source in ("guide", "all"):
            progress.start("Indexing documentation site")
            stats = await pipeline.index_guide(
                embed=not args.no_embed,
                progress_callback=callback,
            )
            progress.finish("Documentation site indexing", stats)

        print_status(pipeline.store.status())

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except DocQAError as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
