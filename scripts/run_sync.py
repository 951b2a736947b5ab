#!/usr/bin/env python3
"""
Docsync Sync & Query Script
===========================

Run repository syncs or query the index from the command line.

Usage:
    # Sync one repository
    python scripts/run_sync.py --mode sync --repo https://github.com/org/docs

    # Sync every repository listed in the sources file
    python scripts/run_sync.py --mode sync-all

    # Ask the index a question
    python scripts/run_sync.py --mode query --query "How do I configure auth?"

    # Check vector index liveness and local state
    python scripts/run_sync.py --mode health

Environment:
    Set OPENAI_API_KEY (and optionally GITHUB_TOKEN, CHROMA_HOST) in .env or environment.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from docsync import DocsAssistant
from docsync.config import ConfigurationError, load_settings
from docsync.logging_config import setup_logging_from_config
from docsync.rag import InvalidQueryError, RetrievalError, VectorStoreError
from docsync.sources import SourceError


async def run_health_check(assistant: DocsAssistant) -> int:
    """Probe the vector index and show local state."""
    print("\n" + "=" * 60)
    print("DOCSYNC HEALTH CHECK")
    print("=" * 60 + "\n")

    alive = await assistant.vector_store.heartbeat()
    icon = "[OK]" if alive else "[!!]"
    print(f"  {icon} VECTOR INDEX")
    print(f"      Documents tracked: {len(assistant.vector_store.document_ids())}")
    print()

    for source_id, summary in assistant.coordinator.state.get_summary().items():
        print(f"  {source_id}")
        print(f"      Revision:  {summary['last_processed_revision']}")
        print(f"      Last sync: {summary['last_sync_at']}")
        print(f"      Status:    {summary['last_status']}")
        if summary["failed_files"]:
            print(f"      Failed:    {summary['failed_files']} files")

    return 0 if alive else 1


async def run_sync(assistant: DocsAssistant, repo: str, branch: str) -> int:
    """Sync one repository and print the result."""
    print("\n" + "=" * 60)
    print(f"DOCSYNC SYNC - {repo}")
    print("=" * 60 + "\n")

    try:
        result = await assistant.coordinator.sync(repo, branch)
    except (SourceError, VectorStoreError) as e:
        print(f"[ERROR] Sync failed: {e}")
        return 1
    summary = result.get_summary()

    print(f"  Status:     {summary['message']}")
    print(f"  Revision:   {summary['revision']}")
    print(f"  Ingested:   {summary['ingested']}")
    print(f"  Removed:    {summary['removed']}")
    print(f"  Skipped:    {summary['skipped']}")
    if summary["duration_seconds"] is not None:
        print(f"  Duration:   {summary['duration_seconds']:.1f} seconds")

    if result.errors:
        print()
        print(f"  Errors ({len(result.errors)}):")
        for error in result.errors[:5]:
            print(f"    - [{error['error_type']}] {error['path']}: {error['message'][:60]}")
        if len(result.errors) > 5:
            print(f"    ... and {len(result.errors) - 5} more")

    return 0 if not result.errors else 1


async def run_sync_all(assistant: DocsAssistant, branch: str) -> int:
    messages = await assistant.sync_all(branch)
    for source_id, message in messages.items():
        print(f"  {source_id}: {message}")
    return 0


async def run_query(assistant: DocsAssistant, query: str, max_results: int, chunks_only: bool) -> int:
    try:
        payload = await assistant.retrieve(
            query,
            max_results=max_results,
            include_full_documents=not chunks_only,
        )
    except InvalidQueryError as e:
        print(f"[ERROR] Invalid query: {e}")
        return 2
    except RetrievalError as e:
        print(f"[ERROR] Retrieval failed: {e}")
        return 1

    print("SOURCES:")
    for doc_id in payload["source_files"].splitlines():
        print(f"  - {doc_id}")
    print()
    print(payload["context"] or "(no relevant context)")
    return 0


async def dispatch(args: argparse.Namespace, settings) -> int:
    assistant = DocsAssistant.from_settings(settings)

    if args.mode == "health":
        return await run_health_check(assistant)
    if args.mode == "sync":
        return await run_sync(assistant, args.repo, args.branch)
    if args.mode == "sync-all":
        return await run_sync_all(assistant, args.branch)
    return await run_query(assistant, args.query, args.max_results, args.chunks)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Docsync repository sync and retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--mode",
        choices=["sync", "sync-all", "query", "health"],
        default="sync-all",
        help="Operation to run (default: sync-all)",
    )
    parser.add_argument("--repo", type=str, help="Repository URL for --mode sync")
    parser.add_argument("--branch", type=str, default="main", help="Branch to sync (default: main)")
    parser.add_argument("--query", type=str, help="Question for --mode query")
    parser.add_argument("--max-results", type=int, default=5, help="Results to keep (default: 5)")
    parser.add_argument("--chunks", action="store_true", help="Return chunks instead of full documents")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, default=None, help="Log file path")

    args = parser.parse_args()

    if args.mode == "sync" and not args.repo:
        parser.error("--repo is required for --mode sync")
    if args.mode == "query" and not args.query:
        parser.error("--query is required for --mode query")

    try:
        settings = load_settings()
        if args.verbose:
            settings.logging.level = "DEBUG"
        if args.log_file:
            settings.logging.log_file = args.log_file
        setup_logging_from_config(settings.logging)

        return asyncio.run(dispatch(args, settings))
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        print("Set it in .env file or export it in your shell")
        return 1


if __name__ == "__main__":
    sys.exit(main())
