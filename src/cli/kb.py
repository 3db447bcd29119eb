# =============================================================================
# src/cli/kb.py - Knowledge-Base Management CLI
# =============================================================================
#
# Command-line access to the same ingestion, catalog and retrieval services
# the HTTP API uses.  Components come from src.main.build_components, so the
# CLI and the server always agree on embedding model, vector store and
# catalog database.
#
# Supported subcommands:
#
#   ingest    - Ingest one PDF/DOCX/TXT file into a new or existing KB
#   list      - List knowledge bases (optionally filtered by name)
#   show      - Show one knowledge base and its file manifest
#   delete    - Delete a knowledge base and all of its vectors
#   retrieve  - Run a retrieval query against one knowledge base
#   stats     - Display catalog statistics
#
# Usage examples:
#   python -m src.cli ingest --file notes.pdf --name "AQA GCSE Maths" \
#       --board AQA --subject Mathematics --level GCSE
#   python -m src.cli ingest --file paper2.pdf --kb-id 3f2a...
#   python -m src.cli retrieve 3f2a... "What is a prime number?"
#   python -m src.cli delete 3f2a... --yes
#
# Log output goes to stderr at WARNING+ unless --verbose is given.
# =============================================================================

"""Standalone CLI for managing tutor knowledge bases."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.ingestion import ExistingKnowledgeBase, IngestionTarget, NewKnowledgeBase
from src.models.knowledge_base import EducationalMetadata, KnowledgeBase
from src.services.retrieval_service import build_context
from src.utils.errors import KnowledgeBaseError
from src.utils.logging import configure_logging


def _print_knowledge_base(kb: KnowledgeBase, with_files: bool = False) -> None:
    meta = kb.metadata
    print(f"{kb.id}  {kb.name}")
    print(f"  {meta.educational_board} / {meta.subject} / {meta.level}")
    print(f"  Files: {kb.file_count}  Chunks: {kb.total_chunks}  Tokens: {kb.total_tokens}")
    if kb.description:
        print(f"  {kb.description}")
    if with_files:
        for manifest in kb.files:
            print(
                f"    - {manifest.original_filename:<40} "
                f"{manifest.chunk_count:>5} chunks  {manifest.size_bytes:>9} bytes"
            )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _target_from_args(args: argparse.Namespace) -> IngestionTarget:
    if args.kb_id:
        return ExistingKnowledgeBase(knowledge_base_id=args.kb_id)
    return NewKnowledgeBase(
        name=args.name,
        description=args.description or "",
        metadata=EducationalMetadata(
            educational_board=args.board,
            subject=args.subject,
            level=args.level,
        ),
    )


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    print(f"Ingesting: {path.name}")
    content = await asyncio.to_thread(path.read_bytes)
    result = await components["ingestion_service"].ingest_bytes(
        content, path.name, _target_from_args(args)
    )

    print("\nIngestion complete:")
    print(f"  Knowledge base:  {result.knowledge_base.name} ({result.knowledge_base.id})")
    print(f"  Chunks indexed:  {result.chunks_indexed}")
    print(f"  Total tokens:    {result.tokens_indexed}")
    if result.chunks_skipped:
        print(f"  Chunks skipped:  {result.chunks_skipped}")
    if result.replaced:
        print(f"  Replaced previous upload ({result.stale_vectors_removed} stale vectors removed)")
    print(f"  Time:            {result.elapsed_seconds:.2f}s")
    return 0


async def _handle_list(args: argparse.Namespace, components: dict[str, Any]) -> int:
    items, total = await components["catalog_service"].list_page(
        search=args.search, page=1, limit=args.limit
    )
    if not items:
        print("No knowledge bases found.")
        return 0
    for kb in items:
        _print_knowledge_base(kb)
    print(f"\n{len(items)} of {total} knowledge base(s)")
    return 0


async def _handle_show(args: argparse.Namespace, components: dict[str, Any]) -> int:
    kb = await components["catalog_service"].get(args.id)
    _print_knowledge_base(kb, with_files=True)
    return 0


async def _handle_delete(args: argparse.Namespace, components: dict[str, Any]) -> int:
    catalog = components["catalog_service"]
    kb = await catalog.get(args.id)
    if not args.yes:
        answer = input(f"Delete '{kb.name}' and all of its vectors? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1
    deleted = await catalog.delete(args.id)
    print(f"Deleted '{kb.name}' ({deleted} vectors removed).")
    return 0


async def _handle_retrieve(args: argparse.Namespace, components: dict[str, Any]) -> int:
    await components["catalog_service"].get(args.id)
    result = await components["retrieval_service"].retrieve(
        args.id, args.question, top_k=args.top_k
    )
    print(f"Status: {result.status.value}")
    if result.reason:
        print(f"Reason: {result.reason}")
    for snippet in result.snippets:
        print(f"\n[{snippet.score:.3f}] {snippet.filename} #{snippet.chunk_index}")
        print(f"  {snippet.text}")
    if args.context:
        print("\n--- context ---")
        print(build_context(result))
    return 0


async def _handle_stats(args: argparse.Namespace, components: dict[str, Any]) -> int:
    stats = await components["catalog_service"].stats(recent_limit=5)
    print("Catalog Statistics")
    print("=" * 40)
    print(f"  Knowledge bases:  {stats.total_knowledge_bases}")
    print(f"  Files:            {stats.total_files}")
    print(f"  Chunks:           {stats.total_chunks}")
    print(f"  Tokens:           {stats.total_tokens}")
    print(f"  Avg files/KB:     {stats.avg_files_per_knowledge_base}")
    print(f"  Avg chunks/KB:    {stats.avg_chunks_per_knowledge_base}")
    if stats.recent:
        print("\n  Recently updated:")
        for kb in stats.recent:
            print(f"    {kb.name:<30} {kb.updated_at:%Y-%m-%d %H:%M}")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "list": _handle_list,
    "show": _handle_show,
    "delete": _handle_delete,
    "retrieve": _handle_retrieve,
    "stats": _handle_stats,
}


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    # Imported here so `--help` does not pay for provider imports.
    from src.main import build_components

    components = build_components(app_settings)
    await components["catalog_service"].initialize()
    return await _HANDLERS[args.command](args, components)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge-base CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli",
        description="Manage tutor knowledge bases.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log at the configured level (default: warnings only)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a PDF, DOCX or TXT file")
    ingest_parser.add_argument("--file", required=True, help="Path to the document")
    ingest_parser.add_argument("--kb-id", dest="kb_id", help="Existing knowledge base id")
    ingest_parser.add_argument("--name", help="Name for a new knowledge base")
    ingest_parser.add_argument("--board", help="Educational board (new KB)")
    ingest_parser.add_argument("--subject", help="Subject (new KB)")
    ingest_parser.add_argument("--level", help="Level (new KB)")
    ingest_parser.add_argument("--description", default="", help="Description (new KB)")

    # -- list --
    list_parser = subparsers.add_parser("list", help="List knowledge bases")
    list_parser.add_argument("--search", help="Case-insensitive name filter")
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")

    # -- show --
    show_parser = subparsers.add_parser("show", help="Show one knowledge base")
    show_parser.add_argument("id", help="Knowledge base id")

    # -- delete --
    delete_parser = subparsers.add_parser(
        "delete", help="Delete a knowledge base and all of its vectors"
    )
    delete_parser.add_argument("id", help="Knowledge base id")
    delete_parser.add_argument(
        "--yes", "-y", action="store_true", help="Skip confirmation prompt"
    )

    # -- retrieve --
    retrieve_parser = subparsers.add_parser("retrieve", help="Query one knowledge base")
    retrieve_parser.add_argument("id", help="Knowledge base id")
    retrieve_parser.add_argument("question", help="Question text")
    retrieve_parser.add_argument("--top-k", dest="top_k", type=int, default=None)
    retrieve_parser.add_argument(
        "--context", action="store_true", help="Also print the joined grounding context"
    )

    # -- stats --
    subparsers.add_parser("stats", help="Show catalog statistics")

    return parser


def _validate_ingest_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.kb_id:
        return
    missing = [
        flag
        for flag, value in (
            ("--name", args.name),
            ("--board", args.board),
            ("--subject", args.subject),
            ("--level", args.level),
        )
        if not (value or "").strip()
    ]
    if missing:
        parser.error(f"ingest needs --kb-id, or all of: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1
    if args.command == "ingest":
        _validate_ingest_args(parser, args)

    app_settings = Settings()
    # Logs go to stderr so stdout carries only command output.
    configure_logging(
        log_level=app_settings.log_level if args.verbose else "WARNING",
        app_env=app_settings.app_env,
        stream=sys.stderr,
    )

    try:
        return asyncio.run(_run(args, app_settings))
    except KnowledgeBaseError as exc:
        print(f"Error ({exc.error_code}): {exc.message}", file=sys.stderr)
        return 1
