"""Memoria command-line driver.

Usage::

    python -m memoria.cli ingest-file --path ~/notes/meeting.pdf --tag work
    python -m memoria.cli ingest-url --url https://example.com/post
    python -m memoria.cli ingest-text --text "Buy oat milk" --search "groceries"
    python -m memoria.cli search "what did I read about sourdough last week"
    python -m memoria.cli ask "summarise my notes on the offsite"
    python -m memoria.cli status 3f0c...

``--memory`` runs against a throwaway in-memory store, which is only useful
together with ``--search`` on an ingest command.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from memoria.config.loader import load_settings
from memoria.main import Container, build_container
from memoria.models.search import SearchOptions, SearchResponse
from memoria.services.intake_service import SourceRef, TextSource, UploadSource, UrlSource
from memoria.utils.errors import MemoriaError
from memoria.utils.logging import configure_logging

# mimetypes does not know these on every platform.
_EXTRA_MIME_TYPES = {".md": "text/markdown", ".m4a": "audio/x-m4a"}


def _guess_mime(path: Path) -> str:
    return _EXTRA_MIME_TYPES.get(path.suffix.lower()) or mimetypes.guess_type(path.name)[0] or ""


def _print_results(response: SearchResponse) -> None:
    if response.degraded:
        print(f"(degraded: {', '.join(response.degraded)})")
    if not response.results:
        print("No results.")
        return
    for rank, result in enumerate(response.results, start=1):
        print(f"{rank:>2}. [{result.final_score:.3f} {result.match_type.value}] {result.title}")
        print(f"    {result.text[:200]}")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, container: Container, source: SourceRef) -> int:
    document_id = await container.intake.enqueue_ingestion(
        args.owner, source, tags=args.tag or (), title=args.title
    )
    print(f"Enqueued document {document_id}")

    await container.queue.join()
    status = await container.intake.get_processing_status(args.owner, document_id)
    print(f"  Status: {status['status']}")
    if "error" in status:
        print(f"  Error:  {status['error']}")
        return 1

    if args.search:
        _print_results(await container.search.search(args.owner, args.search))
    return 0


async def _handle_search(args: argparse.Namespace, container: Container) -> int:
    options = SearchOptions(limit=args.limit) if args.limit is not None else None
    response = await container.search.search(args.owner, args.query, options)
    _print_results(response)
    return 0


async def _handle_ask(args: argparse.Namespace, container: Container) -> int:
    if container.assistant is None:
        print("Error: no completion provider configured.", file=sys.stderr)
        return 1
    async for event in container.assistant.stream_answer(args.owner, args.question):
        if event.type == "chunk":
            print(event.content, end="", flush=True)
        else:
            print()
            for citation in event.citations:
                print(f"  - {citation.title} ({citation.relevance_score:.3f})")
    return 0


async def _handle_status(args: argparse.Namespace, container: Container) -> int:
    status = await container.intake.get_processing_status(args.owner, args.document_id)
    for key, value in status.items():
        print(f"{key}: {value}")
    return 0


def _source_from_args(args: argparse.Namespace) -> SourceRef | None:
    if args.command == "ingest-file":
        path = Path(args.path).expanduser().resolve()
        return UploadSource(
            file_path=str(path),
            original_name=path.name,
            mime_type=args.mime or _guess_mime(path),
            size=path.stat().st_size if path.exists() else 0,
        )
    if args.command == "ingest-url":
        return UrlSource(url=args.url)
    if args.command == "ingest-text":
        return TextSource(text=args.text)
    return None


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    if args.memory:
        settings = settings.model_copy(update={"store_backend": "memory"})
    configure_logging(log_level=settings.app_log_level, json_output=settings.app_env == "production")

    container = build_container(settings)
    await container.start()
    try:
        source = _source_from_args(args)
        if source is not None:
            return await _handle_ingest(args, container, source)
        if args.command == "search":
            return await _handle_search(args, container)
        if args.command == "ask":
            return await _handle_ask(args, container)
        return await _handle_status(args, container)
    finally:
        await container.close()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m memoria.cli",
        description="Ingest and search your personal knowledge base.",
    )
    parser.add_argument("--config", default="config/config.yaml", help="YAML config path")
    parser.add_argument("--owner", default="local", help="Owner id (default: local)")
    parser.add_argument("--memory", action="store_true", help="Use an in-memory store")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_ingest_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--title", help="Document title")
        sub.add_argument("--tag", action="append", help="Tag (repeatable)")
        sub.add_argument("--search", help="Run this query once processing finishes")

    file_parser = subparsers.add_parser("ingest-file", help="Ingest a local file")
    file_parser.add_argument("--path", required=True, help="File to ingest")
    file_parser.add_argument("--mime", help="MIME type (guessed from the extension if omitted)")
    add_ingest_options(file_parser)

    url_parser = subparsers.add_parser("ingest-url", help="Ingest a web page")
    url_parser.add_argument("--url", required=True, help="Page URL")
    add_ingest_options(url_parser)

    text_parser = subparsers.add_parser("ingest-text", help="Ingest a text note")
    text_parser.add_argument("--text", required=True, help="Note text")
    add_ingest_options(text_parser)

    search_parser = subparsers.add_parser("search", help="Hybrid search")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument(
        "--limit", type=int, help="Max results (default: retrieval.default_limit from config)"
    )

    ask_parser = subparsers.add_parser("ask", help="Ask a question about your documents")
    ask_parser.add_argument("question", help="Question")

    status_parser = subparsers.add_parser("status", help="Show a document's processing status")
    status_parser.add_argument("document_id", help="Document id")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = asyncio.run(_run(args))
    except MemoriaError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)
