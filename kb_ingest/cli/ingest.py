"""Operator CLI for registering documents and running pipeline stages.

Usage::

    python -m kb_ingest.cli register --org acme --file report.pdf
    python -m kb_ingest.cli register --org acme --url https://youtu.be/dQw4w9WgXcQ
    python -m kb_ingest.cli process <document-id>
    python -m kb_ingest.cli stage chunk <document-id>
    python -m kb_ingest.cli summarize <document-id> --level section
    python -m kb_ingest.cli status <document-id>

Every command prints a JSON object on stdout and exits non-zero when the
stage reported ``success: false``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Any

from kb_ingest.config.loader import DEFAULT_CONFIG_PATH, load_settings
from kb_ingest.main import build_components, close_components, initialize_stores
from kb_ingest.models.document import Document
from kb_ingest.models.pipeline import StageResponse
from kb_ingest.models.summary import SummaryLevel
from kb_ingest.utils.errors import KBIngestError
from kb_ingest.utils.logging import configure_logging

_STAGES = ("extract", "chunk", "embed")


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _emit_stage(response: StageResponse) -> int:
    _emit(response.model_dump(mode="json"))
    return 0 if response.success else 1


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_register(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Create a document record, uploading the file into the org bucket."""
    document_id = args.id or str(uuid.uuid4())
    metadata: dict[str, Any] = {}
    storage_path: str | None = None

    if args.file:
        source = Path(args.file)
        if not source.is_file():
            print(f"Error: file not found: {source}", file=sys.stderr)
            return 1
        document = Document(id=document_id, organisation_id=args.org)
        storage_path = f"uploads/{document_id}/{source.name}"
        await components["blob_store"].upload(document.bucket, storage_path, source.read_bytes())
        metadata["original_filename"] = source.name
    else:
        metadata["source_url"] = args.url

    document = Document(
        id=document_id,
        organisation_id=args.org,
        storage_path=storage_path,
        file_type=args.type or ("url" if args.url else ""),
        title=args.title or "",
        metadata=metadata,
    )
    created = await components["document_store"].create(document)
    _emit({"document_id": created.id, "status": created.status.value, "storage_path": storage_path})
    return 0


async def _handle_process(args: argparse.Namespace, components: dict[str, Any]) -> int:
    return _emit_stage(await components["pipeline"].process(args.document_id))


async def _handle_stage(args: argparse.Namespace, components: dict[str, Any]) -> int:
    entry = getattr(components["pipeline"], args.stage)
    return _emit_stage(await entry(args.document_id))


async def _handle_summarize(args: argparse.Namespace, components: dict[str, Any]) -> int:
    response = await components["pipeline"].summarize(
        args.document_id,
        chunk_id=args.chunk_id,
        level=SummaryLevel(args.level),
    )
    return _emit_stage(response)


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    _emit(await components["tracker"].get_status(args.document_id))
    return 0


_HANDLERS = {
    "register": _handle_register,
    "process": _handle_process,
    "stage": _handle_stage,
    "summarize": _handle_summarize,
    "status": _handle_status,
}


async def run_command(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Initialise the stores, run one command and release shared clients."""
    try:
        await initialize_stores(components)
        return await _HANDLERS[args.command](args, components)
    except KBIngestError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_components(components)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the kb-ingest CLI."""
    parser = argparse.ArgumentParser(
        prog="kb-ingest",
        description="Register documents and run the kb-ingest pipeline.",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- register --
    register = subparsers.add_parser("register", help="Create a document record")
    register.add_argument("--org", required=True, help="Organisation id (selects the bucket)")
    source = register.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Local file to upload")
    source.add_argument("--url", help="Web page or video URL")
    register.add_argument("--type", help="Declared media type, e.g. application/pdf, youtube")
    register.add_argument("--title", help="Display title")
    register.add_argument("--id", help="Document id (default: random UUID)")

    # -- process --
    process = subparsers.add_parser("process", help="Run every stage")
    process.add_argument("document_id")

    # -- stage --
    stage = subparsers.add_parser("stage", help="Run one intermediate stage")
    stage.add_argument("stage", choices=_STAGES)
    stage.add_argument("document_id")

    # -- summarize --
    summarize = subparsers.add_parser("summarize", help="Summarize from a given level")
    summarize.add_argument("document_id")
    summarize.add_argument(
        "--level",
        choices=[level.value for level in SummaryLevel],
        default=SummaryLevel.CHUNK.value,
    )
    summarize.add_argument("--chunk-id", dest="chunk_id", help="Summarize just this chunk")

    # -- status --
    status = subparsers.add_parser("status", help="Show document status and progress")
    status.add_argument("document_id")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, wire components, run the command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = load_settings(args.config)
    # stdout carries the JSON result; logs go to stderr.
    configure_logging(
        log_level="WARNING",
        json_output=settings.app_env == "production",
        stream=sys.stderr,
    )

    components = build_components(settings)
    sys.exit(asyncio.run(run_command(args, components)))


if __name__ == "__main__":
    main()
