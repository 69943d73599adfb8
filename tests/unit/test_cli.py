"""Unit tests for the kb-ingest CLI -- argument parsing and command handlers."""

from __future__ import annotations

import json

import pytest

from conftest import make_document, sample_text
from kb_ingest.cli.ingest import build_parser, main, run_command
from kb_ingest.config.settings import Settings

_DOC_ID = "doc-0001-aaaa"


def _components(pipeline, document_store, blob_store, tracker) -> dict:
    return {
        "pipeline": pipeline,
        "document_store": document_store,
        "blob_store": blob_store,
        "tracker": tracker,
    }


def _last_json(capsys) -> dict:
    """Parse the last top-level JSON object printed, skipping log lines."""
    lines = capsys.readouterr().out.splitlines()
    start = max(i for i, line in enumerate(lines) if line == "{")
    end = next(i for i in range(start, len(lines)) if lines[i] == "}")
    return json.loads("\n".join(lines[start : end + 1]))


# ======================================================================
# Parser
# ======================================================================


class TestBuildParser:
    def test_register_requires_one_source(self) -> None:
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["register", "--org", "acme"])
        with pytest.raises(SystemExit):
            parser.parse_args(["register", "--org", "acme", "--file", "a.pdf", "--url", "https://x.io"])

    def test_stage_choices(self) -> None:
        args = build_parser().parse_args(["stage", "embed", _DOC_ID])
        assert (args.command, args.stage, args.document_id) == ("stage", "embed", _DOC_ID)
        with pytest.raises(SystemExit):
            build_parser().parse_args(["stage", "summarize", _DOC_ID])

    def test_summarize_defaults(self) -> None:
        args = build_parser().parse_args(["summarize", _DOC_ID])
        assert args.level == "chunk"
        assert args.chunk_id is None

    def test_no_command_prints_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
        assert "kb-ingest" in capsys.readouterr().out


# ======================================================================
# Commands
# ======================================================================


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_register_file_then_process(
        self, tmp_path, capsys, pipeline, document_store, blob_store, tracker
    ) -> None:
        source = tmp_path / "notes.txt"
        source.write_text(sample_text(6), encoding="utf-8")
        components = _components(pipeline, document_store, blob_store, tracker)
        parser = build_parser()

        code = await run_command(
            parser.parse_args(
                ["register", "--org", "acme", "--file", str(source), "--type", "text/plain", "--id", _DOC_ID]
            ),
            components,
        )
        registered = _last_json(capsys)

        assert code == 0
        assert registered["status"] == "queued"
        assert registered["storage_path"] == f"uploads/{_DOC_ID}/notes.txt"

        code = await run_command(parser.parse_args(["process", _DOC_ID]), components)
        processed = _last_json(capsys)

        assert code == 0
        assert processed["success"] is True

        await run_command(parser.parse_args(["status", _DOC_ID]), components)
        assert _last_json(capsys)["status"] == "completed"

    @pytest.mark.asyncio
    async def test_register_url(self, capsys, pipeline, document_store, blob_store, tracker) -> None:
        components = _components(pipeline, document_store, blob_store, tracker)
        args = build_parser().parse_args(
            ["register", "--org", "acme", "--url", "https://youtu.be/dQw4w9WgXcQ", "--type", "youtube"]
        )

        assert await run_command(args, components) == 0

        document = await document_store.get(_last_json(capsys)["document_id"])
        assert document.metadata["source_url"] == "https://youtu.be/dQw4w9WgXcQ"
        assert document.storage_path is None

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, capsys, pipeline, document_store, blob_store, tracker) -> None:
        args = build_parser().parse_args(["register", "--org", "acme", "--file", str(tmp_path / "nope.txt")])

        code = await run_command(args, _components(pipeline, document_store, blob_store, tracker))

        assert code == 1
        assert "file not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_failed_stage_exits_non_zero(
        self, capsys, pipeline, document_store, blob_store, tracker
    ) -> None:
        await document_store.create(make_document())
        args = build_parser().parse_args(["stage", "extract", _DOC_ID])

        code = await run_command(args, _components(pipeline, document_store, blob_store, tracker))

        assert code == 1
        assert _last_json(capsys)["error_details"]["code"] == "STORAGE_ERROR"

    @pytest.mark.asyncio
    async def test_status_of_unknown_document(
        self, capsys, pipeline, document_store, blob_store, tracker
    ) -> None:
        args = build_parser().parse_args(["status", "missing"])

        code = await run_command(args, _components(pipeline, document_store, blob_store, tracker))

        assert code == 1
        assert "not found" in capsys.readouterr().err


# ======================================================================
# main()
# ======================================================================


class TestMain:
    def test_offline_command_runs_without_api_key(self, capsys, monkeypatch, tmp_path) -> None:
        settings = Settings(
            openai_api_key="",
            database_path=str(tmp_path / "kb.db"),
            blob_root=str(tmp_path / "blobs"),
        )
        monkeypatch.setattr("kb_ingest.cli.ingest.load_settings", lambda _path: settings)
        monkeypatch.setattr("kb_ingest.cli.ingest.configure_logging", lambda **_kwargs: None)

        with pytest.raises(SystemExit) as exc_info:
            main(["status", "missing"])

        assert exc_info.value.code == 1
        assert "not found" in capsys.readouterr().err
