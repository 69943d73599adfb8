"""Unit tests for source-kind detection."""

from __future__ import annotations

import pytest

from conftest import make_document
from kb_ingest.models.extraction import SourceKind
from kb_ingest.services.extraction.detection import detect_source_kind, effective_media_type
from kb_ingest.utils.errors import MissingLocatorError, UnsupportedSourceError
from kb_ingest.utils.video_urls import is_video_url, parse_video_id


class TestVideoUrls:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "https://youtube.com/shorts/dQw4w9WgXcQ",
            "https://m.youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        ],
    )
    def test_recognized_shapes(self, url: str) -> None:
        assert parse_video_id(url) == "dQw4w9WgXcQ"

    def test_non_video_url(self) -> None:
        assert not is_video_url("https://example.com/watch?v=nothing")


class TestDetectSourceKind:
    @pytest.mark.parametrize(
        ("file_type", "path", "expected"),
        [
            ("application/pdf", "uploads/a.pdf", SourceKind.PDF),
            ("audio/mpeg", "uploads/a.mp3", SourceKind.AUDIO),
            ("text/plain", "uploads/a.txt", SourceKind.TEXT),
            ("application/msword", "uploads/a.doc", SourceKind.TEXT),
            ("", "uploads/report.PDF", SourceKind.PDF),
            ("application/octet-stream", "uploads/voice.m4a", SourceKind.AUDIO),
        ],
    )
    def test_file_types(self, file_type: str, path: str, expected: SourceKind) -> None:
        document = make_document(file_type=file_type, storage_path=path)
        assert detect_source_kind(document) == expected

    def test_url_wins_over_declared_type(self) -> None:
        document = make_document(
            file_type="text/html",
            storage_path=None,
            metadata={"source_url": "https://example.com/article"},
        )
        assert detect_source_kind(document) == SourceKind.WEB

    def test_video_url(self) -> None:
        document = make_document(
            file_type="url",
            storage_path=None,
            metadata={"originalUrl": "https://youtu.be/dQw4w9WgXcQ"},
        )
        assert detect_source_kind(document) == SourceKind.VIDEO

    def test_video_type_without_url(self) -> None:
        document = make_document(file_type="youtube", storage_path=None)
        with pytest.raises(MissingLocatorError):
            detect_source_kind(document)

    def test_file_without_storage_path(self) -> None:
        document = make_document(file_type="application/pdf", storage_path=None)
        with pytest.raises(MissingLocatorError):
            detect_source_kind(document)

    def test_unsupported_type(self) -> None:
        document = make_document(file_type="image/png", storage_path="uploads/a.png")
        with pytest.raises(UnsupportedSourceError):
            detect_source_kind(document)

    def test_effective_media_type_strips_parameters(self) -> None:
        document = make_document(file_type="text/plain; charset=utf-8")
        assert effective_media_type(document) == "text/plain"
