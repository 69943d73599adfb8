"""Unit tests for text sanitization and the content-quality gate."""

from __future__ import annotations

import pytest

from kb_ingest.utils.errors import ContentQualityError
from kb_ingest.utils.text_sanitizer import (
    alpha_ratio,
    assess_quality,
    ensure_quality,
    looks_like_raw_structure,
    sanitize_text,
)

_PROSE = "The committee approved the budget for the new library after a long debate."


class TestSanitizeText:
    def test_removes_nul_and_control_characters(self) -> None:
        assert sanitize_text("abc\x00def\x07ghi") == "abcdefghi"

    def test_keeps_tabs_and_newlines(self) -> None:
        assert sanitize_text("a\tb\nc") == "a\tb\nc"

    def test_normalizes_line_endings(self) -> None:
        assert sanitize_text("one\r\ntwo\rthree") == "one\ntwo\nthree"

    def test_drops_unpaired_surrogates(self) -> None:
        assert sanitize_text("ok\ud800ay") == "okay"

    def test_collapses_blank_line_runs(self) -> None:
        assert sanitize_text("a\n\n\n\n\n\nb") == "a\n\n\nb"

    def test_trims_trailing_spaces_per_line(self) -> None:
        assert sanitize_text("line one   \nline two") == "line one\nline two"

    def test_empty_input(self) -> None:
        assert sanitize_text("") == ""


class TestQuality:
    def test_alpha_ratio_ignores_whitespace(self) -> None:
        assert alpha_ratio("ab 12") == pytest.approx(0.5)
        assert alpha_ratio("   ") == 0.0

    def test_prose_passes(self) -> None:
        report = assess_quality(_PROSE)
        assert report.passed
        assert report.reason == ""

    def test_short_text_fails(self) -> None:
        report = assess_quality("Too short.")
        assert not report.passed
        assert "too short" in report.reason

    def test_numeric_noise_fails(self) -> None:
        report = assess_quality("0123 4567 89.10 " * 10)
        assert not report.passed
        assert "alphabetic" in report.reason

    def test_raw_pdf_structure_detected(self) -> None:
        raw = "%PDF-1.7 1 0 obj << /Type /Catalog >> endobj xref trailer " + _PROSE
        assert looks_like_raw_structure(raw)
        assert not assess_quality(raw).passed

    def test_single_marker_is_not_raw_structure(self) -> None:
        assert not looks_like_raw_structure("We discussed the xref table in chapter two. " + _PROSE)

    def test_ensure_quality_raises_with_user_message(self) -> None:
        with pytest.raises(ContentQualityError) as exc_info:
            ensure_quality(
                "tiny",
                source_label="doc-1",
                user_message="This Word document may be corrupted or unsupported.",
            )
        assert exc_info.value.user_message == "This Word document may be corrupted or unsupported."
        assert "doc-1" in str(exc_info.value)

    def test_ensure_quality_returns_report(self) -> None:
        assert ensure_quality(_PROSE, source_label="doc-1").passed
