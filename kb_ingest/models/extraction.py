"""Extraction and embedding value objects.

These are in-process results passed between a provider and the service
that called it; none of them are persisted directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """The five extraction variants, selected by ``detect_source_kind``."""

    PDF = "pdf"
    WEB = "web"
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"


class ExtractionResult(BaseModel):
    """Plain text produced from one source plus light metadata."""

    model_config = ConfigDict(frozen=True)

    text: str
    source_kind: SourceKind
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def char_count(self) -> int:
        return len(self.text)


class TranscriptSegment(BaseModel):
    """One timed caption line from a transcript provider."""

    model_config = ConfigDict(frozen=True)

    start: float = Field(ge=0.0, description="Offset in seconds from the start of the video.")
    duration: float = Field(default=0.0, ge=0.0)
    text: str


class Transcript(BaseModel):
    """Caption track returned by :class:`ITranscriptProvider`."""

    model_config = ConfigDict(frozen=True)

    video_id: str
    language: str
    segments: list[TranscriptSegment]
    is_generated: bool = False


class EmbeddingResult(BaseModel):
    """One vector tagged with the position of its input in the request."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    vector: list[float]
