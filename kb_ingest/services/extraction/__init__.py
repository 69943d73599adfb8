"""Source-to-text extraction: one variant per source kind behind a dispatcher."""

from kb_ingest.services.extraction.audio_extractor import AudioExtractor
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.services.extraction.detection import detect_source_kind
from kb_ingest.services.extraction.extractor import DocumentExtractor
from kb_ingest.services.extraction.pdf_extractor import PDFExtractor
from kb_ingest.services.extraction.text_extractor import TextExtractor
from kb_ingest.services.extraction.video_extractor import VideoExtractor
from kb_ingest.services.extraction.web_extractor import WebExtractor

__all__ = [
    "AudioExtractor",
    "DocumentExtractor",
    "PDFExtractor",
    "SourceExtractor",
    "TextExtractor",
    "VideoExtractor",
    "WebExtractor",
    "detect_source_kind",
]
