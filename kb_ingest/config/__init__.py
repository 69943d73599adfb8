"""Configuration module -- exports Settings and the YAML-aware loader."""

from kb_ingest.config.loader import load_settings
from kb_ingest.config.settings import Settings

__all__ = ["Settings", "load_settings"]
