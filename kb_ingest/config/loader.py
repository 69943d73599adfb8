"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

    1. Field defaults in :class:`~kb_ingest.config.settings.Settings`
    2. ``config/config.yaml`` -- static defaults checked into the repo
    3. ``.env`` file and environment variables

The YAML file groups settings under section headings purely for
readability; section names are dropped and the leaf keys must match
``Settings`` field names::

    chunking:
      chunk_size: 1500
      chunk_overlap: 200
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from kb_ingest.config.settings import Settings
from kb_ingest.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"


def load_yaml_config(path: str | Path = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """Read *path* and return its flattened ``{field: value}`` mapping.

    A missing file yields an empty mapping; a file that is not a mapping
    raises :class:`ConfigurationError`.
    """
    config_path = Path(path)
    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(message=f"{config_path} must contain a mapping")

    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    return flat


def load_settings(path: str | Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Build :class:`Settings` from YAML defaults overlaid by the environment."""
    yaml_values = load_yaml_config(path)
    env_settings = Settings()

    known = set(Settings.model_fields)
    unknown = sorted(set(yaml_values) - known)
    if unknown:
        logger.warning("config_unknown_keys", keys=unknown, path=str(path))

    # Keys already supplied by the environment / .env keep their values.
    overrides = {
        key: value
        for key, value in yaml_values.items()
        if key in known and key not in env_settings.model_fields_set
    }
    if not overrides:
        return env_settings
    return Settings(**overrides)
