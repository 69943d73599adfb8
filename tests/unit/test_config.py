"""Unit tests for Settings and the layered YAML loader."""

from __future__ import annotations

import pytest

from kb_ingest.config import Settings, load_settings
from kb_ingest.config.loader import load_yaml_config
from kb_ingest.utils.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory with no kb-ingest variables set."""
    monkeypatch.chdir(tmp_path)
    for name in ("CHUNK_SIZE", "CHUNK_OVERLAP", "LOG_LEVEL", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


class TestLoadYamlConfig:
    def test_missing_file_is_empty(self, tmp_path) -> None:
        assert load_yaml_config(tmp_path / "absent.yaml") == {}

    def test_sections_are_flattened(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("chunking:\n  chunk_size: 900\nlog_level: DEBUG\n", encoding="utf-8")

        assert load_yaml_config(path) == {"chunk_size": 900, "log_level": "DEBUG"}

    def test_non_mapping_rejected(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_yaml_config(path)


class TestLoadSettings:
    def test_yaml_overrides_defaults(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("chunking:\n  chunk_size: 900\n  chunk_overlap: 90\n", encoding="utf-8")

        settings = load_settings(path)

        assert settings.chunk_size == 900
        assert settings.chunk_overlap == 90
        assert settings.embedding_batch_size == 100

    def test_environment_wins_over_yaml(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("chunking:\n  chunk_size: 900\n  chunk_overlap: 90\n", encoding="utf-8")
        monkeypatch.setenv("CHUNK_OVERLAP", "150")

        settings = load_settings(path)

        assert settings.chunk_size == 900
        assert settings.chunk_overlap == 150

    def test_unknown_keys_ignored(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("extras:\n  not_a_setting: 1\n", encoding="utf-8")

        settings = load_settings(path)

        assert not hasattr(settings, "not_a_setting")


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.chunk_size == 1500
        assert settings.chunk_overlap == 200
        assert settings.claim_lease_seconds == 600.0

    def test_missing_credentials_reported(self) -> None:
        settings = Settings(openai_api_key="")

        assert settings.missing_required_keys() == ["openai_api_key"]
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            settings.require_service_credentials()

    def test_complete_credentials_pass(self) -> None:
        Settings(openai_api_key="sk-test").require_service_credentials()
