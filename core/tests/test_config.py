"""Tests for configuration file loading."""

import json

from studio import config as config_module
from studio.config import (
    DEFAULT_API_DOMAINS,
    DEFAULT_TEXT_MODEL,
    StudioConfig,
    get_studio_config,
    get_text_model,
)


class TestStudioConfig:
    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STUDIO_CONFIG_FILE", str(tmp_path / "absent.json"))

        config = StudioConfig.load()

        assert config == StudioConfig()
        assert config.projects_folder == "SystemSculpt/Studio"
        assert config.text_model == DEFAULT_TEXT_MODEL
        assert config.api_domains == DEFAULT_API_DOMAINS
        assert config.api_key is None
        assert config.max_runs == 100

    def test_values_from_file(self, tmp_path, monkeypatch):
        path = tmp_path / "configuration.json"
        path.write_text(
            json.dumps(
                {
                    "projects_folder": "Flows",
                    "models": {"text": "openai/gpt-4o"},
                    "api": {"api_key_env_var": "MY_STUDIO_KEY", "domains": ["llm.internal"]},
                    "retention": {"max_runs": 5},
                    "log_level": "DEBUG",
                }
            )
        )
        monkeypatch.setenv("STUDIO_CONFIG_FILE", str(path))
        monkeypatch.setenv("MY_STUDIO_KEY", "sk-test")

        config = StudioConfig.load()

        assert config.projects_folder == "Flows"
        assert config.text_model == "openai/gpt-4o"
        assert config.api_key == "sk-test"
        assert config.api_domains == ["llm.internal"]
        assert config.max_runs == 5
        assert config.log_level == "DEBUG"
        assert get_text_model() == "openai/gpt-4o"

    def test_load_reads_the_file_once(self, monkeypatch):
        reads = []

        def _fake_config():
            reads.append(1)
            return {"models": {"image": "test/image"}, "log_format": "json"}

        monkeypatch.setattr(config_module, "get_studio_config", _fake_config)

        config = StudioConfig.load()

        assert len(reads) == 1
        assert config.image_model == "test/image"
        assert config.log_format == "json"

    def test_default_domains_are_not_shared(self):
        first = StudioConfig()
        first.api_domains.append("hooks.example.org")

        assert StudioConfig().api_domains == DEFAULT_API_DOMAINS

    def test_unreadable_file_is_ignored(self, tmp_path, monkeypatch):
        path = tmp_path / "configuration.json"
        path.write_text("{broken")
        monkeypatch.setenv("STUDIO_CONFIG_FILE", str(path))

        assert get_studio_config() == {}
