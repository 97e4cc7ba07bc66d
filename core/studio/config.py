"""Shared Studio configuration utilities.

Centralises reading of ~/.studio/configuration.json (or the file named by
STUDIO_CONFIG_FILE) so the CLI, the service facade and the API adapter share
one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

STUDIO_CONFIG_FILE = Path.home() / ".studio" / "configuration.json"

DEFAULT_PROJECTS_FOLDER = "SystemSculpt/Studio"
DEFAULT_TEXT_MODEL = "openai/gpt-5-mini"
DEFAULT_IMAGE_MODEL = "openai/gpt-image-1"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"
DEFAULT_API_DOMAINS = ["api.systemsculpt.com", "systemsculpt.com"]
DEFAULT_MAX_RUNS = 100
DEFAULT_MAX_ARTIFACTS_MB = 1024


def get_config_path() -> Path:
    override = os.environ.get("STUDIO_CONFIG_FILE")
    return Path(override) if override else STUDIO_CONFIG_FILE


def get_studio_config() -> dict[str, Any]:
    """Load Studio configuration, returning {} when missing or unreadable."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
#
# Each helper reads the configuration file unless an already loaded
# configuration dict is passed in.
# ---------------------------------------------------------------------------


def _section(config: dict[str, Any] | None, name: str) -> dict[str, Any]:
    if config is None:
        config = get_studio_config()
    value = config.get(name, {})
    return value if isinstance(value, dict) else {}


def get_text_model(config: dict[str, Any] | None = None) -> str:
    return _section(config, "models").get("text", DEFAULT_TEXT_MODEL)


def get_image_model(config: dict[str, Any] | None = None) -> str:
    return _section(config, "models").get("image", DEFAULT_IMAGE_MODEL)


def get_transcription_model(config: dict[str, Any] | None = None) -> str:
    return _section(config, "models").get("transcription", DEFAULT_TRANSCRIPTION_MODEL)


def get_api_key(config: dict[str, Any] | None = None) -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = _section(config, "api").get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base(config: dict[str, Any] | None = None) -> str | None:
    return _section(config, "api").get("api_base")


def get_api_domains(config: dict[str, Any] | None = None) -> list[str]:
    domains = _section(config, "api").get("domains")
    if isinstance(domains, list) and all(isinstance(d, str) for d in domains):
        return list(domains)
    return list(DEFAULT_API_DOMAINS)


def get_projects_folder(config: dict[str, Any] | None = None) -> str:
    if config is None:
        config = get_studio_config()
    return config.get("projects_folder", DEFAULT_PROJECTS_FOLDER)


def get_max_runs(config: dict[str, Any] | None = None) -> int:
    return int(_section(config, "retention").get("max_runs", DEFAULT_MAX_RUNS))


def get_max_artifacts_mb(config: dict[str, Any] | None = None) -> int:
    return int(_section(config, "retention").get("max_artifacts_mb", DEFAULT_MAX_ARTIFACTS_MB))


# ---------------------------------------------------------------------------
# StudioConfig
# ---------------------------------------------------------------------------


@dataclass
class StudioConfig:
    """
    Studio runtime configuration.

    ``StudioConfig()`` holds the built-in defaults; ``StudioConfig.load()``
    reads the configuration file once and applies it.
    """

    projects_folder: str = DEFAULT_PROJECTS_FOLDER
    text_model: str = DEFAULT_TEXT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL
    api_key: str | None = None
    api_base: str | None = None
    api_domains: list[str] = field(default_factory=lambda: list(DEFAULT_API_DOMAINS))
    max_runs: int = DEFAULT_MAX_RUNS
    max_artifacts_mb: int = DEFAULT_MAX_ARTIFACTS_MB
    min_plugin_version: str = "0.0.0"
    log_level: str = "INFO"
    log_format: str = "auto"

    @classmethod
    def load(cls) -> "StudioConfig":
        data = get_studio_config()
        return cls(
            projects_folder=get_projects_folder(data),
            text_model=get_text_model(data),
            image_model=get_image_model(data),
            transcription_model=get_transcription_model(data),
            api_key=get_api_key(data),
            api_base=get_api_base(data),
            api_domains=get_api_domains(data),
            max_runs=get_max_runs(data),
            max_artifacts_mb=get_max_artifacts_mb(data),
            log_level=data.get("log_level", "INFO"),
            log_format=data.get("log_format", "auto"),
        )
