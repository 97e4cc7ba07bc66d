"""
Declarative node config schemas and validation.

Each node definition describes its config fields. The compiler validates
every node's config (merged with the definition's defaults) before a run.
"""

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from studio.graph.node import NodeDefinition


class ConfigFieldType(StrEnum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON_OBJECT = "json_object"
    STRING_LIST = "string_list"
    SELECT = "select"
    FILE_PATH = "file_path"
    DIRECTORY_PATH = "directory_path"
    MEDIA_PATH = "media_path"


_STRING_TYPES = {
    ConfigFieldType.TEXT,
    ConfigFieldType.TEXTAREA,
    ConfigFieldType.FILE_PATH,
    ConfigFieldType.DIRECTORY_PATH,
    ConfigFieldType.MEDIA_PATH,
}


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    type: ConfigFieldType
    required: bool = False
    description: str = ""
    placeholder: str = ""
    min: float | None = None
    max: float | None = None
    integer: bool = False
    options: tuple[str, ...] = ()
    # (key, accepted values): the field only applies when config[key] is one of them
    visible_when: tuple[str, tuple[Any, ...]] | None = None


@dataclass(frozen=True)
class ConfigSchema:
    fields: tuple[ConfigField, ...] = ()
    allow_unknown_keys: bool = False

    def field(self, key: str) -> ConfigField | None:
        for config_field in self.fields:
            if config_field.key == key:
                return config_field
        return None


@dataclass
class ConfigValidationResult:
    """Result of validating a node config."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str:
        return "; ".join(self.errors)


def merge_node_config_with_defaults(
    definition: "NodeDefinition", config: dict[str, Any] | None
) -> dict[str, Any]:
    """Definition defaults overlaid with the instance's config."""
    return {**definition.config_defaults, **(config or {})}


def get_unknown_node_config_keys(
    definition: "NodeDefinition", config: dict[str, Any] | None
) -> list[str]:
    known = {f.key for f in definition.config_schema.fields} | set(definition.config_defaults)
    return [key for key in (config or {}) if key not in known]


def is_field_visible(config_field: ConfigField, config: dict[str, Any]) -> bool:
    if config_field.visible_when is None:
        return True
    key, accepted = config_field.visible_when
    return config.get(key) in accepted


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _validate_field(config_field: ConfigField, value: Any) -> str | None:
    label = config_field.label or config_field.key
    kind = config_field.type

    if kind in _STRING_TYPES:
        if not isinstance(value, str):
            return f"{label} must be text."
        return None

    if kind == ConfigFieldType.NUMBER:
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or not math.isfinite(value)
        ):
            return f"{label} must be a number."
        if config_field.integer and not float(value).is_integer():
            return f"{label} must be an integer."
        if config_field.min is not None and value < config_field.min:
            return f"{label} must be >= {config_field.min:g}."
        if config_field.max is not None and value > config_field.max:
            return f"{label} must be <= {config_field.max:g}."
        return None

    if kind == ConfigFieldType.BOOLEAN:
        return None if isinstance(value, bool) else f"{label} must be true or false."

    if kind == ConfigFieldType.JSON_OBJECT:
        return None if isinstance(value, dict) else f"{label} must be a JSON object."

    if kind == ConfigFieldType.STRING_LIST:
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            return f"{label} must be a list of strings."
        return None

    if kind == ConfigFieldType.SELECT:
        if value not in config_field.options:
            return f"{label} must be one of: {', '.join(config_field.options)}."
        return None

    return None


def validate_node_config(
    definition: "NodeDefinition", config: dict[str, Any] | None
) -> ConfigValidationResult:
    """
    Validate ``config`` against the definition's schema.

    Args:
        definition: Node definition providing the schema
        config: Config already merged with defaults

    Returns:
        ConfigValidationResult listing every problem found
    """
    config = config or {}
    schema = definition.config_schema
    errors: list[str] = []

    for config_field in schema.fields:
        if not is_field_visible(config_field, config):
            continue
        value = config.get(config_field.key)
        if _is_empty(value):
            if config_field.required:
                errors.append(f"{config_field.label or config_field.key} is required.")
            continue
        error = _validate_field(config_field, value)
        if error:
            errors.append(error)

    if not schema.allow_unknown_keys:
        for key in get_unknown_node_config_keys(definition, config):
            errors.append(f'Unknown config key "{key}".')

    return ConfigValidationResult(is_valid=not errors, errors=errors)
