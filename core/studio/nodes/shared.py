"""Helpers shared by the built-in nodes."""

import json
import os
import re
from typing import Any

from studio.graph.node import ExecutionContext
from studio.storage.asset_store import mime_for_path

_TEMPLATE_VARIABLE = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")


def get_text(value: Any) -> str:
    """Best-effort text form of a port or config value."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ("text", "prompt", "userMessage", "path"):
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value, ensure_ascii=False)


def read_int(
    value: Any, fallback: int, minimum: int | None = None, maximum: int | None = None
) -> int:
    """Parse ``value`` as an int, falling back on junk and clamping to bounds."""
    try:
        parsed = int(float(value.strip() if isinstance(value, str) else value))
    except (TypeError, ValueError, OverflowError):
        parsed = fallback
    if isinstance(value, bool):
        parsed = fallback
    if minimum is not None:
        parsed = max(minimum, parsed)
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


def read_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [get_text(entry) for entry in value]


def render_template(template: str, variables: dict[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names render as empty text."""
    return _TEMPLATE_VARIABLE.sub(lambda match: variables.get(match.group(1), ""), template)


def resolve_template_variables(context: ExecutionContext) -> dict[str, str]:
    """Template variables for a node: one per input port value."""
    return {port_id: get_text(value) for port_id, value in context.inputs.items()}


def is_absolute_path(path: str) -> bool:
    normalized = str(path or "").strip()
    return os.path.isabs(normalized) or normalized.startswith("/") or bool(
        _WINDOWS_DRIVE.match(normalized)
    )


def infer_mime_type(path: str) -> str:
    return mime_for_path(path)
