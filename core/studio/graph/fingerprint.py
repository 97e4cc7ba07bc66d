"""Cache keys for node results."""

import hashlib
import json
from typing import Any

# Bumping a salt invalidates every cached result of that kind.
FINGERPRINT_SALT_BY_KIND = {
    "studio.text_generation": "prompt-bundle-v4",
    "studio.image_generation": "image-prompt-v3",
}

# Display-only config keys that must not invalidate cached results.
_IGNORED_CONFIG_KEYS = {
    "studio.text_generation": ("value", "textDisplayMode"),
    "studio.transcription": ("value", "textDisplayMode"),
}


def stable_json(value: Any) -> str:
    """Canonical JSON: sorted keys, no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def normalize_config_for_fingerprint(kind: str, config: dict[str, Any]) -> dict[str, Any]:
    ignored = _IGNORED_CONFIG_KEYS.get(kind, ())
    return {key: value for key, value in config.items() if key not in ignored}


def node_fingerprint(
    kind: str, version: str, config: dict[str, Any], inputs: dict[str, Any]
) -> str:
    """SHA-256 over (kind, version, config, inputs); equal values give equal keys."""
    payload = stable_json(
        {
            "salt": FINGERPRINT_SALT_BY_KIND.get(kind, ""),
            "kind": kind,
            "version": version,
            "config": normalize_config_for_fingerprint(kind, config),
            "inputs": inputs,
        }
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
