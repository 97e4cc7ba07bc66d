"""
Secret lookup for nodes that authenticate against external services.

Nodes reference secrets by id (``keychain_ref`` auth in the HTTP node). The
id is mapped to an environment variable ``STUDIO_SECRET_<ID>`` (upper-cased,
non-alphanumerics replaced by ``_``) and read from the process environment
first, then from a ``.env`` file.

Usage:
    store = EnvSecretStore()
    token = await store.get_secret("github-token")   # STUDIO_SECRET_GITHUB_TOKEN

    # Testing
    store = EnvSecretStore.for_testing({"github-token": "test-token"})
"""

import os
import re
from pathlib import Path
from typing import Protocol

from dotenv import dotenv_values

SECRET_ENV_PREFIX = "STUDIO_SECRET_"


class SecretStore(Protocol):
    def is_available(self) -> bool: ...

    async def get_secret(self, secret_id: str) -> str | None: ...


def secret_env_var(secret_id: str) -> str:
    return SECRET_ENV_PREFIX + re.sub(r"[^A-Za-z0-9]+", "_", secret_id.strip()).strip("_").upper()


class EnvSecretStore:
    """Secret store backed by environment variables and an optional .env file."""

    def __init__(self, dotenv_path: Path | None = None, _overrides: dict[str, str] | None = None):
        self._dotenv_path = dotenv_path
        self._overrides = _overrides or {}

    @classmethod
    def for_testing(
        cls, overrides: dict[str, str], dotenv_path: Path | None = None
    ) -> "EnvSecretStore":
        """Create a store that resolves ``overrides`` before anything else."""
        return cls(dotenv_path=dotenv_path, _overrides=overrides)

    def is_available(self) -> bool:
        return True

    async def get_secret(self, secret_id: str) -> str | None:
        """
        Resolve a secret id.

        Priority order:
        1. Test overrides
        2. os.environ
        3. .env file (read fresh each call)
        """
        if secret_id in self._overrides:
            return self._overrides[secret_id]

        env_var = secret_env_var(secret_id)
        value = os.environ.get(env_var)
        if value:
            return value

        dotenv_path = self._dotenv_path or Path.cwd() / ".env"
        if not dotenv_path.exists():
            return None
        return dotenv_values(dotenv_path).get(env_var)
