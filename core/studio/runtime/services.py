"""
Run-scoped services handed to nodes.

``RunServices`` is built once per run. It binds the project's permission
policy, asset store, vault, API adapter and a private temp directory, and
checks the policy on every path-taking call.
"""

import asyncio
import logging
import os
import re
import uuid
from pathlib import Path

import httpx

from studio.api.adapter import StudioApiAdapter
from studio.errors import LocalFileTooLargeError
from studio.sandbox.cli_runner import CliRequest, CliResult, SandboxRunner
from studio.sandbox.permissions import PermissionManager
from studio.schemas.asset import AssetRef
from studio.secrets import EnvSecretStore, SecretStore
from studio.storage.asset_store import AssetStore
from studio.storage.vault import VaultAdapter, ensure_dir, vault_parent

logger = logging.getLogger(__name__)

# Largest local file read into memory in one piece (2 GiB).
DEFAULT_MAX_LOCAL_READ_BYTES = 2 * 1024 * 1024 * 1024


def _sanitize_segment(value: str, fallback: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", value or "").strip("-")
    return cleaned[:48] or fallback


class RunServices:
    """Concrete ``NodeServices`` for one run."""

    def __init__(
        self,
        *,
        vault: VaultAdapter,
        asset_store: AssetStore,
        permissions: PermissionManager,
        api: StudioApiAdapter,
        project_path: str,
        temp_dir: Path,
        secret_store: SecretStore | None = None,
        runner: SandboxRunner | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        max_local_read_bytes: int = DEFAULT_MAX_LOCAL_READ_BYTES,
    ):
        self.vault = vault
        self.asset_store = asset_store
        self.permissions = permissions
        self.api = api
        self.project_path = project_path
        self.temp_dir = Path(temp_dir)
        self.secret_store = secret_store or EnvSecretStore()
        self.runner = runner or SandboxRunner(permissions)
        self.http_transport = http_transport
        self.max_local_read_bytes = max_local_read_bytes

    # --- permissions -------------------------------------------------------

    def assert_filesystem_path(self, path: str) -> str:
        return self.permissions.assert_filesystem_path(path)

    def assert_network_url(self, url: str) -> str:
        return self.permissions.assert_network_url(url)

    def resolve_absolute_path(self, path: str) -> str:
        """Absolute filesystem path for an absolute or vault-relative path."""
        checked = self.assert_filesystem_path(path)
        if os.path.isabs(checked):
            return checked
        full = self.vault.full_path(checked)
        if full is None:
            raise ValueError(f"Vault path {checked!r} has no local filesystem location")
        return str(full)

    def _vault_path(self, path: str) -> str:
        checked = self.assert_filesystem_path(path)
        if os.path.isabs(checked):
            raise ValueError(f"Expected a vault-relative path, got {path!r}")
        return checked

    # --- assets ------------------------------------------------------------

    async def store_asset(self, data: bytes, mime_type: str) -> AssetRef:
        return await self.asset_store.store_asset(self.project_path, data, mime_type)

    async def read_asset(self, ref: AssetRef) -> bytes:
        self._vault_path(ref.path)
        return await self.asset_store.read_asset(ref)

    # --- vault and local files ----------------------------------------------

    async def read_vault_text(self, path: str) -> str:
        return await self.vault.read(self._vault_path(path))

    async def write_vault_text(self, path: str, content: str) -> None:
        checked = self._vault_path(path)
        await ensure_dir(self.vault, vault_parent(checked))
        await self.vault.write(checked, content)

    async def read_vault_binary(self, path: str) -> bytes:
        return await self.vault.read_binary(self._vault_path(path))

    async def read_local_file_binary(self, path: str) -> bytes:
        """
        Read an absolute local file.

        Raises:
            ValueError: if ``path`` is not absolute
            CapabilityDeniedError: if no filesystem grant covers it
            LocalFileTooLargeError: if it exceeds the local read limit
        """
        if not os.path.isabs(str(path or "").strip()):
            raise ValueError(f"Expected an absolute local file path, got {path!r}")
        checked = self.assert_filesystem_path(path)
        size = (await asyncio.to_thread(os.stat, checked)).st_size
        if size > self.max_local_read_bytes:
            raise LocalFileTooLargeError(checked, size, self.max_local_read_bytes)
        return await asyncio.to_thread(Path(checked).read_bytes)

    async def write_temp_file(self, data: bytes, prefix: str = "", extension: str = "") -> str:
        name = f"{_sanitize_segment(prefix, 'studio')}-{uuid.uuid4().hex[:12]}"
        ext = _sanitize_segment(extension.lstrip("."), "")
        if ext:
            name = f"{name}.{ext}"
        target = self.temp_dir / name

        def _write() -> None:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return str(target)

    async def delete_local_file(self, path: str) -> None:
        """
        Delete an absolute local file.

        Files inside the run's temp directory need no grant; any other path is
        checked against the filesystem policy first. OS errors are logged, not
        raised.

        Raises:
            ValueError: if ``path`` is not absolute
            CapabilityDeniedError: if the path is outside the temp directory
                and no filesystem grant covers it
        """
        raw = str(path or "").strip()
        if not os.path.isabs(raw):
            raise ValueError(f"Expected an absolute local file path, got {path!r}")
        target = os.path.normpath(raw)
        temp_root = os.path.abspath(self.temp_dir)
        if os.path.commonpath([target, temp_root]) != temp_root:
            target = self.assert_filesystem_path(target)
        try:
            await asyncio.to_thread(Path(target).unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete {target}: {e}")

    # --- processes -----------------------------------------------------------

    async def run_cli(self, request: CliRequest) -> CliResult:
        return await self.runner.run_cli(request)
