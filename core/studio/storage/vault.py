"""
Vault adapter: the host's document storage.

Studio addresses everything it persists (projects, policies, assets, runs)
with vault-relative POSIX paths such as ``Studio/Plan.systemsculpt``. The
``VaultAdapter`` protocol is the only way the storage layer touches the host;
``LocalVault`` implements it on a local directory.
"""

import asyncio
import logging
import posixpath
import shutil
from pathlib import Path
from typing import Protocol

from studio.utils.io import atomic_write

logger = logging.getLogger(__name__)


def normalize_vault_path(path: str) -> str:
    """Normalize a vault-relative path: forward slashes, no leading or trailing slash."""
    cleaned = str(path or "").replace("\\", "/").strip()
    if not cleaned:
        return ""
    normalized = posixpath.normpath(cleaned).lstrip("/")
    return "" if normalized == "." else normalized


def join_vault_path(*parts: str) -> str:
    return normalize_vault_path("/".join(part for part in parts if part))


def vault_parent(path: str) -> str:
    parent = posixpath.dirname(normalize_vault_path(path))
    return "" if parent == "." else parent


class VaultAdapter(Protocol):
    """Primitive operations Studio needs from the host's storage."""

    async def exists(self, path: str) -> bool: ...

    async def read(self, path: str) -> str: ...

    async def write(self, path: str, content: str) -> None: ...

    async def append(self, path: str, content: str) -> None: ...

    async def read_binary(self, path: str) -> bytes: ...

    async def write_binary(self, path: str, data: bytes) -> None: ...

    async def mkdir(self, path: str) -> None: ...

    async def list_files(self, path: str = "", suffix: str = "") -> list[str]: ...

    async def remove(self, path: str) -> None: ...

    async def remove_tree(self, path: str) -> None: ...

    def full_path(self, path: str) -> Path | None: ...


class LocalVault:
    """A vault backed by a directory on the local filesystem."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()

    def full_path(self, path: str) -> Path:
        """Absolute path for a vault-relative path. Rejects paths that escape the root."""
        normalized = normalize_vault_path(path)
        if normalized == ".." or normalized.startswith("../"):
            raise ValueError(f"Path escapes the vault: {path}")
        return self.root / normalized if normalized else self.root

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.full_path(path).exists)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self.full_path(path).read_text, encoding="utf-8")

    async def write(self, path: str, content: str) -> None:
        target = self.full_path(path)

        def _write() -> None:
            with atomic_write(target) as f:
                f.write(content)

        await asyncio.to_thread(_write)

    async def append(self, path: str, content: str) -> None:
        target = self.full_path(path)

        def _append() -> None:
            with open(target, "a", encoding="utf-8") as f:
                f.write(content)

        await asyncio.to_thread(_append)

    async def read_binary(self, path: str) -> bytes:
        return await asyncio.to_thread(self.full_path(path).read_bytes)

    async def write_binary(self, path: str, data: bytes) -> None:
        target = self.full_path(path)

        def _write() -> None:
            with atomic_write(target, mode="wb") as f:
                f.write(data)

        await asyncio.to_thread(_write)

    async def mkdir(self, path: str) -> None:
        # Not recursive; ensure_dir walks the segments.
        await asyncio.to_thread(self.full_path(path).mkdir)

    async def list_files(self, path: str = "", suffix: str = "") -> list[str]:
        base = self.full_path(path)

        def _list() -> list[str]:
            if not base.is_dir():
                return []
            return sorted(
                file.relative_to(self.root).as_posix()
                for file in base.rglob(f"*{suffix}")
                if file.is_file()
            )

        return await asyncio.to_thread(_list)

    async def remove(self, path: str) -> None:
        await asyncio.to_thread(self.full_path(path).unlink, missing_ok=True)

    async def remove_tree(self, path: str) -> None:
        target = self.full_path(path)
        if target == self.root:
            raise ValueError("Refusing to remove the vault root")
        await asyncio.to_thread(shutil.rmtree, target, ignore_errors=True)


async def ensure_dir(vault: VaultAdapter, path: str) -> None:
    """
    Create ``path`` and any missing parents, one segment at a time.

    Idempotent and tolerant of another writer creating the same directory
    concurrently.
    """
    current = ""
    for segment in normalize_vault_path(path).split("/"):
        if not segment:
            continue
        current = f"{current}/{segment}" if current else segment
        if await vault.exists(current):
            continue
        try:
            await vault.mkdir(current)
        except FileExistsError:
            logger.debug("Directory created concurrently: %s", current)
