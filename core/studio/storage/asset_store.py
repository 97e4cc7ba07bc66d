"""
Content-addressed asset store.

Blobs are stored once under ``<assets dir>/assets/sha256/<xx>/<hash>.<ext>``
where ``xx`` is the first two hex characters of the SHA-256 digest. Writing
the same bytes twice returns the same reference and performs no second write.
"""

import hashlib
import logging
import mimetypes

from studio.schemas.asset import AssetRef
from studio.storage.paths import project_blobs_dir
from studio.storage.vault import VaultAdapter, ensure_dir, join_vault_path

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "application/json": "json",
    "text/plain": "txt",
    "text/markdown": "md",
    "application/pdf": "pdf",
}


def extension_for_mime(mime_type: str) -> str:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime in _EXTENSIONS:
        return _EXTENSIONS[mime]
    guessed = mimetypes.guess_extension(mime) if mime else None
    return guessed.lstrip(".") if guessed else "bin"


def mime_for_path(path: str, fallback: str = "application/octet-stream") -> str:
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    for mime, ext in _EXTENSIONS.items():
        if ext == extension:
            return mime
    guessed, _ = mimetypes.guess_type(path)
    return guessed or fallback


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class AssetStore:
    """Stores and reads immutable blobs for a project through the vault adapter."""

    def __init__(self, vault: VaultAdapter):
        self.vault = vault

    async def store_asset(self, project_path: str, data: bytes, mime_type: str) -> AssetRef:
        """
        Store ``data`` and return its reference.

        Args:
            project_path: Vault path of the owning project
            data: Raw bytes
            mime_type: MIME type; decides the file extension

        Returns:
            AssetRef whose hash and path depend only on (data, mime_type)
        """
        digest = sha256_hex(data)
        directory = join_vault_path(project_blobs_dir(project_path), digest[:2])
        path = join_vault_path(directory, f"{digest}.{extension_for_mime(mime_type)}")

        if not await self.vault.exists(path):
            await ensure_dir(self.vault, directory)
            await self.vault.write_binary(path, data)
            logger.debug("Stored asset %s (%d bytes)", path, len(data))

        return AssetRef(hash=digest, mime_type=mime_type, size_bytes=len(data), path=path)

    async def read_asset(self, ref: AssetRef) -> bytes:
        return await self.vault.read_binary(ref.path)
