"""Asset reference: a handle to content-addressed bytes in the asset store."""

from pydantic import ConfigDict, Field

from studio.schemas.base import StudioDocument


class AssetRef(StudioDocument):
    """Immutable pointer to stored bytes; ``hash`` is the SHA-256 hex digest."""

    model_config = ConfigDict(frozen=True)

    hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    mime_type: str
    size_bytes: int = Field(ge=0)
    path: str
