"""Common base for persisted Studio documents."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class StudioDocument(BaseModel):
    """
    Base model for JSON documents written to the vault.

    Attributes are snake_case in Python and camelCase on disk. Either form is
    accepted when parsing.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
