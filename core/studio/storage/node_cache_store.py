"""Persistent per-node result cache, one JSON document per project."""

import json
import logging

from pydantic import ValidationError

from studio.schemas.base import now_iso
from studio.schemas.run import STUDIO_NODE_CACHE_SCHEMA_V1, NodeCacheEntry, NodeCacheSnapshot
from studio.storage.paths import project_node_cache_path
from studio.storage.vault import VaultAdapter, ensure_dir, vault_parent

logger = logging.getLogger(__name__)


class NodeCacheStore:
    """
    Loads and saves ``cache/node-results.json``.

    A missing, unreadable or foreign (different project id) cache file loads
    as an empty snapshot; invalid entries are dropped individually.
    """

    def __init__(self, vault: VaultAdapter):
        self.vault = vault

    async def load(self, project_path: str, project_id: str) -> NodeCacheSnapshot:
        path = project_node_cache_path(project_path)
        empty = NodeCacheSnapshot(project_id=project_id)
        if not await self.vault.exists(path):
            return empty

        try:
            raw = json.loads(await self.vault.read(path))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable node cache {path}: {e}")
            return empty

        if (
            not isinstance(raw, dict)
            or raw.get("schema") != STUDIO_NODE_CACHE_SCHEMA_V1
            or raw.get("projectId") != project_id
        ):
            return empty

        entries: dict[str, NodeCacheEntry] = {}
        raw_entries = raw.get("entries")
        for node_id, raw_entry in (raw_entries if isinstance(raw_entries, dict) else {}).items():
            try:
                entries[node_id] = NodeCacheEntry.model_validate(raw_entry)
            except ValidationError:
                logger.debug(f"Dropping invalid node cache entry {node_id}")

        return NodeCacheSnapshot(
            project_id=project_id,
            updated_at=raw.get("updatedAt") or now_iso(),
            entries=entries,
        )

    async def save(self, project_path: str, snapshot: NodeCacheSnapshot) -> None:
        path = project_node_cache_path(project_path)
        snapshot.updated_at = now_iso()
        await ensure_dir(self.vault, vault_parent(path))
        await self.vault.write(path, snapshot.to_json() + "\n")
