"""Vault-backed persistence for projects, policies, assets, runs and caches."""

from studio.storage.asset_store import AssetStore
from studio.storage.node_cache_store import NodeCacheStore
from studio.storage.project_store import ProjectStore
from studio.storage.run_store import RunStore
from studio.storage.vault import LocalVault, VaultAdapter, ensure_dir

__all__ = [
    "AssetStore",
    "LocalVault",
    "NodeCacheStore",
    "ProjectStore",
    "RunStore",
    "VaultAdapter",
    "ensure_dir",
]
