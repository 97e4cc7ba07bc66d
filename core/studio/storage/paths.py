"""Vault layout of a Studio project and its asset directory.

    Studio/
      Plan.systemsculpt                         # project document
      Plan.systemsculpt-assets/
        project.manifest.json
        policy/grants.json                      # permission policy
        assets/sha256/ab/<hash>.<ext>           # content-addressed blobs
        cache/node-results.json                 # persistent node cache
        cache/datasets/<node_id>.json           # dataset adapter cache
        runs/index.json                         # run summaries, newest first
        runs/<run_id>/snapshot.json
        runs/<run_id>/events.ndjson
"""

import re

from studio.schemas.project import STUDIO_PROJECT_EXTENSION
from studio.storage.vault import join_vault_path, normalize_vault_path

ASSETS_SUFFIX = ".systemsculpt-assets"


def project_assets_dir(project_path: str) -> str:
    normalized = normalize_vault_path(project_path)
    if normalized.endswith(STUDIO_PROJECT_EXTENSION):
        normalized = normalized[: -len(STUDIO_PROJECT_EXTENSION)]
    return f"{normalized}{ASSETS_SUFFIX}"


def project_policy_path(project_path: str) -> str:
    return join_vault_path(project_assets_dir(project_path), "policy", "grants.json")


def project_manifest_path(project_path: str) -> str:
    return join_vault_path(project_assets_dir(project_path), "project.manifest.json")


def project_blobs_dir(project_path: str) -> str:
    return join_vault_path(project_assets_dir(project_path), "assets", "sha256")


def project_cache_dir(project_path: str) -> str:
    return join_vault_path(project_assets_dir(project_path), "cache")


def project_node_cache_path(project_path: str) -> str:
    return join_vault_path(project_cache_dir(project_path), "node-results.json")


def project_dataset_cache_path(project_path: str, node_id: str) -> str:
    safe_id = re.sub(r"[^A-Za-z0-9._-]+", "-", node_id.strip())
    safe_id = re.sub(r"-+", "-", safe_id).strip("-") or "value"
    return join_vault_path(project_cache_dir(project_path), "datasets", f"{safe_id}.json")


def project_runs_dir(project_path: str) -> str:
    return join_vault_path(project_assets_dir(project_path), "runs")


def project_run_dir(project_path: str, run_id: str) -> str:
    return join_vault_path(project_runs_dir(project_path), run_id)


def project_runs_index_path(project_path: str) -> str:
    return join_vault_path(project_runs_dir(project_path), "index.json")
