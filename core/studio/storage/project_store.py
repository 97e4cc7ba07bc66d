"""
Project Store - persistence for project and policy documents.

Loading migrates older documents, backs up the original text before it is
overwritten, and synthesizes a default policy when the referenced policy file
is missing. Every save stamps ``updated_at``.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from studio.errors import ProjectNotFoundError, ProjectSchemaError, ProjectStoreError
from studio.schemas.base import now_iso
from studio.schemas.migrations import migrate_project_document
from studio.schemas.policy import STUDIO_POLICY_SCHEMA_V1, PermissionPolicy, create_default_policy
from studio.schemas.project import (
    STUDIO_PROJECT_EXTENSION,
    EngineSettings,
    PermissionsRef,
    ProjectSettings,
    RetentionSettings,
    StudioProject,
)
from studio.storage.paths import (
    project_assets_dir,
    project_blobs_dir,
    project_manifest_path,
    project_policy_path,
    project_runs_dir,
)
from studio.storage.vault import (
    VaultAdapter,
    ensure_dir,
    join_vault_path,
    normalize_vault_path,
    vault_parent,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECTS_DIR = "SystemSculpt/Studio"
STUDIO_MANIFEST_SCHEMA_V1 = "studio.manifest.v1"
MAX_UNIQUE_SUFFIX = 10_000


def normalize_project_path(path: str) -> str:
    normalized = normalize_vault_path(path)
    if not normalized.endswith(STUDIO_PROJECT_EXTENSION):
        normalized = f"{normalized}{STUDIO_PROJECT_EXTENSION}"
    return normalized


def _dump(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=2) + "\n"


class ProjectStore:
    """
    Reads and writes Studio projects through a vault adapter.

    Layout is described in ``studio.storage.paths``.
    """

    def __init__(self, vault: VaultAdapter, projects_dir: str = DEFAULT_PROJECTS_DIR):
        self.vault = vault
        self.projects_dir = normalize_vault_path(projects_dir)

    async def resolve_unique_project_path(self, path: str) -> str:
        """
        Return ``path`` if free, else the first free ``Name (n).systemsculpt``.

        Raises:
            ProjectStoreError: if every suffix up to 9999 is taken
        """
        normalized = normalize_project_path(path)
        if not await self.vault.exists(normalized):
            return normalized

        base = normalized[: -len(STUDIO_PROJECT_EXTENSION)]
        for suffix in range(2, MAX_UNIQUE_SUFFIX):
            candidate = f"{base} ({suffix}){STUDIO_PROJECT_EXTENSION}"
            if not await self.vault.exists(candidate):
                return candidate

        raise ProjectStoreError(f'Unable to allocate unique Studio project path for "{normalized}"')

    async def list_projects(self) -> list[str]:
        return sorted(await self.vault.list_files("", suffix=STUDIO_PROJECT_EXTENSION))

    async def create_project(
        self,
        name: str,
        project_path: str | None = None,
        min_plugin_version: str = "0.0.0",
        max_runs: int = 100,
        max_artifacts_mb: int = 1024,
    ) -> tuple[str, StudioProject]:
        """
        Create a project, its asset directories, default policy and manifest.

        Returns:
            (project_path, project), where project_path may carry a " (n)"
            suffix if the requested path was taken.
        """
        clean_name = name.strip()
        requested = (
            project_path
            if project_path and project_path.strip()
            else join_vault_path(
                self.projects_dir, f"{clean_name or 'Untitled'}{STUDIO_PROJECT_EXTENSION}"
            )
        )
        path = await self.resolve_unique_project_path(requested)
        assets_dir = project_assets_dir(path)
        policy_path = project_policy_path(path)

        await ensure_dir(self.vault, vault_parent(path))
        await ensure_dir(self.vault, assets_dir)
        await ensure_dir(self.vault, vault_parent(policy_path))
        await ensure_dir(self.vault, project_blobs_dir(path))
        await ensure_dir(self.vault, project_runs_dir(path))

        project = StudioProject(
            name=clean_name or "Untitled Studio Project",
            engine=EngineSettings(min_plugin_version=min_plugin_version),
            permissions_ref=PermissionsRef(policy_path=policy_path),
            settings=ProjectSettings(
                retention=RetentionSettings(max_runs=max_runs, max_artifacts_mb=max_artifacts_mb)
            ),
        )

        await self.vault.write(policy_path, create_default_policy().to_json() + "\n")
        await self.vault.write(path, project.to_json() + "\n")
        await self.vault.write(
            project_manifest_path(path),
            _dump(
                {
                    "schema": STUDIO_MANIFEST_SCHEMA_V1,
                    "projectId": project.project_id,
                    "projectPath": path,
                    "assetsDir": assets_dir,
                    "createdAt": now_iso(),
                }
            ),
        )

        logger.info(f"Created Studio project {path}", extra={"event": "project_created"})
        return path, project

    async def load_project(self, project_path: str) -> StudioProject:
        """
        Load a project, migrating it if needed.

        Raises:
            ProjectNotFoundError: if the document does not exist
            ProjectSchemaError: if it is malformed or has an unknown schema
        """
        path = normalize_project_path(project_path)
        if not await self.vault.exists(path):
            raise ProjectNotFoundError(path)

        raw_text = await self.vault.read(path)
        try:
            raw = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise ProjectSchemaError(f"Invalid Studio project JSON in {path}: {e}") from e

        project, did_migrate = migrate_project_document(raw)
        if did_migrate:
            backup_path = await self._write_migration_backup(path, raw_text)
            logger.info(
                f"Migrated Studio project {path} (backup at {backup_path})",
                extra={"event": "project_migrated"},
            )
            await self.save_project(path, project)

        policy_path = project.permissions_ref.policy_path
        if not await self.vault.exists(policy_path):
            logger.warning(f"Policy {policy_path} missing; writing default policy")
            await self.save_policy(policy_path, create_default_policy())

        return project

    async def save_project(self, project_path: str, project: StudioProject) -> None:
        path = normalize_project_path(project_path)
        project.updated_at = now_iso()
        await ensure_dir(self.vault, vault_parent(path))
        await self.vault.write(path, project.to_json() + "\n")

    async def load_policy(self, policy_path: str) -> PermissionPolicy:
        path = normalize_vault_path(policy_path)
        if not await self.vault.exists(path):
            policy = create_default_policy()
            await self.save_policy(path, policy)
            return policy

        raw_text = await self.vault.read(path)
        try:
            raw = json.loads(raw_text)
            if not isinstance(raw, dict) or raw.get("schema") != STUDIO_POLICY_SCHEMA_V1:
                raise ProjectSchemaError(f"Unsupported Studio policy schema in {path}")
            return PermissionPolicy.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ProjectSchemaError(f"Invalid Studio policy {path}: {e}") from e

    async def save_policy(self, policy_path: str, policy: PermissionPolicy) -> None:
        path = normalize_vault_path(policy_path)
        policy.updated_at = now_iso()
        await ensure_dir(self.vault, vault_parent(path))
        await self.vault.write(path, policy.to_json() + "\n")

    async def _write_migration_backup(self, project_path: str, raw_text: str) -> str:
        timestamp = now_iso().replace(":", "-").replace(".", "-")
        backup_path = f"{project_path}.bak.{timestamp}.json"
        await self.vault.write(backup_path, raw_text)
        return backup_path
