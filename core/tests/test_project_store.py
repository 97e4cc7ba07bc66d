"""Tests for ProjectStore persistence and project migrations."""

import json

import pytest

from studio.errors import ProjectNotFoundError, ProjectSchemaError
from studio.schemas.migrations import (
    LEGACY_MIGRATION_ID,
    PATH_ONLY_PORTS_MIGRATION_ID,
    migrate_project_document,
)
from studio.schemas.policy import Capability, CapabilityGrant, GrantScope
from studio.storage.project_store import ProjectStore, normalize_project_path


def _v1_document(edges: list[dict], nodes: list[dict]) -> dict:
    return {
        "schema": "studio.project.v1",
        "projectId": "proj_test",
        "name": "Legacy Ports",
        "createdAt": "2025-01-01T00:00:00Z",
        "updatedAt": "2025-01-01T00:00:00Z",
        "engine": {"apiMode": "systemsculpt_only", "minPluginVersion": "0.0.0"},
        "graph": {"nodes": nodes, "edges": edges, "entryNodeIds": []},
        "permissionsRef": {"policyVersion": 1, "policyPath": "Legacy.systemsculpt-assets/p.json"},
        "settings": {
            "runConcurrency": "adaptive",
            "defaultFsScope": "vault",
            "retention": {"maxRuns": 100, "maxArtifactsMb": 1024},
        },
        "migrations": {"projectSchemaVersion": "1.0.0", "applied": []},
    }


class TestProjectStore:
    @pytest.mark.asyncio
    async def test_create_project_writes_layout(self, vault, vault_root):
        store = ProjectStore(vault, "Studio")

        path, project = await store.create_project("Launch Plan")

        assert path == "Studio/Launch Plan.systemsculpt"
        assert project.name == "Launch Plan"
        assert project.permissions_ref.policy_path == (
            "Studio/Launch Plan.systemsculpt-assets/policy/grants.json"
        )
        document = json.loads((vault_root / path).read_text())
        assert document["schema"] == "studio.project.v1"
        assert document["permissionsRef"]["policyPath"] == project.permissions_ref.policy_path
        assets = vault_root / "Studio/Launch Plan.systemsculpt-assets"
        assert (assets / "project.manifest.json").exists()
        assert (assets / "runs").is_dir()

    @pytest.mark.asyncio
    async def test_create_project_picks_unique_path(self, vault):
        store = ProjectStore(vault, "Studio")

        first, _ = await store.create_project("Plan")
        second, _ = await store.create_project("Plan")

        assert first == "Studio/Plan.systemsculpt"
        assert second == "Studio/Plan (2).systemsculpt"
        assert await store.list_projects() == sorted([first, second])

    @pytest.mark.asyncio
    async def test_save_and_load_round_trip(self, vault):
        store = ProjectStore(vault, "Studio")
        path, project = await store.create_project("Plan")
        project.settings.run_concurrency = "sequential"

        await store.save_project(path, project)
        loaded = await store.load_project(path)

        assert loaded.project_id == project.project_id
        assert loaded.settings.run_concurrency == "sequential"

    @pytest.mark.asyncio
    async def test_load_missing_project(self, vault):
        with pytest.raises(ProjectNotFoundError):
            await ProjectStore(vault).load_project("Nope.systemsculpt")

    @pytest.mark.asyncio
    async def test_load_invalid_json(self, vault, vault_root):
        (vault_root / "Broken.systemsculpt").write_text("{not json")

        with pytest.raises(ProjectSchemaError, match="Invalid Studio project JSON"):
            await ProjectStore(vault).load_project("Broken.systemsculpt")

    @pytest.mark.asyncio
    async def test_unknown_schema_rejected(self, vault, vault_root):
        (vault_root / "Future.systemsculpt").write_text(json.dumps({"schema": "studio.project.v9"}))

        with pytest.raises(ProjectSchemaError, match="Unsupported"):
            await ProjectStore(vault).load_project("Future.systemsculpt")

    @pytest.mark.asyncio
    async def test_missing_policy_is_recreated(self, vault, vault_root):
        store = ProjectStore(vault, "Studio")
        path, project = await store.create_project("Plan")
        (vault_root / project.permissions_ref.policy_path).unlink()

        await store.load_project(path)
        policy = await store.load_policy(project.permissions_ref.policy_path)

        assert policy.grants == []
        assert (vault_root / project.permissions_ref.policy_path).exists()

    @pytest.mark.asyncio
    async def test_policy_round_trip(self, vault):
        store = ProjectStore(vault, "Studio")
        _, project = await store.create_project("Plan")
        policy = await store.load_policy(project.permissions_ref.policy_path)
        policy.grants.append(
            CapabilityGrant(
                capability=Capability.NETWORK, scope=GrantScope(allowed_domains=["example.com"])
            )
        )

        await store.save_policy(project.permissions_ref.policy_path, policy)
        loaded = await store.load_policy(project.permissions_ref.policy_path)

        assert loaded.grants[0].scope.allowed_domains == ["example.com"]

    def test_normalize_project_path(self):
        assert normalize_project_path("Studio//Plan") == "Studio/Plan.systemsculpt"
        assert normalize_project_path("Plan.systemsculpt") == "Plan.systemsculpt"


class TestMigrations:
    def test_current_document_is_untouched(self):
        project, did_migrate = migrate_project_document(_v1_document([], []))

        assert not did_migrate
        assert project.project_id == "proj_test"

    def test_legacy_ports_are_remapped_and_duplicates_dropped(self):
        nodes = [
            {"id": "media", "kind": "studio.media_ingest", "config": {"vaultPath": " a.mp4 "}},
            {"id": "audio", "kind": "studio.audio_extract"},
        ]
        edges = [
            {
                "id": "e1",
                "fromNodeId": "media",
                "fromPortId": "asset",
                "toNodeId": "audio",
                "toPortId": "asset",
            },
            {
                "id": "e2",
                "fromNodeId": "media",
                "fromPortId": "path",
                "toNodeId": "audio",
                "toPortId": "path",
            },
        ]

        project, did_migrate = migrate_project_document(_v1_document(edges, nodes))

        assert did_migrate
        assert [(e.from_port_id, e.to_port_id) for e in project.graph.edges] == [("path", "path")]
        assert project.graph.node("media").config["sourcePath"] == "a.mp4"
        assert project.migrations.has(PATH_ONLY_PORTS_MIGRATION_ID)

    def test_legacy_document_is_upgraded(self):
        raw = {"name": "Old", "nodes": [{"id": "n1", "text": "Hello"}], "edges": []}

        project, did_migrate = migrate_project_document(raw)

        assert did_migrate
        assert project.graph.nodes[0].title == "Hello"
        assert project.graph.entry_node_ids == ["n1"]
        assert project.migrations.has(LEGACY_MIGRATION_ID)

    @pytest.mark.asyncio
    async def test_migration_writes_backup_and_resaves(self, vault, vault_root):
        raw = {"name": "Old", "nodes": [{"id": "n1"}], "edges": []}
        (vault_root / "Old.systemsculpt").write_text(json.dumps(raw))

        project = await ProjectStore(vault).load_project("Old.systemsculpt")

        backups = list(vault_root.glob("Old.systemsculpt.bak.*.json"))
        assert len(backups) == 1
        assert json.loads(backups[0].read_text()) == raw
        saved = json.loads((vault_root / "Old.systemsculpt").read_text())
        assert saved["schema"] == "studio.project.v1"
        assert saved["projectId"] == project.project_id
