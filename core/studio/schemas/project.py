"""
Project document (``studio.project.v1``).

A project holds the graph (node instances, edges, entry nodes), a reference
to its permission policy, run settings and the record of applied migrations.
"""

import uuid
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator, model_validator

from studio.errors import ProjectSchemaError
from studio.schemas.base import StudioDocument, now_iso

STUDIO_PROJECT_EXTENSION = ".systemsculpt"
STUDIO_PROJECT_SCHEMA_V1 = "studio.project.v1"
STUDIO_PROJECT_SCHEMA_VERSION = "1.0.0"

DEFAULT_NODE_VERSION = "1.0.0"
DEFAULT_MAX_RUNS = 100
DEFAULT_MAX_ARTIFACTS_MB = 1024


class NodePosition(StudioDocument):
    x: float = 0
    y: float = 0


class StudioNode(StudioDocument):
    """A node instance placed in a graph."""

    id: str = Field(min_length=1)
    kind: str = Field(min_length=1)
    version: str = DEFAULT_NODE_VERSION
    title: str = ""
    position: NodePosition = Field(default_factory=NodePosition)
    config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _default_title(self) -> "StudioNode":
        if not self.title:
            self.title = self.kind or self.id
        return self


class StudioEdge(StudioDocument):
    id: str = Field(min_length=1)
    from_node_id: str = Field(min_length=1)
    from_port_id: str = Field(min_length=1)
    to_node_id: str = Field(min_length=1)
    to_port_id: str = Field(min_length=1)


class StudioGraph(StudioDocument):
    nodes: list[StudioNode] = Field(default_factory=list)
    edges: list[StudioEdge] = Field(default_factory=list)
    entry_node_ids: list[str] = Field(default_factory=list)

    @field_validator("entry_node_ids")
    @classmethod
    def _dedupe_entry_ids(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    def node(self, node_id: str) -> StudioNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class EngineSettings(StudioDocument):
    api_mode: Literal["systemsculpt_only"] = "systemsculpt_only"
    min_plugin_version: str = "0.0.0"


class PermissionsRef(StudioDocument):
    policy_version: int = 1
    policy_path: str = Field(min_length=1)


class RetentionSettings(StudioDocument):
    max_runs: int = DEFAULT_MAX_RUNS
    max_artifacts_mb: int = DEFAULT_MAX_ARTIFACTS_MB

    @field_validator("max_runs", "max_artifacts_mb")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


class ProjectSettings(StudioDocument):
    run_concurrency: Literal["adaptive", "sequential"] = "adaptive"
    default_fs_scope: Literal["vault"] = "vault"
    retention: RetentionSettings = Field(default_factory=RetentionSettings)


class AppliedMigration(StudioDocument):
    id: str
    at: str = Field(default_factory=now_iso)


class MigrationState(StudioDocument):
    project_schema_version: str = STUDIO_PROJECT_SCHEMA_VERSION
    applied: list[AppliedMigration] = Field(default_factory=list)

    def has(self, migration_id: str) -> bool:
        return any(entry.id == migration_id for entry in self.applied)


class StudioProject(StudioDocument):
    schema_tag: str = Field(default=STUDIO_PROJECT_SCHEMA_V1, alias="schema")
    project_id: str = Field(default_factory=lambda: f"proj_{uuid.uuid4().hex}")
    name: str = Field(min_length=1)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    graph: StudioGraph = Field(default_factory=StudioGraph)
    permissions_ref: PermissionsRef
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    migrations: MigrationState = Field(default_factory=MigrationState)


def parse_project_document(raw: Any) -> StudioProject:
    """
    Parse a v1 project document.

    Raises:
        ProjectSchemaError: if the document is malformed, has a different
            schema tag, or has edges that reference unknown nodes.
    """
    if not isinstance(raw, dict):
        raise ProjectSchemaError("Invalid Studio project: expected a JSON object")
    if raw.get("schema") != STUDIO_PROJECT_SCHEMA_V1:
        raise ProjectSchemaError(f"Unsupported Studio project schema: {raw.get('schema')!r}")

    try:
        project = StudioProject.model_validate(raw)
    except ValidationError as exc:
        raise ProjectSchemaError(f"Invalid Studio project: {exc}") from exc

    node_ids = {node.id for node in project.graph.nodes}
    for edge in project.graph.edges:
        if edge.from_node_id not in node_ids or edge.to_node_id not in node_ids:
            raise ProjectSchemaError(
                f'Invalid Studio project: edge "{edge.id}" references a missing node'
            )
    return project


def project_name_from_path(project_path: str) -> str:
    base = project_path.rsplit("/", 1)[-1]
    if base.endswith(STUDIO_PROJECT_EXTENSION):
        base = base[: -len(STUDIO_PROJECT_EXTENSION)]
    return base or "Untitled Studio Project"
