"""
Run records: events, snapshots, summaries and the persistent node cache.

Events are appended one per line to ``runs/<run_id>/events.ndjson``; summaries
are kept newest-first in ``runs/index.json``; the node cache lives in
``cache/node-results.json`` under the project's asset directory.
"""

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field

from studio.schemas.asset import AssetRef
from studio.schemas.base import StudioDocument, now_iso
from studio.schemas.policy import PermissionPolicy
from studio.schemas.project import StudioProject

STUDIO_RUN_SCHEMA_V1 = "studio.run.v1"
STUDIO_NODE_CACHE_SCHEMA_V1 = "studio.node-cache.v1"


class RunEventType(StrEnum):
    RUN_STARTED = "run.started"
    RUN_FAILED = "run.failed"
    RUN_COMPLETED = "run.completed"
    NODE_STARTED = "node.started"
    NODE_CACHE_HIT = "node.cache_hit"
    NODE_OUTPUT = "node.output"
    NODE_FAILED = "node.failed"


class RunStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunEvent(StudioDocument):
    """A single entry in a run's event log."""

    type: RunEventType
    run_id: str
    at: str = Field(default_factory=now_iso)
    node_id: str | None = None
    snapshot_hash: str | None = None
    status: RunStatus | None = None
    error: str | None = None
    output_source: Literal["execution", "cache"] | None = None
    outputs: dict[str, Any] | None = None
    cache_updated_at: str | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RunSnapshot(StudioDocument):
    """Frozen copy of the project and policy a run executed against."""

    schema_tag: str = Field(default=STUDIO_RUN_SCHEMA_V1, alias="schema")
    run_id: str
    project_path: str
    project_id: str
    created_at: str = Field(default_factory=now_iso)
    project: StudioProject
    policy: PermissionPolicy


class RunSummary(StudioDocument):
    run_id: str
    status: RunStatus
    started_at: str
    finished_at: str | None = None
    error: str | None = None
    executed_node_ids: list[str] = Field(default_factory=list)
    cached_node_ids: list[str] = Field(default_factory=list)


class NodeCacheEntry(StudioDocument):
    node_id: str
    node_kind: str
    node_version: str
    input_fingerprint: str
    outputs: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[AssetRef] = Field(default_factory=list)
    updated_at: str = Field(default_factory=now_iso)
    run_id: str


class NodeCacheSnapshot(StudioDocument):
    schema_tag: str = Field(default=STUDIO_NODE_CACHE_SCHEMA_V1, alias="schema")
    project_id: str
    updated_at: str = Field(default_factory=now_iso)
    entries: dict[str, NodeCacheEntry] = Field(default_factory=dict)
