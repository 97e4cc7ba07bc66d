"""
Project document migrations.

``migrate_project_document`` is the single entry point used when loading:
it returns the parsed project and whether anything changed, so the caller can
back up the raw document and re-save as separate steps.
"""

import logging
import uuid
from typing import Any

from studio.errors import ProjectSchemaError
from studio.schemas.base import now_iso
from studio.schemas.project import (
    STUDIO_PROJECT_SCHEMA_V1,
    AppliedMigration,
    NodePosition,
    PermissionsRef,
    StudioEdge,
    StudioGraph,
    StudioNode,
    StudioProject,
    parse_project_document,
)

logger = logging.getLogger(__name__)

LEGACY_MIGRATION_ID = "legacy-auto-migration"
PATH_ONLY_PORTS_MIGRATION_ID = "studio.path-only-ports.v1"

# Port ids renamed when media started flowing between nodes as plain paths.
LEGACY_OUTPUT_PORT_REMAP: dict[str, dict[str, str]] = {
    "studio.image_generation": {"first_image": "images"},
    "studio.media_ingest": {"asset": "path", "mime": "path", "media_kind": "path"},
    "studio.audio_extract": {"audio": "path", "asset": "path", "mime": "path"},
    "studio.prompt_template": {"prompt_text": "prompt", "system_prompt": "prompt"},
}

LEGACY_INPUT_PORT_REMAP: dict[str, dict[str, str]] = {
    "studio.audio_extract": {"asset": "path"},
    "studio.transcription": {"audio": "path", "asset": "path"},
    "studio.text_generation": {"system_prompt": "prompt"},
}


def migrate_project_document(raw: Any) -> tuple[StudioProject, bool]:
    """
    Bring a raw project document up to the current schema.

    Returns:
        (project, did_migrate)

    Raises:
        ProjectSchemaError: for documents that are neither v1 nor legacy.
    """
    if isinstance(raw, dict) and raw.get("schema") == STUDIO_PROJECT_SCHEMA_V1:
        project = parse_project_document(raw)
        changed = migrate_path_only_ports(project)
        return project, changed

    if isinstance(raw, dict) and not raw.get("schema") and (raw.get("nodes") or raw.get("edges")):
        logger.info("Migrating legacy Studio project document", extra={"event": "migration"})
        return migrate_legacy_document(raw), True

    schema = raw.get("schema") if isinstance(raw, dict) else None
    raise ProjectSchemaError(f"Unsupported Studio project schema: {schema!r}")


def migrate_legacy_document(raw: dict[str, Any]) -> StudioProject:
    """Convert a pre-v1 document (top-level nodes/edges) into a v1 project."""
    nodes = []
    for index, item in enumerate(raw.get("nodes") or []):
        if not isinstance(item, dict):
            continue
        node_id = str(item.get("id") or "").strip() or f"node{index}_{uuid.uuid4().hex[:8]}"
        title = str(item.get("title") or "").strip() or str(item.get("text") or "").strip()
        nodes.append(
            StudioNode(
                id=node_id,
                kind="studio.input",
                title=title or f"Node {index + 1}",
                position=NodePosition(x=_as_number(item.get("x")), y=_as_number(item.get("y"))),
            )
        )

    node_ids = {node.id for node in nodes}
    edges = []
    for index, item in enumerate(raw.get("edges") or []):
        if not isinstance(item, dict):
            continue
        source = str(item.get("fromNodeId") or item.get("fromNode") or "").strip()
        target = str(item.get("toNodeId") or item.get("toNode") or "").strip()
        if source not in node_ids or target not in node_ids:
            continue
        edges.append(
            StudioEdge(
                id=str(item.get("id") or "").strip() or f"edge{index}_{uuid.uuid4().hex[:8]}",
                from_node_id=source,
                from_port_id="out",
                to_node_id=target,
                to_port_id="in",
            )
        )

    name = str(raw.get("name") or "").strip() or "Untitled Studio Project"
    project = StudioProject(
        project_id=str(raw.get("projectId") or "").strip() or f"proj_{uuid.uuid4().hex}",
        name=name,
        graph=StudioGraph(nodes=nodes, edges=edges, entry_node_ids=[nodes[0].id] if nodes else []),
        permissions_ref=PermissionsRef(
            policy_path=f"{name}.systemsculpt-assets/policy/grants.json"
        ),
    )
    project.migrations.applied.append(AppliedMigration(id=LEGACY_MIGRATION_ID))
    return project


def _as_number(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


def migrate_path_only_ports(project: StudioProject) -> bool:
    """
    Remap legacy port ids, normalize media ingest config and drop duplicate
    edges. Mutates ``project`` and returns whether anything changed.
    """
    changed = False
    kinds = {node.id: node.kind for node in project.graph.nodes}

    for node in project.graph.nodes:
        if node.kind == "studio.media_ingest" and "vaultPath" in node.config:
            source = str(node.config.get("sourcePath") or node.config.get("vaultPath") or "")
            config = {k: v for k, v in node.config.items() if k not in ("sourcePath", "vaultPath")}
            node.config = {"sourcePath": source.strip(), **config}
            changed = True

    seen: set[tuple[str, str, str, str]] = set()
    edges: list[StudioEdge] = []
    for edge in project.graph.edges:
        from_port = LEGACY_OUTPUT_PORT_REMAP.get(kinds.get(edge.from_node_id, ""), {}).get(
            edge.from_port_id, edge.from_port_id
        )
        to_port = LEGACY_INPUT_PORT_REMAP.get(kinds.get(edge.to_node_id, ""), {}).get(
            edge.to_port_id, edge.to_port_id
        )
        if from_port != edge.from_port_id or to_port != edge.to_port_id:
            edge = edge.model_copy(update={"from_port_id": from_port, "to_port_id": to_port})
            changed = True

        key = (edge.from_node_id, edge.from_port_id, edge.to_node_id, edge.to_port_id)
        if key in seen:
            changed = True
            continue
        seen.add(key)
        edges.append(edge)

    if changed:
        project.graph.edges = edges
        if not project.migrations.has(PATH_ONLY_PORTS_MIGRATION_ID):
            project.migrations.applied.append(
                AppliedMigration(id=PATH_ONLY_PORTS_MIGRATION_ID, at=now_iso())
            )
    return changed
