"""Persisted Studio documents: project, policy, assets, runs."""

from studio.schemas.asset import AssetRef
from studio.schemas.migrations import migrate_project_document
from studio.schemas.policy import (
    STUDIO_POLICY_SCHEMA_V1,
    Capability,
    CapabilityGrant,
    GrantScope,
    PermissionPolicy,
    create_default_policy,
)
from studio.schemas.project import (
    STUDIO_PROJECT_EXTENSION,
    STUDIO_PROJECT_SCHEMA_V1,
    StudioEdge,
    StudioGraph,
    StudioNode,
    StudioProject,
    parse_project_document,
)

__all__ = [
    "AssetRef",
    "Capability",
    "CapabilityGrant",
    "GrantScope",
    "PermissionPolicy",
    "STUDIO_POLICY_SCHEMA_V1",
    "STUDIO_PROJECT_EXTENSION",
    "STUDIO_PROJECT_SCHEMA_V1",
    "StudioEdge",
    "StudioGraph",
    "StudioNode",
    "StudioProject",
    "create_default_policy",
    "migrate_project_document",
    "parse_project_document",
]
