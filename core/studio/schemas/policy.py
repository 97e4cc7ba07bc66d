"""
Permission policy document (``studio.policy.v1``).

A policy is a list of capability grants. Each grant allows one capability
(filesystem, network or cli) within a scope of path prefixes, domains or
command patterns.
"""

import uuid
from enum import StrEnum

from pydantic import Field

from studio.schemas.base import StudioDocument, now_iso

STUDIO_POLICY_SCHEMA_V1 = "studio.policy.v1"


class Capability(StrEnum):
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    CLI = "cli"


class GrantScope(StudioDocument):
    allowed_paths: list[str] = Field(default_factory=list)
    allowed_domains: list[str] = Field(default_factory=list)
    allowed_command_patterns: list[str] = Field(default_factory=list)


class CapabilityGrant(StudioDocument):
    id: str = Field(default_factory=lambda: f"grant_{uuid.uuid4().hex[:12]}")
    capability: Capability
    scope: GrantScope = Field(default_factory=GrantScope)
    granted_at: str = Field(default_factory=now_iso)
    granted_by_user: bool = True


class PermissionPolicy(StudioDocument):
    schema_tag: str = Field(default=STUDIO_POLICY_SCHEMA_V1, alias="schema")
    version: int = 1
    updated_at: str = Field(default_factory=now_iso)
    grants: list[CapabilityGrant] = Field(default_factory=list)

    def grants_for(self, capability: Capability) -> list[CapabilityGrant]:
        return [grant for grant in self.grants if grant.capability == capability]


def create_default_policy() -> PermissionPolicy:
    """An empty policy: nothing outside the vault is granted."""
    return PermissionPolicy()
