"""
Studio Service - the facade an application talks to.

Owns the node registry (with the built-in nodes), the stores and the runtime,
and tracks which project is currently open.

Example:
    service = StudioService(LocalVault("/path/to/vault"), LiteLLMApiAdapter())
    project = await service.create_project("Launch Plan")
    summary = await service.run_current_project(on_event=print)
"""

import logging
import uuid
from typing import Any

import httpx

from studio.api.adapter import StudioApiAdapter
from studio.config import StudioConfig
from studio.errors import StudioError
from studio.graph.compiler import CompiledGraph, compile_graph
from studio.graph.executor import EventCallback
from studio.graph.node import NodeDefinition
from studio.graph.registry import NodeRegistry
from studio.graph.signal import CancellationSignal
from studio.nodes import register_builtin_nodes
from studio.runtime.studio_runtime import StudioRuntime
from studio.schemas.asset import AssetRef
from studio.schemas.policy import Capability, CapabilityGrant, GrantScope
from studio.schemas.project import NodePosition, StudioEdge, StudioGraph, StudioNode, StudioProject
from studio.schemas.run import NodeCacheSnapshot, RunSummary
from studio.secrets import SecretStore
from studio.storage.asset_store import AssetStore
from studio.storage.project_store import ProjectStore, normalize_project_path
from studio.storage.vault import VaultAdapter

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "New Studio Project"
STARTER_PROMPT = "Describe a launch-ready plan for this project."
REQUIRED_CLI_PATTERNS = ("ffmpeg", "ffprobe", "*/ffmpeg", "*/ffprobe")


def starter_graph(project: StudioProject, model_id: str) -> StudioProject:
    """Seed an empty project with ``Input -> Text Generation``."""
    if project.graph.nodes:
        return project

    input_id = f"node_{uuid.uuid4().hex[:12]}"
    text_id = f"node_{uuid.uuid4().hex[:12]}"
    graph = StudioGraph(
        nodes=[
            StudioNode(
                id=input_id,
                kind="studio.input",
                title="Input",
                position=NodePosition(x=80, y=120),
                config={"value": STARTER_PROMPT},
            ),
            StudioNode(
                id=text_id,
                kind="studio.text_generation",
                title="Text Generation",
                position=NodePosition(x=420, y=120),
                config={"modelId": model_id},
            ),
        ],
        edges=[
            StudioEdge(
                id=f"edge_{uuid.uuid4().hex[:12]}",
                from_node_id=input_id,
                from_port_id="text",
                to_node_id=text_id,
                to_port_id="prompt",
            )
        ],
        entry_node_ids=[input_id],
    )
    return project.model_copy(update={"graph": graph})


class StudioService:
    def __init__(
        self,
        vault: VaultAdapter,
        api: StudioApiAdapter,
        config: StudioConfig | None = None,
        secret_store: SecretStore | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vault = vault
        self.api = api
        self.config = config or StudioConfig.load()
        self.registry = register_builtin_nodes(NodeRegistry())
        self.project_store = ProjectStore(vault, self.config.projects_folder)
        self.asset_store = AssetStore(vault)
        self.runtime = StudioRuntime(
            vault=vault,
            registry=self.registry,
            api=api,
            project_store=self.project_store,
            asset_store=self.asset_store,
            secret_store=secret_store,
            http_transport=http_transport,
        )
        self.current_project_path: str | None = None

    def _require_open_project(self) -> str:
        if not self.current_project_path:
            raise StudioError("No Studio project is currently open.")
        return self.current_project_path

    # --- projects -------------------------------------------------------------

    async def list_projects(self) -> list[str]:
        return await self.project_store.list_projects()

    async def create_project(
        self, name: str = DEFAULT_PROJECT_NAME, project_path: str | None = None
    ) -> StudioProject:
        """Create a project seeded with the starter graph and open it."""
        path, project = await self.project_store.create_project(
            name.strip() or DEFAULT_PROJECT_NAME,
            project_path=project_path,
            min_plugin_version=self.config.min_plugin_version,
            max_runs=max(1, self.config.max_runs),
            max_artifacts_mb=max(1, self.config.max_artifacts_mb),
        )
        seeded = starter_graph(project, self.config.text_model)
        await self.project_store.save_project(path, seeded)
        await self.ensure_default_policy(seeded)
        self.current_project_path = path
        return seeded

    async def open_project(self, project_path: str) -> StudioProject:
        path = normalize_project_path(project_path)
        project = await self.project_store.load_project(path)
        await self.ensure_default_policy(project)
        self.current_project_path = path
        return project

    async def save_project(self, project_path: str, project: StudioProject) -> None:
        await self.project_store.save_project(project_path, project)

    async def validate_project(self, project_path: str) -> CompiledGraph:
        """
        Compile a stored project without running it.

        Raises:
            GraphValidationError: if the graph does not compile
        """
        project = await self.project_store.load_project(project_path)
        return compile_graph(project, self.registry)

    async def ensure_default_policy(self, project: StudioProject) -> None:
        """
        Add the grants every project needs if they are missing.

        The defaults are filesystem access to ``/``, network access to the
        configured API domains, and the ffmpeg/ffprobe command patterns.
        """
        policy_path = project.permissions_ref.policy_path
        policy = await self.project_store.load_policy(policy_path)
        changed = False

        if not any(
            "/" in grant.scope.allowed_paths for grant in policy.grants_for(Capability.FILESYSTEM)
        ):
            policy.grants.append(
                CapabilityGrant(
                    capability=Capability.FILESYSTEM, scope=GrantScope(allowed_paths=["/"])
                )
            )
            changed = True

        api_domains = list(self.config.api_domains)
        if api_domains and not any(
            api_domains[0] in grant.scope.allowed_domains
            for grant in policy.grants_for(Capability.NETWORK)
        ):
            policy.grants.append(
                CapabilityGrant(
                    capability=Capability.NETWORK, scope=GrantScope(allowed_domains=api_domains)
                )
            )
            changed = True

        cli_grants = policy.grants_for(Capability.CLI)
        if not cli_grants:
            policy.grants.append(
                CapabilityGrant(
                    capability=Capability.CLI,
                    scope=GrantScope(allowed_command_patterns=list(REQUIRED_CLI_PATTERNS)),
                )
            )
            changed = True
        else:
            patterns = cli_grants[0].scope.allowed_command_patterns
            if "*" not in patterns:
                for pattern in REQUIRED_CLI_PATTERNS:
                    if pattern not in patterns:
                        patterns.append(pattern)
                        changed = True

        if changed:
            await self.project_store.save_policy(policy_path, policy)
            logger.info(f"Added default grants to {policy_path}")

    async def add_capability_grant(
        self,
        capability: Capability | str,
        scope: GrantScope | dict[str, Any],
        granted_by_user: bool = True,
    ) -> CapabilityGrant:
        path = self._require_open_project()
        project = await self.project_store.load_project(path)
        policy = await self.project_store.load_policy(project.permissions_ref.policy_path)
        grant = CapabilityGrant(
            capability=Capability(capability),
            scope=scope if isinstance(scope, GrantScope) else GrantScope.model_validate(scope),
            granted_by_user=granted_by_user,
        )
        policy.grants.append(grant)
        await self.project_store.save_policy(project.permissions_ref.policy_path, policy)
        return grant

    # --- runs -----------------------------------------------------------------

    async def run_current_project(
        self,
        on_event: EventCallback | None = None,
        signal: CancellationSignal | None = None,
    ) -> RunSummary:
        path = self._require_open_project()
        return await self.runtime.run_project(path, on_event=on_event, signal=signal)

    async def run_current_project_from_node(
        self,
        node_id: str,
        on_event: EventCallback | None = None,
        signal: CancellationSignal | None = None,
    ) -> RunSummary:
        """Run ``node_id``, everything downstream of it and what they need, forcing it."""
        path = self._require_open_project()
        node_id = str(node_id or "").strip()
        if not node_id:
            raise StudioError("A valid node ID is required to run a scoped Studio execution.")

        project = await self.project_store.load_project(path)
        if project.graph.node(node_id) is None:
            raise StudioError(
                f'Cannot run from node "{node_id}" because it is not part of this project.'
            )

        return await self.runtime.run_project(
            path,
            entry_node_ids=[node_id],
            force_node_ids=[node_id],
            on_event=on_event,
            signal=signal,
        )

    async def recent_runs(self) -> list[RunSummary]:
        if not self.current_project_path:
            return []
        return await self.runtime.run_store.list_runs(self.current_project_path)

    async def node_cache(self, project_path: str | None = None) -> NodeCacheSnapshot | None:
        raw_path = str(project_path or self.current_project_path or "").strip()
        if not raw_path:
            return None
        path = normalize_project_path(raw_path)
        project = await self.project_store.load_project(path)
        return await self.runtime.node_cache_store.load(path, project.project_id)

    async def store_asset(self, project_path: str, data: bytes, mime_type: str) -> AssetRef:
        return await self.asset_store.store_asset(
            normalize_project_path(project_path), data, mime_type
        )

    def list_node_definitions(self) -> list[NodeDefinition]:
        return self.registry.list()
