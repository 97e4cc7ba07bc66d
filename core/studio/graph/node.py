"""
Node definitions and the per-node execution contract.

A ``NodeDefinition`` is registry data: ports, config schema, scheduling and
cache policy, and an async ``execute(context) -> NodeResult``. Nodes never
touch the host directly; everything outside the node goes through
``context.services``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from studio.graph.config_schema import ConfigSchema
from studio.graph.signal import CancellationSignal
from studio.graph.types import CachePolicy, CapabilityClass, PortDefinition
from studio.schemas.asset import AssetRef
from studio.schemas.project import StudioNode

if TYPE_CHECKING:
    import httpx

    from studio.api.adapter import StudioApiAdapter
    from studio.sandbox.cli_runner import CliRequest, CliResult
    from studio.secrets import SecretStore

logger = logging.getLogger(__name__)


@dataclass
class NodeResult:
    """What a node produced: values per output port, plus stored assets."""

    outputs: dict[str, Any] = field(default_factory=dict)
    artifacts: list[AssetRef] = field(default_factory=list)


class NodeServices(Protocol):
    """
    The run-scoped service boundary handed to every node.

    Every path-taking call re-checks the permission policy.
    """

    api: "StudioApiAdapter"
    secret_store: "SecretStore"
    http_transport: "httpx.AsyncBaseTransport | None"

    async def store_asset(self, data: bytes, mime_type: str) -> AssetRef: ...

    async def read_asset(self, ref: AssetRef) -> bytes: ...

    def resolve_absolute_path(self, path: str) -> str: ...

    async def read_vault_text(self, path: str) -> str: ...

    async def write_vault_text(self, path: str, content: str) -> None: ...

    async def read_vault_binary(self, path: str) -> bytes: ...

    async def read_local_file_binary(self, path: str) -> bytes: ...

    async def write_temp_file(self, data: bytes, prefix: str = "", extension: str = "") -> str: ...

    async def delete_local_file(self, path: str) -> None: ...

    async def run_cli(self, request: "CliRequest") -> "CliResult": ...

    def assert_filesystem_path(self, path: str) -> str: ...

    def assert_network_url(self, url: str) -> str: ...


@dataclass
class ExecutionContext:
    """Everything one node execution may see. Created per node per run."""

    run_id: str
    project_path: str
    node: StudioNode
    config: dict[str, Any]
    inputs: dict[str, Any]
    signal: CancellationSignal
    services: NodeServices

    def log(self, message: str) -> None:
        logger.info(message, extra={"event": "node_log", "node_id": self.node.id})


NodeExecutor = Callable[[ExecutionContext], Awaitable[NodeResult]]


@dataclass(frozen=True)
class NodeDefinition:
    """Registry entry for one node kind at one version."""

    kind: str
    version: str
    capability_class: CapabilityClass
    execute: NodeExecutor
    input_ports: tuple[PortDefinition, ...] = ()
    output_ports: tuple[PortDefinition, ...] = ()
    cache_policy: CachePolicy = CachePolicy.BY_INPUTS
    config_defaults: dict[str, Any] = field(default_factory=dict)
    config_schema: ConfigSchema = field(default_factory=ConfigSchema)
    label: str = ""
    description: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.version)

    def input_port(self, port_id: str) -> PortDefinition | None:
        return next((port for port in self.input_ports if port.id == port_id), None)

    def output_port(self, port_id: str) -> PortDefinition | None:
        return next((port for port in self.output_ports if port.id == port_id), None)
