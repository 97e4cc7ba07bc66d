"""Graph structures: ports, node definitions, the compiler and the executor."""

from studio.graph.compiler import CompiledGraph, CompiledNode, compile_graph
from studio.graph.config_schema import (
    ConfigField,
    ConfigFieldType,
    ConfigSchema,
    ConfigValidationResult,
    validate_node_config,
)
from studio.graph.executor import GraphExecutor, RunResult
from studio.graph.fingerprint import node_fingerprint
from studio.graph.node import (
    ExecutionContext,
    NodeDefinition,
    NodeExecutor,
    NodeResult,
    NodeServices,
)
from studio.graph.registry import NodeRegistry
from studio.graph.signal import CancellationSignal
from studio.graph.types import (
    CachePolicy,
    CapabilityClass,
    PortDefinition,
    PortType,
    is_port_compatible,
)

__all__ = [
    # Ports
    "PortType",
    "PortDefinition",
    "is_port_compatible",
    "CapabilityClass",
    "CachePolicy",
    # Nodes
    "NodeDefinition",
    "NodeExecutor",
    "NodeResult",
    "NodeServices",
    "ExecutionContext",
    "NodeRegistry",
    # Config
    "ConfigField",
    "ConfigFieldType",
    "ConfigSchema",
    "ConfigValidationResult",
    "validate_node_config",
    # Compiler
    "CompiledGraph",
    "CompiledNode",
    "compile_graph",
    "node_fingerprint",
    # Executor
    "GraphExecutor",
    "RunResult",
    "CancellationSignal",
]
