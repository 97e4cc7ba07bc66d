"""
Studio - a typed DAG workflow compiler and runtime.

Projects are graphs of typed nodes (text input, prompt templates, AI text and
image generation, transcription, media, HTTP, CLI and dataset adapters). The
compiler validates a graph against the node registry; the runtime executes it
with per-node caching, a capability sandbox and a content-addressed asset
store, recording every run in the project's vault folder.
"""

from studio.errors import (
    CapabilityDeniedError,
    CommandNotFoundError,
    CycleError,
    GraphValidationError,
    InsufficientCreditsError,
    LocalFileTooLargeError,
    NodeExecutionError,
    NodeTimeoutError,
    ProcessExitError,
    ProjectNotFoundError,
    ProjectSchemaError,
    ProjectStoreError,
    RunCancelledError,
    StudioError,
    TypeMismatchError,
)
from studio.graph import (
    CancellationSignal,
    GraphExecutor,
    NodeDefinition,
    NodeRegistry,
    compile_graph,
)
from studio.nodes import register_builtin_nodes
from studio.runtime import StudioRuntime
from studio.service import StudioService
from studio.storage.vault import LocalVault

__version__ = "0.1.0"

__all__ = [
    "CancellationSignal",
    "GraphExecutor",
    "LocalVault",
    "NodeDefinition",
    "NodeRegistry",
    "StudioRuntime",
    "StudioService",
    "compile_graph",
    "register_builtin_nodes",
    "StudioError",
    "GraphValidationError",
    "TypeMismatchError",
    "CycleError",
    "CapabilityDeniedError",
    "CommandNotFoundError",
    "LocalFileTooLargeError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "ProcessExitError",
    "InsufficientCreditsError",
    "RunCancelledError",
    "ProjectStoreError",
    "ProjectNotFoundError",
    "ProjectSchemaError",
]
