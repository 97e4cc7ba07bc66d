"""
Error taxonomy for Studio.

Compile-time problems (``GraphValidationError`` and its subclasses) abort a run
before any node executes. Problems raised while a node runs are wrapped in
``NodeExecutionError`` so the failure always names the offending node.
"""


class StudioError(Exception):
    """Base class for every error raised by Studio."""


# ---------------------------------------------------------------------------
# Compile time
# ---------------------------------------------------------------------------


class GraphValidationError(StudioError):
    """The declared graph cannot be compiled (unknown kind, bad config, bad edge)."""


class TypeMismatchError(GraphValidationError):
    """An edge connects ports that do not exist or whose types are incompatible."""

    def __init__(self, edge_id: str, from_type: str, to_type: str, detail: str = ""):
        self.edge_id = edge_id
        self.from_type = from_type
        self.to_type = to_type
        message = f'Edge "{edge_id}" connects incompatible ports: {from_type} -> {to_type}'
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class CycleError(GraphValidationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Graph contains a cycle: {' -> '.join(cycle)}")


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


class CapabilityDeniedError(StudioError):
    """A path, URL or command is not covered by the project's permission policy."""

    def __init__(self, capability: str, target: str, reason: str = ""):
        self.capability = capability
        self.target = target
        message = f"Access denied: {capability} access to {target!r} is not granted"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class CommandNotFoundError(StudioError):
    """The requested executable could not be found on PATH."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f'Command "{command}" was not found. Install it or use an absolute path '
            "to the executable, then grant it in the project's CLI permissions."
        )


class LocalFileTooLargeError(StudioError):
    """A local file exceeds the maximum size that can be read into memory."""

    def __init__(self, path: str, size_bytes: int, limit_bytes: int):
        self.path = path
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"File {path!r} is {size_bytes} bytes, which exceeds the local read limit "
            f"of {limit_bytes} bytes"
        )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class NodeExecutionError(StudioError):
    """A node failed while executing. Always carries the node id."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.reason = message
        super().__init__(f'Node "{node_id}" failed: {message}')


class NodeTimeoutError(NodeExecutionError):
    """A node's bounded operation exceeded its timeout."""


class ProcessExitError(NodeExecutionError):
    """A subprocess finished with a non-zero exit code."""

    def __init__(self, node_id: str, exit_code: int, output: str = ""):
        self.exit_code = exit_code
        message = f"process exited with code {exit_code}"
        if output:
            message = f"{message}: {output}"
        super().__init__(node_id, message)


class InsufficientCreditsError(StudioError):
    """The API credit preflight rejected the run."""

    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(f"Not enough credits to run this project{': ' + reason if reason else ''}")


class RunCancelledError(StudioError):
    """The run's cancellation signal fired before the run completed."""

    def __init__(self, reason: str = "Run cancelled"):
        self.reason = reason
        super().__init__(reason)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class ProjectStoreError(StudioError):
    """Reading or writing project documents failed."""


class ProjectNotFoundError(ProjectStoreError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Studio project not found: {path}")


class ProjectSchemaError(ProjectStoreError):
    """A project or policy document is malformed or has an unsupported schema."""
