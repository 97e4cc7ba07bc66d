"""
Observability for Studio runs.

- Trace context (run_id, project_id, node_id) propagated via ContextVar
- Structured JSON logging for automation and CI
- Human-readable logging for local use
"""

from studio.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
