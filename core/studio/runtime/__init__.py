"""Runtime for stored Studio projects: run services, locking, run records."""

from studio.runtime.services import RunServices
from studio.runtime.studio_runtime import StudioRuntime, scope_project

__all__ = ["RunServices", "StudioRuntime", "scope_project"]
