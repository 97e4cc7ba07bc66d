"""Capability sandbox: permission checks and subprocess execution."""

from studio.sandbox.cli_runner import CliRequest, CliResult, SandboxRunner
from studio.sandbox.permissions import PermissionManager

__all__ = ["CliRequest", "CliResult", "PermissionManager", "SandboxRunner"]
