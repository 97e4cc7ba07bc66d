"""
Permission checks for node-initiated filesystem, network and process access.

Vault-relative paths are always allowed as long as they stay inside the
vault. Anything outside the vault (absolute paths, URLs, commands) must be
covered by a grant in the project's policy.
"""

import fnmatch
import logging
import os
import posixpath
from urllib.parse import urlsplit

from studio.errors import CapabilityDeniedError
from studio.schemas.policy import Capability, PermissionPolicy

logger = logging.getLogger(__name__)


def _is_absolute(path: str) -> bool:
    return os.path.isabs(path) or path.startswith(("/", "\\"))


class PermissionManager:
    """Evaluates a ``PermissionPolicy``. Every assertion either returns or raises."""

    def __init__(self, policy: PermissionPolicy):
        self.policy = policy

    def assert_filesystem_path(self, path: str) -> str:
        """
        Check that ``path`` may be accessed.

        Returns:
            The normalized path (absolute, or vault-relative POSIX)

        Raises:
            CapabilityDeniedError: if the path escapes the vault or no
                filesystem grant covers it
        """
        raw = str(path or "").strip()
        if not raw:
            raise CapabilityDeniedError(Capability.FILESYSTEM, raw, "empty path")

        if not _is_absolute(raw):
            normalized = posixpath.normpath(raw.replace("\\", "/"))
            if normalized == ".." or normalized.startswith("../"):
                raise CapabilityDeniedError(Capability.FILESYSTEM, raw, "path escapes the vault")
            return normalized

        resolved = os.path.abspath(raw)
        for grant in self.policy.grants_for(Capability.FILESYSTEM):
            for allowed in grant.scope.allowed_paths:
                if not allowed.strip():
                    continue
                base = os.path.abspath(os.path.expanduser(allowed.strip()))
                try:
                    if os.path.commonpath([resolved, base]) == base:
                        return resolved
                except ValueError:
                    # Different drives on Windows
                    continue

        logger.info(f"Denied filesystem access to {resolved}", extra={"event": "capability_denied"})
        raise CapabilityDeniedError(Capability.FILESYSTEM, raw)

    def assert_network_url(self, url: str) -> str:
        """Check that ``url`` is http(s) and its host is granted. Returns the URL."""
        raw = str(url or "").strip()
        parsed = urlsplit(raw)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise CapabilityDeniedError(Capability.NETWORK, raw, "only http(s) URLs are supported")

        host = parsed.hostname.lower()
        for grant in self.policy.grants_for(Capability.NETWORK):
            for domain in grant.scope.allowed_domains:
                if _host_matches(host, domain):
                    return raw

        logger.info(f"Denied network access to {host}", extra={"event": "capability_denied"})
        raise CapabilityDeniedError(Capability.NETWORK, raw)

    def assert_cli_command(self, command: str) -> str:
        """Check that ``command`` matches a granted command pattern."""
        name = str(command or "").strip()
        if not name:
            raise CapabilityDeniedError(Capability.CLI, name, "empty command")

        for grant in self.policy.grants_for(Capability.CLI):
            for pattern in grant.scope.allowed_command_patterns:
                pattern = pattern.strip()
                if pattern and fnmatch.fnmatchcase(name, pattern):
                    return name

        logger.info(f"Denied command {name}", extra={"event": "capability_denied"})
        raise CapabilityDeniedError(Capability.CLI, name)


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.strip().lower().rstrip(".")
    if not domain:
        return False
    if domain == "*":
        return True
    if domain.startswith("*."):
        domain = domain[2:]
    return host == domain or host.endswith(f".{domain}")
