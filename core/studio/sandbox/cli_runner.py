"""
Sandboxed subprocess execution.

Commands run without a shell, in an absolute working directory, after both
the command and the directory pass the permission policy. Output is captured
up to ``max_output_bytes`` per stream; the rest is drained and discarded so
the child never blocks on a full pipe.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field

from studio.errors import CapabilityDeniedError, CommandNotFoundError
from studio.sandbox.permissions import PermissionManager
from studio.schemas.policy import Capability

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
_READ_CHUNK = 64 * 1024
_DRAIN_GRACE_SECONDS = 5.0


@dataclass
class CliRequest:
    command: str
    args: list[str] = field(default_factory=list)
    cwd: str = ""
    env: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES


@dataclass
class CliResult:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False
    truncated: bool = False


async def _drain(stream: asyncio.StreamReader | None, limit: int) -> tuple[bytes, bool]:
    if stream is None:
        return b"", False
    kept = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
        if len(chunk) > room:
            truncated = True
    return bytes(kept), truncated


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


class SandboxRunner:
    """Runs CLI requests under a ``PermissionManager``."""

    def __init__(self, permissions: PermissionManager):
        self.permissions = permissions

    async def run_cli(self, request: CliRequest) -> CliResult:
        """
        Execute ``request`` and capture its output.

        Returns:
            CliResult; ``timed_out`` is True if the process was killed for
            exceeding ``timeout_ms``

        Raises:
            CapabilityDeniedError: command or cwd not granted, or cwd not absolute
            CommandNotFoundError: the executable does not exist
            FileNotFoundError: the working directory does not exist
        """
        command = self.permissions.assert_cli_command(request.command)
        if not request.cwd or not os.path.isabs(request.cwd):
            raise CapabilityDeniedError(
                Capability.FILESYSTEM, request.cwd, "working directory must be an absolute path"
            )
        cwd = self.permissions.assert_filesystem_path(request.cwd)
        if not os.path.isdir(cwd):
            raise FileNotFoundError(f"Working directory does not exist: {cwd}")

        limit = max(1, int(request.max_output_bytes))
        timeout = max(0.001, request.timeout_ms / 1000)
        env = {**os.environ, **{k: str(v) for k, v in request.env.items()}}

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *[str(arg) for arg in request.args],
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandNotFoundError(command) from e

        started = time.monotonic()
        drains = asyncio.gather(_drain(process.stdout, limit), _drain(process.stderr, limit))
        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            timed_out = True
            logger.warning(
                f"Command {command} timed out after {request.timeout_ms}ms",
                extra={"event": "cli_timeout"},
            )
            _kill(process)
            await process.wait()
        except asyncio.CancelledError:
            _kill(process)
            drains.cancel()
            raise

        try:
            (stdout, out_truncated), (stderr, err_truncated) = await asyncio.wait_for(
                drains, timeout=_DRAIN_GRACE_SECONDS
            )
        except TimeoutError:
            # A grandchild kept the pipes open after the process exited.
            drains.cancel()
            stdout, stderr, out_truncated, err_truncated = b"", b"", True, True

        logger.debug(
            f"Command {command} exited with {process.returncode}",
            extra={"event": "cli_exit", "latency_ms": int((time.monotonic() - started) * 1000)},
        )
        return CliResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            timed_out=timed_out,
            truncated=out_truncated or err_truncated,
        )
