"""CLI command node: runs one granted executable inside the sandbox."""

import logging
from typing import Any

from studio.errors import NodeExecutionError, NodeTimeoutError, ProcessExitError
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.types import CachePolicy, CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import (
    get_text,
    is_absolute_path,
    read_int,
    read_string_list,
    render_template,
    resolve_template_variables,
)
from studio.sandbox.cli_runner import CliRequest

logger = logging.getLogger(__name__)

CLI_INPUT_ENV_KEY = "STUDIO_CLI_INPUT"
MAX_CLI_OUTPUT_BYTES = 10 * 1024 * 1024
# Characters of process output kept in a failure message.
_FAILURE_OUTPUT_CHARS = 2000


def _read_env(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): get_text(entry) for key, entry in value.items() if str(key).strip()}


async def _execute_cli_command(context: ExecutionContext) -> NodeResult:
    node_id = context.node.id
    command = get_text(context.config.get("command")).strip()
    if not command:
        raise NodeExecutionError(node_id, "requires a command.")

    cwd = get_text(context.config.get("cwd")).strip()
    if not cwd:
        raise NodeExecutionError(node_id, "requires a working directory.")
    if not is_absolute_path(cwd):
        raise NodeExecutionError(
            node_id, f'requires an absolute working directory path. Received "{cwd}".'
        )

    variables = resolve_template_variables(context)
    args = [render_template(arg, variables) for arg in read_string_list(context.config.get("args"))]
    env = {
        key: render_template(value, variables)
        for key, value in _read_env(context.config.get("env")).items()
    }
    env[CLI_INPUT_ENV_KEY] = variables.get("input", "")

    timeout_ms = read_int(context.config.get("timeoutMs"), 120_000, minimum=100)
    context.signal.raise_if_aborted()
    result = await context.services.run_cli(
        CliRequest(
            command=command,
            args=args,
            cwd=cwd,
            env=env,
            timeout_ms=timeout_ms,
            max_output_bytes=read_int(
                context.config.get("maxOutputBytes"),
                1024 * 1024,
                minimum=1024,
                maximum=MAX_CLI_OUTPUT_BYTES,
            ),
        )
    )

    if result.timed_out:
        raise NodeTimeoutError(node_id, f"command timed out after {timeout_ms}ms.")
    if result.exit_code != 0:
        details = result.stderr.strip() or result.stdout.strip() or "no output"
        raise ProcessExitError(node_id, result.exit_code, details[-_FAILURE_OUTPUT_CHARS:])
    if result.truncated:
        context.log("Command output exceeded maxOutputBytes and was truncated")

    return NodeResult(
        outputs={"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code}
    )


CLI_COMMAND_NODE = NodeDefinition(
    kind="studio.cli_command",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_IO,
    cache_policy=CachePolicy.NEVER,
    execute=_execute_cli_command,
    input_ports=(PortDefinition("input", PortType.TEXT),),
    output_ports=(
        PortDefinition("stdout", PortType.TEXT),
        PortDefinition("stderr", PortType.TEXT),
        PortDefinition("exit_code", PortType.NUMBER),
    ),
    config_defaults={
        "command": "",
        "args": [],
        "cwd": "",
        "env": {},
        "timeoutMs": 120_000,
        "maxOutputBytes": 1024 * 1024,
    },
    config_schema=ConfigSchema(
        fields=(
            ConfigField("command", "Command", ConfigFieldType.TEXT, required=True),
            ConfigField(
                "args",
                "Arguments",
                ConfigFieldType.STRING_LIST,
                description="One argument per line. {{input}} injects the input text.",
            ),
            ConfigField("cwd", "Working Directory", ConfigFieldType.DIRECTORY_PATH, required=True),
            ConfigField("env", "Environment", ConfigFieldType.JSON_OBJECT),
            ConfigField(
                "timeoutMs",
                "Timeout (ms)",
                ConfigFieldType.NUMBER,
                required=True,
                min=100,
                integer=True,
            ),
            ConfigField(
                "maxOutputBytes",
                "Max Output Bytes",
                ConfigFieldType.NUMBER,
                required=True,
                min=1024,
                max=MAX_CLI_OUTPUT_BYTES,
                integer=True,
            ),
        ),
    ),
    label="CLI Command",
)
