"""
Dataset node - runs a user-supplied adapter command and caches its stdout.

The adapter (for example ``node scripts/db-query.js``) receives the query
either through ``{{query}}`` placeholders in its arguments or through the
``STUDIO_DATASET_QUERY`` environment variable. Results are cached per node
in ``<assets>/cache/datasets/<node id>.json`` and reused until they are
``refreshHours`` old or any of the query inputs change.
"""

import json
import logging
import re
from datetime import UTC, datetime
from typing import Literal

from pydantic import Field, ValidationError

from studio.errors import NodeExecutionError, NodeTimeoutError, ProcessExitError
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.types import CachePolicy, CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import get_text, is_absolute_path, read_int, read_string_list
from studio.sandbox.cli_runner import CliRequest
from studio.schemas.base import StudioDocument, now_iso
from studio.storage.paths import project_dataset_cache_path

logger = logging.getLogger(__name__)

DATASET_CACHE_SCHEMA = "studio.dataset-cache.v2"
DATASET_QUERY_ENV_KEY = "STUDIO_DATASET_QUERY"
DEFAULT_ADAPTER_COMMAND = "node"
DEFAULT_ADAPTER_ARGS = ("scripts/db-query.js", "{{query}}")
DEFAULT_REFRESH_HOURS = 6
DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024

_QUERY_PLACEHOLDER = re.compile(r"\{\{\s*query\s*\}\}", re.IGNORECASE)
_SECONDS_PER_HOUR = 3600


class DatasetCacheSnapshot(StudioDocument):
    """On-disk record of the last successful adapter run for one node."""

    schema_tag: Literal["studio.dataset-cache.v2"] = Field(
        default=DATASET_CACHE_SCHEMA, alias="schema"
    )
    node_id: str = Field(min_length=1)
    working_directory: str = Field(min_length=1)
    query: str = Field(min_length=1)
    adapter_command: str = Field(min_length=1)
    adapter_args: list[str] = Field(default_factory=list)
    refresh_hours: int = Field(ge=1)
    generated_at: str = Field(min_length=1)
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False

    def age_hours(self, now: datetime) -> float | None:
        try:
            generated = datetime.fromisoformat(self.generated_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        if generated.tzinfo is None:
            generated = generated.replace(tzinfo=UTC)
        return max(0.0, (now - generated).total_seconds() / _SECONDS_PER_HOUR)


def render_adapter_args(templates: list[str], query: str) -> tuple[list[str], bool]:
    """Substitute ``{{query}}``; also report whether any argument used it."""
    injected = False

    def _substitute(_match: re.Match) -> str:
        nonlocal injected
        injected = True
        return query

    return [_QUERY_PLACEHOLDER.sub(_substitute, template) for template in templates], injected


async def _read_cached(context: ExecutionContext, path: str) -> DatasetCacheSnapshot | None:
    try:
        raw = await context.services.read_vault_text(path)
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Ignoring unreadable dataset cache {path}: {e}")
        return None

    try:
        return DatasetCacheSnapshot.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring invalid dataset cache {path}: {e}")
        return None


async def _execute_dataset(context: ExecutionContext) -> NodeResult:
    node_id = context.node.id
    config = context.config

    working_directory = get_text(config.get("workingDirectory")).strip()
    if not working_directory:
        raise NodeExecutionError(node_id, "requires a working directory.")
    if not is_absolute_path(working_directory):
        raise NodeExecutionError(
            node_id,
            f'requires an absolute working directory path. Received "{working_directory}".',
        )
    context.services.assert_filesystem_path(working_directory)

    query = get_text(config.get("customQuery")).strip()
    if not query:
        raise NodeExecutionError(node_id, "requires a custom query.")

    adapter_command = get_text(config.get("adapterCommand")).strip() or DEFAULT_ADAPTER_COMMAND
    templates = [arg for arg in read_string_list(config.get("adapterArgs")) if arg]
    args, query_in_args = render_adapter_args(templates or list(DEFAULT_ADAPTER_ARGS), query)

    refresh_hours = read_int(config.get("refreshHours"), DEFAULT_REFRESH_HOURS, minimum=1)
    timeout_ms = read_int(config.get("timeoutMs"), DEFAULT_TIMEOUT_MS, minimum=1000)
    max_output_bytes = read_int(
        config.get("maxOutputBytes"), DEFAULT_MAX_OUTPUT_BYTES, minimum=1024
    )

    cache_path = project_dataset_cache_path(context.project_path, node_id)
    cached = await _read_cached(context, cache_path)
    if (
        cached is not None
        and cached.node_id == node_id
        and cached.working_directory == working_directory
        and cached.query == query
        and cached.adapter_command == adapter_command
        and cached.adapter_args == args
    ):
        age = cached.age_hours(datetime.now(UTC))
        if age is not None and age <= refresh_hours:
            context.log(f"Dataset cache hit age={age:.3f}h")
            return NodeResult(outputs={"text": cached.stdout})

    context.signal.raise_if_aborted()
    if not query_in_args:
        context.log(
            "Dataset adapter args do not include {{query}}; "
            f"adapter should read query from {DATASET_QUERY_ENV_KEY}."
        )

    result = await context.services.run_cli(
        CliRequest(
            command=adapter_command,
            args=args,
            cwd=working_directory,
            env={DATASET_QUERY_ENV_KEY: query},
            timeout_ms=timeout_ms,
            max_output_bytes=max_output_bytes,
        )
    )
    if result.timed_out:
        raise NodeTimeoutError(node_id, f"timed out after {timeout_ms}ms while running query.")
    if result.exit_code != 0:
        details = result.stderr.strip() or result.stdout.strip() or "no output"
        raise ProcessExitError(node_id, result.exit_code, f"query failed: {details}")

    snapshot = DatasetCacheSnapshot(
        node_id=node_id,
        working_directory=working_directory,
        query=query,
        adapter_command=adapter_command,
        adapter_args=args,
        refresh_hours=refresh_hours,
        generated_at=now_iso(),
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        timed_out=result.timed_out,
    )
    await context.services.write_vault_text(cache_path, snapshot.to_json() + "\n")
    return NodeResult(outputs={"text": result.stdout})


DATASET_NODE = NodeDefinition(
    kind="studio.dataset",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_IO,
    cache_policy=CachePolicy.NEVER,
    execute=_execute_dataset,
    output_ports=(PortDefinition("text", PortType.TEXT),),
    config_defaults={
        "workingDirectory": "",
        "customQuery": "",
        "adapterCommand": DEFAULT_ADAPTER_COMMAND,
        "adapterArgs": list(DEFAULT_ADAPTER_ARGS),
        "refreshHours": DEFAULT_REFRESH_HOURS,
        "timeoutMs": DEFAULT_TIMEOUT_MS,
        "maxOutputBytes": DEFAULT_MAX_OUTPUT_BYTES,
    },
    config_schema=ConfigSchema(
        fields=(
            ConfigField(
                "workingDirectory",
                "Working Directory",
                ConfigFieldType.DIRECTORY_PATH,
                required=True,
                description="Folder where the adapter command runs.",
            ),
            ConfigField(
                "customQuery",
                "Custom Query",
                ConfigFieldType.TEXTAREA,
                required=True,
                placeholder="SELECT now() AS now;",
            ),
            ConfigField(
                "adapterCommand",
                "Adapter Command",
                ConfigFieldType.TEXT,
                required=True,
                placeholder="node",
            ),
            ConfigField(
                "adapterArgs",
                "Adapter Arguments",
                ConfigFieldType.STRING_LIST,
                description=(
                    "One argument per line. {{query}} injects the query; it is also "
                    f"available as {DATASET_QUERY_ENV_KEY}."
                ),
            ),
            ConfigField(
                "refreshHours",
                "Refresh Hours",
                ConfigFieldType.NUMBER,
                required=True,
                min=1,
                max=72,
                integer=True,
            ),
            ConfigField(
                "timeoutMs",
                "Timeout (ms)",
                ConfigFieldType.NUMBER,
                required=True,
                min=1000,
                max=900_000,
                integer=True,
            ),
            ConfigField(
                "maxOutputBytes",
                "Max Output Bytes",
                ConfigFieldType.NUMBER,
                required=True,
                min=1024,
                max=10 * 1024 * 1024,
                integer=True,
            ),
        ),
        allow_unknown_keys=True,
    ),
    label="Dataset",
)
