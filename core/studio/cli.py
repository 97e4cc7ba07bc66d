"""
Command-line interface for Studio.

Usage:
    studio --vault ~/Notes new "Launch Plan"
    studio --vault ~/Notes run "SystemSculpt/Studio/Launch Plan.systemsculpt"
    studio --vault ~/Notes run <project> --from-node node_abc123
    studio --vault ~/Notes validate <project>
    studio nodes
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from studio.api.litellm_adapter import LiteLLMApiAdapter
from studio.config import StudioConfig
from studio.errors import StudioError
from studio.observability import configure_logging
from studio.schemas.run import RunEvent, RunEventType
from studio.service import StudioService
from studio.storage.vault import LocalVault

logger = logging.getLogger(__name__)


def _service(args: argparse.Namespace, config: StudioConfig) -> StudioService:
    vault_root = Path(args.vault).expanduser().resolve()
    if not vault_root.is_dir():
        raise StudioError(f"Vault directory does not exist: {vault_root}")
    return StudioService(LocalVault(vault_root), LiteLLMApiAdapter(config), config=config)


def _print_event(event: RunEvent) -> None:
    if event.type == RunEventType.NODE_OUTPUT:
        outputs = json.dumps(event.outputs or {}, indent=2, ensure_ascii=False)
        print(f"[{event.node_id}] ({event.output_source})\n{outputs}")
    elif event.type == RunEventType.NODE_FAILED:
        print(f"[{event.node_id}] failed: {event.error}", file=sys.stderr)


async def _cmd_new(args: argparse.Namespace, config: StudioConfig) -> int:
    service = _service(args, config)
    project = await service.create_project(args.name, project_path=args.path)
    print(f"Created {service.current_project_path} ({project.project_id})")
    return 0


async def _cmd_run(args: argparse.Namespace, config: StudioConfig) -> int:
    service = _service(args, config)
    await service.open_project(args.project)
    on_event = None if args.quiet else _print_event
    if args.from_node:
        summary = await service.run_current_project_from_node(args.from_node, on_event=on_event)
    else:
        summary = await service.run_current_project(on_event=on_event)
    print(
        f"Run {summary.run_id} {summary.status}: "
        f"{len(summary.executed_node_ids)} executed, {len(summary.cached_node_ids)} cached"
    )
    return 0


async def _cmd_validate(args: argparse.Namespace, config: StudioConfig) -> int:
    service = _service(args, config)
    compiled = await service.validate_project(args.project)
    print("Execution order:")
    for index, node_id in enumerate(compiled.execution_order, start=1):
        node = compiled.nodes_by_id[node_id]
        print(f"  {index}. {node_id} ({node.definition.kind}@{node.definition.version})")
    return 0


async def _cmd_nodes(args: argparse.Namespace, config: StudioConfig) -> int:
    service = StudioService(LocalVault(Path.cwd()), LiteLLMApiAdapter(config), config=config)
    for definition in service.list_node_definitions():
        inputs = ", ".join(f"{p.id}:{p.type}" for p in definition.input_ports) or "-"
        outputs = ", ".join(f"{p.id}:{p.type}" for p in definition.output_ports) or "-"
        print(
            f"{definition.kind}@{definition.version} [{definition.capability_class}] "
            f"in({inputs}) out({outputs})"
        )
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    new_parser = subparsers.add_parser("new", help="Create a project with the starter graph")
    new_parser.add_argument("name", help="Project name")
    new_parser.add_argument("--path", default=None, help="Vault path for the project file")
    new_parser.set_defaults(func=_cmd_new)

    run_parser = subparsers.add_parser("run", help="Run a project")
    run_parser.add_argument("project", help="Vault path of the project file")
    run_parser.add_argument("--from-node", default=None, help="Run only from this node onwards")
    run_parser.add_argument("--quiet", action="store_true", help="Do not print node outputs")
    run_parser.set_defaults(func=_cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Compile a project without running")
    validate_parser.add_argument("project", help="Vault path of the project file")
    validate_parser.set_defaults(func=_cmd_validate)

    nodes_parser = subparsers.add_parser("nodes", help="List the available node kinds")
    nodes_parser.set_defaults(func=_cmd_nodes)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="studio",
        description="Studio - build and run typed AI workflow graphs",
    )
    parser.add_argument("--vault", default=".", help="Vault root directory (default: cwd)")
    parser.add_argument("--log-level", default=None, help="Log level (default from config)")
    parser.add_argument(
        "--log-format", default=None, choices=["json", "human", "auto"], help="Log format"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    config = StudioConfig.load()
    configure_logging(
        level=args.log_level or config.log_level, format=args.log_format or config.log_format
    )

    try:
        return asyncio.run(args.func(args, config))
    except StudioError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
