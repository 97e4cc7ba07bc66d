"""
Studio Runtime - runs a stored project end to end.

The runtime wraps ``GraphExecutor`` with everything a persisted run needs:

- One run at a time per project (asyncio lock per project path)
- Project and policy loading, API credit preflight and entry-node scoping
- ``runs/<run_id>/snapshot.json`` and an append-only ``events.ndjson``
- Loading and saving the persistent node cache
- A private temp directory per run, removed afterwards
- The run index with retention pruning
"""

import asyncio
import inspect
import logging
import shutil
import tempfile
import uuid
from collections.abc import Iterable
from pathlib import Path

import httpx

from studio.api.adapter import StudioApiAdapter
from studio.errors import GraphValidationError, InsufficientCreditsError, RunCancelledError
from studio.graph.executor import EventCallback, GraphExecutor
from studio.graph.registry import NodeRegistry
from studio.graph.signal import CancellationSignal
from studio.graph.types import CapabilityClass
from studio.observability import clear_trace_context, set_trace_context
from studio.runtime.services import RunServices
from studio.sandbox.permissions import PermissionManager
from studio.schemas.base import now_iso
from studio.schemas.project import StudioGraph, StudioProject
from studio.schemas.run import RunEvent, RunEventType, RunSnapshot, RunStatus, RunSummary
from studio.secrets import EnvSecretStore, SecretStore
from studio.storage.asset_store import AssetStore
from studio.storage.node_cache_store import NodeCacheStore
from studio.storage.project_store import ProjectStore, normalize_project_path
from studio.storage.run_store import RunStore
from studio.storage.vault import VaultAdapter

logger = logging.getLogger(__name__)


def scope_project(project: StudioProject, entry_node_ids: Iterable[str]) -> StudioProject:
    """
    Restrict a project's graph to what a partial run needs.

    The scoped graph holds the entry nodes, every node downstream of them, and
    every node upstream of those (so all of their inputs can be produced).
    Node and edge declaration order is preserved.

    Raises:
        GraphValidationError: if an entry node id does not exist
    """
    graph = project.graph
    known = {node.id for node in graph.nodes}
    entries = list(dict.fromkeys(entry_node_ids))
    for node_id in entries:
        if node_id not in known:
            raise GraphValidationError(f'Entry node "{node_id}" does not exist')

    downstream: dict[str, set[str]] = {node_id: set() for node_id in known}
    upstream: dict[str, set[str]] = {node_id: set() for node_id in known}
    for edge in graph.edges:
        if edge.from_node_id in known and edge.to_node_id in known:
            downstream[edge.from_node_id].add(edge.to_node_id)
            upstream[edge.to_node_id].add(edge.from_node_id)

    def _closure(start: Iterable[str], neighbours: dict[str, set[str]]) -> set[str]:
        seen = set(start)
        stack = list(seen)
        while stack:
            for nxt in neighbours[stack.pop()]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen

    included = _closure(_closure(entries, downstream), upstream)
    scoped_graph = StudioGraph(
        nodes=[node for node in graph.nodes if node.id in included],
        edges=[
            edge
            for edge in graph.edges
            if edge.from_node_id in included and edge.to_node_id in included
        ],
        entry_node_ids=entries,
    )
    return project.model_copy(update={"graph": scoped_graph})


class StudioRuntime:
    """
    Executes stored Studio projects and records their runs.

    Example:
        runtime = StudioRuntime(
            vault=LocalVault(vault_root),
            registry=registry,
            api=LiteLLMApiAdapter(),
            project_store=ProjectStore(vault),
        )
        summary = await runtime.run_project("SystemSculpt/Studio/Plan.systemsculpt")
    """

    def __init__(
        self,
        vault: VaultAdapter,
        registry: NodeRegistry,
        api: StudioApiAdapter,
        project_store: ProjectStore | None = None,
        asset_store: AssetStore | None = None,
        run_store: RunStore | None = None,
        node_cache_store: NodeCacheStore | None = None,
        secret_store: SecretStore | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vault = vault
        self.registry = registry
        self.api = api
        self.project_store = project_store or ProjectStore(vault)
        self.asset_store = asset_store or AssetStore(vault)
        self.run_store = run_store or RunStore(vault)
        self.node_cache_store = node_cache_store or NodeCacheStore(vault)
        self.secret_store = secret_store or EnvSecretStore()
        self.http_transport = http_transport
        self.executor = GraphExecutor(registry)
        self._project_locks: dict[str, asyncio.Lock] = {}

    def is_running(self, project_path: str) -> bool:
        lock = self._project_locks.get(normalize_project_path(project_path))
        return lock is not None and lock.locked()

    async def run_project(
        self,
        project_path: str,
        *,
        entry_node_ids: Iterable[str] | None = None,
        force_node_ids: Iterable[str] = (),
        on_event: EventCallback | None = None,
        signal: CancellationSignal | None = None,
    ) -> RunSummary:
        """
        Run a stored project and record the run.

        Args:
            project_path: Vault path of the project document
            entry_node_ids: Run only these nodes plus what they need and feed
            force_node_ids: Nodes that must execute even on a cache hit
            on_event: Called with every RunEvent after it is logged
            signal: Cancellation signal for the run

        Returns:
            RunSummary of a successful run

        Raises:
            The run's error (after a failed or cancelled summary is recorded)
        """
        path = normalize_project_path(project_path)
        lock = self._project_locks.setdefault(path, asyncio.Lock())
        async with lock:
            try:
                return await self._run_locked(
                    path,
                    entry_node_ids=list(entry_node_ids or []),
                    force_node_ids=list(force_node_ids),
                    on_event=on_event,
                    signal=signal or CancellationSignal(),
                )
            finally:
                clear_trace_context()

    async def _run_locked(
        self,
        path: str,
        *,
        entry_node_ids: list[str],
        force_node_ids: list[str],
        on_event: EventCallback | None,
        signal: CancellationSignal,
    ) -> RunSummary:
        project = await self.project_store.load_project(path)
        policy = await self.project_store.load_policy(project.permissions_ref.policy_path)
        scoped = scope_project(project, entry_node_ids) if entry_node_ids else project

        run_id = f"run_{uuid.uuid4().hex}"
        set_trace_context(run_id=run_id, project_id=project.project_id)
        started_at = now_iso()

        snapshot_hash = await self.run_store.create_run(
            path,
            RunSnapshot(
                run_id=run_id,
                project_path=path,
                project_id=project.project_id,
                project=scoped,
                policy=policy,
            ),
        )

        async def emit(event: RunEvent) -> None:
            await self.run_store.append_event(path, event)
            if on_event is None:
                return
            try:
                outcome = on_event(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Run event handler failed for {event.type}: {e}")

        await emit(
            RunEvent(
                type=RunEventType.RUN_STARTED,
                run_id=run_id,
                snapshot_hash=snapshot_hash,
                status=RunStatus.RUNNING,
            )
        )
        logger.info(
            f"Run started for {path} ({len(scoped.graph.nodes)} nodes)",
            extra={"event": "run_started"},
        )

        node_cache = await self.node_cache_store.load(path, project.project_id)
        temp_dir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="studio-run-"))
        services = RunServices(
            vault=self.vault,
            asset_store=self.asset_store,
            permissions=PermissionManager(policy),
            api=self.api,
            project_path=path,
            temp_dir=temp_dir,
            secret_store=self.secret_store,
            http_transport=self.http_transport,
        )

        try:
            await self._check_credits(scoped)
            result = await self.executor.execute(
                scoped,
                services,
                project_path=path,
                run_id=run_id,
                signal=signal,
                node_cache=node_cache,
                force_node_ids=force_node_ids,
                on_event=emit,
            )
        except (Exception, asyncio.CancelledError) as e:
            cancelled = isinstance(e, (RunCancelledError, asyncio.CancelledError))
            summary = RunSummary(
                run_id=run_id,
                status=RunStatus.CANCELLED if cancelled else RunStatus.FAILED,
                started_at=started_at,
                finished_at=now_iso(),
                error=str(e) or "Run cancelled",
            )
            logger.error(f"Run {run_id} {summary.status}: {summary.error}")
            await emit(
                RunEvent(
                    type=RunEventType.RUN_FAILED,
                    run_id=run_id,
                    status=summary.status,
                    error=summary.error,
                )
            )
            await self._finish(path, project, node_cache, summary)
            raise
        finally:
            await asyncio.to_thread(shutil.rmtree, temp_dir, True)

        summary = RunSummary(
            run_id=run_id,
            status=RunStatus.SUCCESS,
            started_at=started_at,
            finished_at=result.finished_at,
            executed_node_ids=result.executed_node_ids,
            cached_node_ids=result.cached_node_ids,
        )
        await emit(
            RunEvent(type=RunEventType.RUN_COMPLETED, run_id=run_id, status=RunStatus.SUCCESS)
        )
        await self._finish(path, project, node_cache, summary)
        logger.info(
            f"Run {run_id} completed: {len(result.executed_node_ids)} executed, "
            f"{len(result.cached_node_ids)} cached",
            extra={"event": "run_completed"},
        )
        return summary

    async def _check_credits(self, project: StudioProject) -> None:
        uses_api = False
        for node in project.graph.nodes:
            definition = self.registry.get(node.kind, node.version)
            if definition is not None and definition.capability_class == CapabilityClass.API:
                uses_api = True
                break
        if not uses_api:
            return

        estimate = await self.api.estimate_run_credits(project)
        if not estimate.ok:
            raise InsufficientCreditsError(estimate.reason)

    async def _finish(self, path, project, node_cache, summary: RunSummary) -> None:
        # the cache only keeps entries for nodes still in the project
        live_node_ids = {node.id for node in project.graph.nodes}
        for node_id in [n for n in node_cache.entries if n not in live_node_ids]:
            del node_cache.entries[node_id]
        await self.node_cache_store.save(path, node_cache)
        await self.run_store.record_summary(path, summary, project.settings.retention.max_runs)
