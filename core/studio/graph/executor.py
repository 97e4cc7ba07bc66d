"""
Graph Executor - runs a compiled Studio graph.

The executor:
1. Compiles the project graph (compile errors abort before any node runs)
2. Checks that every required input port is connected or has a default
3. Schedules nodes in topological order, sequentially or adaptively
4. Serves ``by_inputs`` nodes from the in-run memo or the persistent cache
5. Records outputs for downstream nodes and artifacts for the caller
6. Aborts the whole run on the first error, naming the failing node
"""

import asyncio
import copy
import inspect
import logging
import time
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from studio.errors import NodeExecutionError, RunCancelledError, StudioError
from studio.graph.compiler import CompiledGraph, CompiledNode, compile_graph
from studio.graph.fingerprint import node_fingerprint
from studio.graph.node import ExecutionContext, NodeResult, NodeServices
from studio.graph.registry import NodeRegistry
from studio.graph.signal import CancellationSignal
from studio.graph.types import CachePolicy, CapabilityClass
from studio.observability import set_trace_context
from studio.schemas.asset import AssetRef
from studio.schemas.base import now_iso
from studio.schemas.project import StudioProject
from studio.schemas.run import NodeCacheEntry, NodeCacheSnapshot, RunEvent, RunEventType, RunStatus

logger = logging.getLogger(__name__)

DEFAULT_CLASS_LIMITS: dict[CapabilityClass, int] = {
    CapabilityClass.API: 2,
    CapabilityClass.LOCAL_IO: 2,
    CapabilityClass.LOCAL_CPU: 1,
}

EventCallback = Callable[[RunEvent], Awaitable[None] | None]


@dataclass
class RunResult:
    """Result of executing a graph."""

    run_id: str
    status: RunStatus
    execution_order: list[str] = field(default_factory=list)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    artifacts: dict[str, list[AssetRef]] = field(default_factory=dict)
    executed_node_ids: list[str] = field(default_factory=list)
    cached_node_ids: list[str] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""


@dataclass
class _RunState:
    run_id: str
    project_path: str
    compiled: CompiledGraph
    services: NodeServices
    signal: CancellationSignal
    node_cache: NodeCacheSnapshot | None
    force_node_ids: set[str]
    on_event: EventCallback | None
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    artifacts: dict[str, list[AssetRef]] = field(default_factory=dict)
    executed: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    memo: dict[str, asyncio.Future] = field(default_factory=dict)


class GraphExecutor:
    """
    Executes Studio project graphs.

    Example:
        executor = GraphExecutor(registry)
        result = await executor.execute(project, services, project_path="Studio/Plan.systemsculpt")
        result.outputs["generate"]["text"]
    """

    def __init__(
        self,
        registry: NodeRegistry,
        class_limits: dict[CapabilityClass, int] | None = None,
    ):
        self.registry = registry
        self.class_limits = {**DEFAULT_CLASS_LIMITS, **(class_limits or {})}

    async def execute(
        self,
        project: StudioProject,
        services: NodeServices,
        *,
        project_path: str = "",
        run_id: str | None = None,
        signal: CancellationSignal | None = None,
        node_cache: NodeCacheSnapshot | None = None,
        force_node_ids: Iterable[str] = (),
        on_event: EventCallback | None = None,
        concurrency: str | None = None,
    ) -> RunResult:
        """
        Run every node of ``project.graph``.

        Args:
            project: Project whose graph is executed
            services: Run-scoped service boundary passed to every node
            project_path: Vault path of the project (used for assets and caches)
            run_id: Identifier for this run; generated if omitted
            signal: Cancellation signal for the run
            node_cache: Persistent cache snapshot, read and updated in place
            force_node_ids: Nodes that must execute even on a cache hit
            on_event: Called with each node-level RunEvent
            concurrency: "sequential" or "adaptive"; defaults to the project setting

        Returns:
            RunResult with outputs and artifacts per node

        Raises:
            GraphValidationError: the graph does not compile
            NodeExecutionError: a node failed (carries ``node_id``)
            RunCancelledError: the signal fired before the run finished
        """
        started_at = now_iso()
        run_id = run_id or f"run_{uuid.uuid4().hex}"
        signal = signal or CancellationSignal()

        compiled = compile_graph(project, self.registry)
        self._check_required_inputs(compiled)

        state = _RunState(
            run_id=run_id,
            project_path=project_path,
            compiled=compiled,
            services=services,
            signal=signal,
            node_cache=node_cache,
            force_node_ids=set(force_node_ids),
            on_event=on_event,
        )
        mode = concurrency or project.settings.run_concurrency
        logger.info(
            f"Executing {len(compiled.execution_order)} nodes ({mode})",
            extra={"event": "run_executing"},
        )

        await self._schedule(state, sequential=(mode == "sequential"))

        return RunResult(
            run_id=run_id,
            status=RunStatus.SUCCESS,
            execution_order=list(compiled.execution_order),
            outputs=state.outputs,
            artifacts=state.artifacts,
            executed_node_ids=state.executed,
            cached_node_ids=state.cached,
            started_at=started_at,
            finished_at=now_iso(),
        )

    # -------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------

    def _check_required_inputs(self, compiled: CompiledGraph) -> None:
        for node_id in compiled.execution_order:
            compiled_node = compiled.nodes_by_id[node_id]
            connected = {edge.to_port_id for edge in compiled_node.inbound_edges}
            for port in compiled_node.definition.input_ports:
                if port.required and port.default is None and port.id not in connected:
                    raise NodeExecutionError(
                        node_id, f'required input "{port.id}" is not connected'
                    )

    async def _schedule(self, state: _RunState, sequential: bool) -> None:
        compiled = state.compiled
        pending = list(compiled.execution_order)
        running: dict[asyncio.Task, CompiledNode] = {}
        in_use: Counter[CapabilityClass] = Counter()
        abort_waiter = asyncio.create_task(state.signal.wait())

        try:
            while pending or running:
                state.signal.raise_if_aborted()

                for node_id in list(pending):
                    compiled_node = compiled.nodes_by_id[node_id]
                    ready = all(dep in state.outputs for dep in compiled_node.dependency_ids)
                    capability = compiled_node.definition.capability_class
                    if sequential:
                        if running or not ready:
                            break
                    elif not ready or in_use[capability] >= self.class_limits.get(capability, 1):
                        continue

                    pending.remove(node_id)
                    in_use[capability] += 1
                    task = asyncio.create_task(
                        self._run_node(state, compiled_node), name=f"studio-node-{node_id}"
                    )
                    running[task] = compiled_node
                    if sequential:
                        break

                if not running:
                    break

                done, _ = await asyncio.wait(
                    [*running, abort_waiter], return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is abort_waiter:
                        continue
                    compiled_node = running.pop(task)
                    in_use[compiled_node.definition.capability_class] -= 1
                    task.result()
        except BaseException as e:
            reason = f"Run aborted: {e}" if isinstance(e, StudioError) else "Run cancelled"
            state.signal.abort(reason)
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise
        finally:
            abort_waiter.cancel()

    # -------------------------------------------------------------------
    # Single node
    # -------------------------------------------------------------------

    async def _run_node(self, state: _RunState, compiled_node: CompiledNode) -> None:
        node = compiled_node.node
        definition = compiled_node.definition
        set_trace_context(node_id=node.id)

        inputs = self._build_inputs(state, compiled_node)
        fingerprint = node_fingerprint(node.kind, node.version, compiled_node.config, inputs)
        cacheable = (
            definition.cache_policy == CachePolicy.BY_INPUTS
            and node.id not in state.force_node_ids
        )

        if cacheable:
            hit = await self._lookup_cache(state, compiled_node, fingerprint)
            if hit is not None:
                await self._record(state, compiled_node, hit, fingerprint, source="cache")
                return

        memo_future: asyncio.Future | None = None
        if cacheable:
            memo_future = asyncio.get_running_loop().create_future()
            state.memo[fingerprint] = memo_future

        context = ExecutionContext(
            run_id=state.run_id,
            project_path=state.project_path,
            node=node,
            config=copy.deepcopy(compiled_node.config),
            inputs=copy.deepcopy(inputs),
            signal=state.signal.child(),
            services=state.services,
        )

        await self._emit(
            state, RunEvent(type=RunEventType.NODE_STARTED, run_id=state.run_id, node_id=node.id)
        )
        started = time.monotonic()
        try:
            context.signal.raise_if_aborted()
            result = await definition.execute(context)
            if not isinstance(result, NodeResult):
                raise TypeError(
                    f"{definition.kind} returned {type(result).__name__}, not NodeResult"
                )
        except asyncio.CancelledError:
            if memo_future is not None:
                memo_future.cancel()
            raise
        except Exception as e:
            error = self._wrap_error(node.id, e)
            if memo_future is not None:
                memo_future.set_exception(error)
                # identical nodes waiting on this one re-raise it; mark it retrieved
                memo_future.exception()
            logger.error(f"Node {node.id} failed: {getattr(error, 'reason', error)}")
            await self._emit(
                state,
                RunEvent(
                    type=RunEventType.NODE_FAILED,
                    run_id=state.run_id,
                    node_id=node.id,
                    error=str(error),
                ),
            )
            if error is e:
                raise
            raise error from e

        if memo_future is not None:
            memo_future.set_result(result)
        logger.info(
            f"Node {node.id} completed",
            extra={
                "event": "node_completed",
                "node_kind": node.kind,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        await self._record(state, compiled_node, result, fingerprint, source="execution")

    def _build_inputs(self, state: _RunState, compiled_node: CompiledNode) -> dict[str, Any]:
        node_id = compiled_node.node.id
        edges_by_port = {edge.to_port_id: edge for edge in compiled_node.inbound_edges}
        inputs: dict[str, Any] = {}
        for port in compiled_node.definition.input_ports:
            value = None
            edge = edges_by_port.get(port.id)
            if edge is not None:
                value = state.outputs.get(edge.from_node_id, {}).get(edge.from_port_id)
            if value is None and port.default is not None:
                value = copy.deepcopy(port.default)
            if value is None:
                if port.required:
                    raise NodeExecutionError(node_id, f'required input "{port.id}" has no value')
                continue
            inputs[port.id] = value
        return inputs

    async def _lookup_cache(
        self, state: _RunState, compiled_node: CompiledNode, fingerprint: str
    ) -> NodeResult | None:
        node = compiled_node.node
        entry = state.node_cache.entries.get(node.id) if state.node_cache else None
        if (
            entry is not None
            and entry.node_kind == node.kind
            and entry.node_version == node.version
            and entry.input_fingerprint == fingerprint
        ):
            await self._emit(
                state,
                RunEvent(
                    type=RunEventType.NODE_CACHE_HIT,
                    run_id=state.run_id,
                    node_id=node.id,
                    cache_updated_at=entry.updated_at,
                ),
            )
            return NodeResult(outputs=copy.deepcopy(entry.outputs), artifacts=list(entry.artifacts))

        in_flight = state.memo.get(fingerprint)
        if in_flight is not None:
            shared = await asyncio.shield(in_flight)
            await self._emit(
                state,
                RunEvent(type=RunEventType.NODE_CACHE_HIT, run_id=state.run_id, node_id=node.id),
            )
            return NodeResult(
                outputs=copy.deepcopy(shared.outputs), artifacts=list(shared.artifacts)
            )
        return None

    async def _record(
        self,
        state: _RunState,
        compiled_node: CompiledNode,
        result: NodeResult,
        fingerprint: str,
        source: str,
    ) -> None:
        node = compiled_node.node
        state.outputs[node.id] = result.outputs
        state.artifacts[node.id] = list(result.artifacts)
        (state.cached if source == "cache" else state.executed).append(node.id)

        if state.node_cache is not None and source == "execution":
            if compiled_node.definition.cache_policy == CachePolicy.BY_INPUTS:
                state.node_cache.entries[node.id] = NodeCacheEntry(
                    node_id=node.id,
                    node_kind=node.kind,
                    node_version=node.version,
                    input_fingerprint=fingerprint,
                    outputs=copy.deepcopy(result.outputs),
                    artifacts=list(result.artifacts),
                    run_id=state.run_id,
                )
            else:
                state.node_cache.entries.pop(node.id, None)

        await self._emit(
            state,
            RunEvent(
                type=RunEventType.NODE_OUTPUT,
                run_id=state.run_id,
                node_id=node.id,
                output_source=source,
                outputs=result.outputs,
            ),
        )

    @staticmethod
    def _wrap_error(node_id: str, error: Exception) -> StudioError:
        if isinstance(error, (NodeExecutionError, RunCancelledError)):
            return error
        return NodeExecutionError(node_id, str(error) or type(error).__name__)

    async def _emit(self, state: _RunState, event: RunEvent) -> None:
        if state.on_event is None:
            return
        try:
            outcome = state.on_event(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Run event handler failed for {event.type}: {e}")
