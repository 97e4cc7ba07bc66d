"""
Tests for GraphExecutor: caching, error wrapping, scheduling and cancellation.
Nodes here are small in-test definitions so each behaviour is isolated.
"""

import asyncio

import pytest
from conftest import edge, make_project, node

from studio.errors import GraphValidationError, NodeExecutionError, RunCancelledError
from studio.graph.executor import GraphExecutor
from studio.graph.node import NodeDefinition, NodeResult
from studio.graph.signal import CancellationSignal
from studio.graph.types import CachePolicy, CapabilityClass, PortDefinition, PortType
from studio.schemas.run import NodeCacheSnapshot, RunEventType


class RecordingNode:
    """Counts executions and tracks how many nodes run at once."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def run(self, context) -> NodeResult:
        self.calls.append(context.node.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        text = str(context.inputs.get("text", context.config.get("value", "")))
        return NodeResult(outputs={"text": text.upper()})


def _definition(
    kind: str,
    execute,
    capability: CapabilityClass = CapabilityClass.LOCAL_CPU,
    cache_policy: CachePolicy = CachePolicy.BY_INPUTS,
    required_input: bool = False,
) -> NodeDefinition:
    return NodeDefinition(
        kind=kind,
        version="1.0.0",
        capability_class=capability,
        cache_policy=cache_policy,
        execute=execute,
        input_ports=(PortDefinition("text", PortType.TEXT, required=required_input),),
        output_ports=(PortDefinition("text", PortType.TEXT),),
        config_defaults={"value": ""},
    )


class TestExecution:
    @pytest.mark.asyncio
    async def test_outputs_flow_along_edges(self, registry, make_services):
        project = make_project(
            [
                node("in", "studio.input", value="hello"),
                node("tpl", "studio.prompt_template", template="Answer about {{text}}."),
                node("gen", "studio.text_generation"),
            ],
            [edge("in", "text", "tpl", "text"), edge("tpl", "prompt", "gen", "prompt")],
        )

        result = await GraphExecutor(registry).execute(project, make_services())

        assert result.execution_order == ["in", "tpl", "gen"]
        assert result.outputs["tpl"]["prompt"]["systemPrompt"] == "Answer about hello."
        assert result.outputs["gen"]["text"] == "echo: hello"
        assert result.executed_node_ids == ["in", "tpl", "gen"]

    @pytest.mark.asyncio
    async def test_events_are_emitted_in_order(self, registry, make_services):
        events = []
        project = make_project([node("in", "studio.input", value="x")])

        await GraphExecutor(registry).execute(project, make_services(), on_event=events.append)

        assert [e.type for e in events] == [RunEventType.NODE_STARTED, RunEventType.NODE_OUTPUT]
        assert events[1].output_source == "execution"
        assert events[1].outputs == {"text": "x"}

    @pytest.mark.asyncio
    async def test_failing_event_handler_does_not_fail_run(self, registry, make_services):
        def handler(event):
            raise RuntimeError("listener broke")

        project = make_project([node("in", "studio.input", value="x")])

        result = await GraphExecutor(registry).execute(project, make_services(), on_event=handler)

        assert result.outputs["in"]["text"] == "x"

    @pytest.mark.asyncio
    async def test_compile_error_runs_nothing(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        project = make_project([node("p", "test.recorder"), node("bad", "studio.missing")])

        with pytest.raises(GraphValidationError):
            await GraphExecutor(registry).execute(project, make_services())

        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_unconnected_required_input_fails_before_running(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        project = make_project(
            [node("p", "test.recorder"), node("gen", "studio.text_generation")]
        )

        with pytest.raises(NodeExecutionError) as exc_info:
            await GraphExecutor(registry).execute(project, make_services())

        assert exc_info.value.node_id == "gen"
        assert recorder.calls == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_plain_exception_is_wrapped_with_node_id(self, registry, make_services):
        async def explode(context):
            raise ValueError("bad value")

        registry.register(_definition("test.explode", explode))
        events = []
        project = make_project([node("boom", "test.explode")])

        with pytest.raises(NodeExecutionError) as exc_info:
            await GraphExecutor(registry).execute(
                project, make_services(), on_event=events.append
            )

        assert exc_info.value.node_id == "boom"
        assert "bad value" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert events[-1].type == RunEventType.NODE_FAILED

    @pytest.mark.asyncio
    async def test_failure_stops_downstream(self, registry, make_services):
        async def explode(context):
            raise RuntimeError("nope")

        recorder = RecordingNode()
        registry.register(_definition("test.explode", explode))
        registry.register(_definition("test.recorder", recorder.run))
        project = make_project(
            [node("boom", "test.explode"), node("after", "test.recorder")],
            [edge("boom", "text", "after", "text")],
        )

        with pytest.raises(NodeExecutionError):
            await GraphExecutor(registry).execute(project, make_services())

        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_wrong_return_type_is_a_node_error(self, registry, make_services):
        async def wrong(context):
            return {"text": "not a NodeResult"}

        registry.register(_definition("test.wrong", wrong))
        project = make_project([node("w", "test.wrong")])

        with pytest.raises(NodeExecutionError, match="not NodeResult"):
            await GraphExecutor(registry).execute(project, make_services())


class TestCaching:
    @pytest.mark.asyncio
    async def test_persistent_cache_skips_unchanged_nodes(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        project = make_project([node("p", "test.recorder", value="abc")])
        cache = NodeCacheSnapshot(project_id=project.project_id)
        executor = GraphExecutor(registry)

        first = await executor.execute(project, make_services(), node_cache=cache)
        events = []
        second = await executor.execute(
            project, make_services(), node_cache=cache, on_event=events.append
        )

        assert recorder.calls == ["p"]
        assert first.executed_node_ids == ["p"]
        assert second.cached_node_ids == ["p"]
        assert second.outputs["p"] == {"text": "ABC"}
        assert events[0].type == RunEventType.NODE_CACHE_HIT
        assert events[0].cache_updated_at == cache.entries["p"].updated_at
        assert events[1].output_source == "cache"

    @pytest.mark.asyncio
    async def test_config_change_invalidates_cache(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        cache = NodeCacheSnapshot(project_id="proj")
        executor = GraphExecutor(registry)

        await executor.execute(
            make_project([node("p", "test.recorder", value="a")]), make_services(), node_cache=cache
        )
        await executor.execute(
            make_project([node("p", "test.recorder", value="b")]), make_services(), node_cache=cache
        )

        assert recorder.calls == ["p", "p"]

    @pytest.mark.asyncio
    async def test_forced_node_executes_despite_cache(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        project = make_project([node("p", "test.recorder", value="a")])
        cache = NodeCacheSnapshot(project_id=project.project_id)
        executor = GraphExecutor(registry)

        await executor.execute(project, make_services(), node_cache=cache)
        await executor.execute(project, make_services(), node_cache=cache, force_node_ids=["p"])

        assert recorder.calls == ["p", "p"]

    @pytest.mark.asyncio
    async def test_never_policy_always_executes(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.live", recorder.run, cache_policy=CachePolicy.NEVER))
        project = make_project([node("p", "test.live", value="a")])
        cache = NodeCacheSnapshot(project_id=project.project_id)
        executor = GraphExecutor(registry)

        await executor.execute(project, make_services(), node_cache=cache)
        await executor.execute(project, make_services(), node_cache=cache)

        assert recorder.calls == ["p", "p"]
        assert "p" not in cache.entries

    @pytest.mark.asyncio
    async def test_identical_nodes_share_one_execution(self, registry, make_services):
        recorder = RecordingNode(delay=0.05)
        registry.register(
            _definition("test.recorder", recorder.run, capability=CapabilityClass.API)
        )
        project = make_project(
            [node("a", "test.recorder", value="same"), node("b", "test.recorder", value="same")]
        )

        result = await GraphExecutor(registry).execute(project, make_services())

        assert len(recorder.calls) == 1
        assert result.outputs["a"] == result.outputs["b"] == {"text": "SAME"}
        assert result.cached_node_ids == ["b"]

    @pytest.mark.asyncio
    async def test_identical_node_waiting_on_failure_fails_too(self, registry, make_services):
        attempts = []

        async def slow_failure(context):
            attempts.append(context.node.id)
            await asyncio.sleep(0.05)
            raise RuntimeError("upstream down")

        registry.register(
            _definition("test.slow_failure", slow_failure, capability=CapabilityClass.API)
        )
        project = make_project([node("a", "test.slow_failure"), node("b", "test.slow_failure")])

        with pytest.raises(NodeExecutionError, match="upstream down"):
            await GraphExecutor(registry).execute(project, make_services())

        assert attempts == ["a"]


class TestScheduling:
    @pytest.mark.asyncio
    async def test_adaptive_respects_class_limits(self, registry, make_services):
        recorder = RecordingNode(delay=0.05)
        registry.register(_definition("test.api", recorder.run, capability=CapabilityClass.API))
        project = make_project([node(f"n{i}", "test.api", value=str(i)) for i in range(5)])

        await GraphExecutor(registry).execute(project, make_services())

        assert recorder.max_active == 2
        assert sorted(recorder.calls) == ["n0", "n1", "n2", "n3", "n4"]

    @pytest.mark.asyncio
    async def test_sequential_runs_one_at_a_time(self, registry, make_services):
        recorder = RecordingNode(delay=0.02)
        registry.register(_definition("test.api", recorder.run, capability=CapabilityClass.API))
        project = make_project(
            [node(f"n{i}", "test.api", value=str(i)) for i in range(3)],
            run_concurrency="sequential",
        )

        await GraphExecutor(registry).execute(project, make_services())

        assert recorder.max_active == 1
        assert recorder.calls == ["n0", "n1", "n2"]

    @pytest.mark.asyncio
    async def test_custom_class_limits(self, registry, make_services):
        recorder = RecordingNode(delay=0.05)
        registry.register(_definition("test.api", recorder.run, capability=CapabilityClass.API))
        project = make_project([node(f"n{i}", "test.api", value=str(i)) for i in range(4)])

        await GraphExecutor(registry, class_limits={CapabilityClass.API: 4}).execute(
            project, make_services()
        )

        assert recorder.max_active == 4


class TestCancellation:
    @pytest.mark.asyncio
    async def test_pre_aborted_signal_runs_nothing(self, registry, make_services):
        recorder = RecordingNode()
        registry.register(_definition("test.recorder", recorder.run))
        signal = CancellationSignal()
        signal.abort("user stopped")

        with pytest.raises(RunCancelledError, match="user stopped"):
            await GraphExecutor(registry).execute(
                make_project([node("p", "test.recorder")]), make_services(), signal=signal
            )

        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_abort_cancels_in_flight_nodes(self, registry, make_services):
        started = asyncio.Event()
        cancelled = []

        async def hang(context):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.append(context.node.id)
                raise
            return NodeResult()

        registry.register(_definition("test.hang", hang, capability=CapabilityClass.LOCAL_IO))
        signal = CancellationSignal()
        run = asyncio.create_task(
            GraphExecutor(registry).execute(
                make_project([node("h", "test.hang")]), make_services(), signal=signal
            )
        )
        await started.wait()
        signal.abort("stop")

        with pytest.raises(RunCancelledError):
            await run

        assert cancelled == ["h"]

    def test_child_signal_follows_parent(self):
        parent = CancellationSignal()
        child = parent.child()
        sibling = parent.child()

        child.abort("only me")
        assert not parent.aborted
        assert not sibling.aborted

        parent.abort("everyone")
        assert sibling.aborted
        assert sibling.reason == "everyone"
        assert child.reason == "only me"
