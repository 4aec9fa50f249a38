"""Unit tests for the workflow engine traversal."""

from __future__ import annotations

import asyncio
import time

import pytest

from conduit.exceptions import PipelineNotFoundError
from conduit.tools.fake import FakeToolScenario
from conduit.tools.registry import ToolRegistry
from conduit.workflow.context import RunStatus
from conduit.workflow.definition import NodeStatus
from conduit.workflow.engine import WorkflowEngine
from conduit.workflow.events import EventType


def tool(node_id: str, tool_name: str | None = None, **extra) -> dict:
    """Tool node dict writing its output under its own id."""
    node = {
        "id": node_id,
        "type": "tool",
        "config": {"tool_name": tool_name or node_id, "output_key": node_id},
    }
    node.update(extra)
    return node


# ============================================================================
# Sequencing
# ============================================================================


class TestSequencing:
    """Tests for edge propagation and run settlement."""

    def test_linear_pipeline_completes(self, engine, fake_tools, recorder, make_pipeline):
        """Nodes run in edge order and the run completes."""
        engine.register(make_pipeline([tool("a"), tool("b")], [("a", "b")]))

        ctx = asyncio.run(engine.run("test", {"x": 1}))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.completed_at is not None
        assert ctx.node_states == {"a": NodeStatus.COMPLETED, "b": NodeStatus.COMPLETED}
        assert [call.name for call in fake_tools.calls] == ["a", "b"]
        assert recorder.trace() == [
            ("node_started", "a"),
            ("node_completed", "a"),
            ("node_started", "b"),
            ("node_completed", "b"),
            ("pipeline_completed", None),
        ]
        assert recorder.events[-1].context is ctx

    def test_edges_followed_in_declaration_order(self, engine, fake_tools, make_pipeline):
        """Successors run one at a time in the order edges are declared."""
        engine.register(
            make_pipeline(
                [tool("root"), tool("second"), tool("first")],
                [("root", "first"), ("root", "second")],
            )
        )

        asyncio.run(engine.run("test"))

        assert [call.name for call in fake_tools.calls] == ["root", "first", "second"]

    def test_diamond_join_runs_once(self, engine, fake_tools, recorder, make_pipeline):
        """A node with two predecessors runs when the first one reaches it."""
        engine.register(
            make_pipeline(
                [tool("a"), tool("b"), tool("c"), tool("d")],
                [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")],
            )
        )

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert fake_tools.get_attempt_count("d") == 1
        assert recorder.nodes(EventType.NODE_STARTED) == ["a", "b", "d", "c"]

    def test_defaults_overridden_by_input(self, engine, make_pipeline):
        """Run input layers over pipeline defaults."""
        engine.register(make_pipeline([tool("a")], defaults={"lang": "en", "tone": "calm"}))

        ctx = asyncio.run(engine.run("test", {"tone": "bold"}))

        assert ctx.data["lang"] == "en"
        assert ctx.data["tone"] == "bold"

    def test_unknown_pipeline_raises(self, engine):
        """Unknown pipeline ids raise before any context exists."""
        with pytest.raises(PipelineNotFoundError):
            asyncio.run(engine.run("missing"))
        assert engine.get_all_runs() == []

    def test_runs_of_one_definition_are_independent(self, engine, make_pipeline):
        """Concurrent runs keep their own data and node states."""
        engine.register(
            make_pipeline(
                [{"id": "t", "type": "transform", "config": {"expression": "ctx.n * 10", "output_key": "out"}}]
            )
        )

        async def scenario():
            return await asyncio.gather(engine.run("test", {"n": 1}), engine.run("test", {"n": 2}))

        first, second = asyncio.run(scenario())

        assert first.run_id != second.run_id
        assert first.data["out"] == 10
        assert second.data["out"] == 20
        assert engine.get_pipeline("test").nodes[0].id == "t"

    def test_listener_failure_does_not_abort_run(self, engine, make_pipeline):
        """A raising subscriber is isolated from the run."""

        def broken(event):
            raise RuntimeError("listener bug")

        engine.subscribe(broken)
        engine.register(make_pipeline([tool("a")]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED

    def test_run_log_records_node_lifecycle(self, engine, make_pipeline):
        """The run log has entries for executing and completing nodes."""
        engine.register(make_pipeline([tool("a")]))

        ctx = asyncio.run(engine.run("test"))

        messages = [entry.message for entry in ctx.logs if entry.node_id == "a"]
        assert messages == ["Executing node: a", "Node completed"]


# ============================================================================
# Tool Nodes
# ============================================================================


class TestToolNodes:
    """Tests for tool invocation and parameter mapping."""

    def test_params_and_output_key(self, engine, fake_tools, make_pipeline):
        """Static params are overridden by mapped context paths."""
        node = {
            "id": "publish",
            "type": "tool",
            "config": {
                "toolName": "publish",
                "params": {"platform": "wechat", "title": "static"},
                "paramMapping": {"title": "draft.title", "tag": "draft.tags[1]", "missing": "nope.x"},
                "outputKey": "published",
            },
        }
        engine.register(make_pipeline([node]))

        ctx = asyncio.run(engine.run("test", {"draft": {"title": "Hello", "tags": ["a", "b"]}}))

        params = fake_tools.calls[0].params
        assert params == {"platform": "wechat", "title": "Hello", "tag": "b", "missing": None}
        assert ctx.data["published"] == params
        assert ctx.nodes["publish"].result == params

    def test_tool_failure_fails_run(self, engine, fake_tools, recorder, make_pipeline):
        """A failed tool result fails the node and the run."""
        fake_tools.add_scenario(FakeToolScenario("a", should_fail=True, error="quota exceeded"))
        engine.register(make_pipeline([tool("a"), tool("b")], [("a", "b")]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.error == "quota exceeded"
        assert ctx.failed_node_id == "a"
        assert ctx.node_states["b"] == NodeStatus.IDLE
        assert recorder.types()[-2:] == ["node_failed", "pipeline_failed"]
        assert recorder.events[-1].error == "quota exceeded"
        assert any(entry.level == "error" for entry in ctx.logs)


# ============================================================================
# Retry
# ============================================================================


class TestRetry:
    """Tests for per-node retry policies."""

    def test_retries_until_attempts_exhausted(self, engine, fake_tools, recorder, make_pipeline):
        """max_attempts counts the first execution."""
        fake_tools.add_scenario(FakeToolScenario("flaky", should_fail=True))
        engine.register(make_pipeline([tool("flaky", retry={"maxAttempts": 3, "delayMs": 0})]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert fake_tools.get_attempt_count("flaky") == 3
        assert ctx.nodes["flaky"].attempt == 2
        assert recorder.nodes(EventType.NODE_STARTED) == ["flaky", "flaky", "flaky"]
        assert recorder.nodes(EventType.NODE_FAILED) == ["flaky"]
        assert len([entry for entry in ctx.logs if entry.level == "warn"]) == 2

    def test_retry_recovers(self, engine, fake_tools, make_pipeline):
        """A node succeeding within its attempts completes the run."""
        fake_tools.add_scenario(FakeToolScenario("flaky", data="ok", fail_times=2))
        engine.register(make_pipeline([tool("flaky", retry={"max_attempts": 3})]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.data["flaky"] == "ok"
        assert fake_tools.get_attempt_count("flaky") == 3

    def test_retry_waits_delay(self, engine, fake_tools, make_pipeline):
        """The retry delay elapses before the next attempt."""
        fake_tools.add_scenario(FakeToolScenario("flaky", fail_times=1))
        engine.register(make_pipeline([tool("flaky", retry={"max_attempts": 2, "delay_ms": 80})]))

        start = time.perf_counter()
        ctx = asyncio.run(engine.run("test"))
        elapsed = time.perf_counter() - start

        assert ctx.status == RunStatus.COMPLETED
        assert elapsed >= 0.08

    def test_no_policy_means_single_attempt(self, engine, fake_tools, make_pipeline):
        """Without a retry policy a failure is final."""
        fake_tools.add_scenario(FakeToolScenario("once", fail_times=1))
        engine.register(make_pipeline([tool("once")]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert fake_tools.get_attempt_count("once") == 1

    def test_downstream_failure_does_not_retry_upstream(self, engine, fake_tools, make_pipeline):
        """Only a node's own failure consumes its retry budget."""
        fake_tools.add_scenario(FakeToolScenario("b", should_fail=True))
        engine.register(make_pipeline([tool("a", retry={"max_attempts": 3}), tool("b")], [("a", "b")]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.failed_node_id == "b"
        assert ctx.node_states["a"] == NodeStatus.COMPLETED
        assert fake_tools.get_attempt_count("a") == 1
        assert fake_tools.get_attempt_count("b") == 1


# ============================================================================
# Timeout
# ============================================================================


class TestTimeout:
    """Tests for node timeouts."""

    def test_timeout_fails_node(self, engine, fake_tools, make_pipeline):
        """A slow executor loses the race against its timeout."""
        fake_tools.add_scenario(FakeToolScenario("slow", delay_ms=500))
        engine.register(make_pipeline([tool("slow", timeoutMs=30)]))

        start = time.perf_counter()
        ctx = asyncio.run(engine.run("test"))
        elapsed = time.perf_counter() - start

        assert ctx.status == RunStatus.FAILED
        assert "timed out after 30ms" in ctx.error
        assert ctx.failed_node_id == "slow"
        assert elapsed < 0.45

    def test_timeout_is_retried(self, engine, fake_tools, make_pipeline):
        """Timeouts are executor failures and consume retries."""
        fake_tools.add_scenario(FakeToolScenario("slow", delay_ms=300))
        engine.register(make_pipeline([tool("slow", timeout_ms=20, retry={"max_attempts": 2})]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert fake_tools.get_attempt_count("slow") == 2

    def test_fast_node_within_timeout(self, engine, fake_tools, make_pipeline):
        """A node finishing in time completes normally."""
        fake_tools.add_scenario(FakeToolScenario("quick", data=1, delay_ms=5))
        engine.register(make_pipeline([tool("quick", timeout_ms=1000)]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.data["quick"] == 1

    def test_late_result_of_timed_out_attempt_is_ignored(self, make_pipeline):
        """A slow first attempt finishing after its retry does not overwrite the retry's output."""
        calls = []

        async def publish(params):
            calls.append(params)
            if len(calls) == 1:
                await asyncio.sleep(0.2)
                return "stale"
            return "fresh"

        tools = ToolRegistry()
        tools.register("publish", publish)
        engine = WorkflowEngine(tools)
        engine.register(make_pipeline([tool("publish", timeout_ms=50, retry={"max_attempts": 2})]))

        async def scenario():
            ctx = await engine.run("test")
            right_after = ctx.data["publish"]
            await asyncio.sleep(0.3)
            return ctx, right_after

        ctx, right_after = asyncio.run(scenario())

        assert ctx.status == RunStatus.COMPLETED
        assert right_after == "fresh"
        assert ctx.data["publish"] == "fresh"
        assert len(calls) == 2

    def test_failed_run_untouched_by_late_result(self, engine, fake_tools, make_pipeline):
        """A timed-out attempt that finishes later leaves the failed run's data alone."""
        fake_tools.add_scenario(FakeToolScenario("slow", data="late", delay_ms=100))
        engine.register(make_pipeline([tool("slow", timeout_ms=30)]))

        async def scenario():
            ctx = await engine.run("test")
            await asyncio.sleep(0.2)
            return ctx

        ctx = asyncio.run(scenario())

        assert ctx.status == RunStatus.FAILED
        assert "slow" not in ctx.data
        assert ctx.node_states["slow"] == NodeStatus.FAILED


# ============================================================================
# Condition Nodes
# ============================================================================


def branching_pipeline(make_pipeline, expression: str, edges=None):
    nodes = [
        {
            "id": "gate",
            "type": "condition",
            "config": {"expression": expression, "trueBranch": "hi", "falseBranch": "lo"},
        },
        tool("hi"),
        tool("lo"),
    ]
    return make_pipeline(nodes, edges)


class TestConditionNodes:
    """Tests for branching and skip semantics."""

    def test_true_branch_runs_and_other_skipped(self, engine, fake_tools, recorder, make_pipeline):
        """The branch not taken is skipped before the chosen branch runs."""
        engine.register(branching_pipeline(make_pipeline, "score > 5"))

        ctx = asyncio.run(engine.run("test", {"score": 10}))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.nodes["gate"].result is True
        assert ctx.node_states["lo"] == NodeStatus.SKIPPED
        assert ctx.node_states["hi"] == NodeStatus.COMPLETED
        assert [call.name for call in fake_tools.calls] == ["hi"]
        assert recorder.trace()[:4] == [
            ("node_started", "gate"),
            ("node_skipped", "lo"),
            ("node_completed", "gate"),
            ("node_started", "hi"),
        ]
        skipped = recorder.events[1]
        assert skipped.reason == "branch not taken"

    def test_false_branch(self, engine, fake_tools, make_pipeline):
        """A falsy expression selects the false branch."""
        engine.register(branching_pipeline(make_pipeline, "ctx.score > 5"))

        ctx = asyncio.run(engine.run("test", {"score": 1}))

        assert ctx.nodes["gate"].result is False
        assert ctx.node_states["hi"] == NodeStatus.SKIPPED
        assert [call.name for call in fake_tools.calls] == ["lo"]

    def test_evaluation_error_takes_false_branch(self, engine, fake_tools, make_pipeline):
        """An expression that cannot be evaluated counts as false."""
        engine.register(branching_pipeline(make_pipeline, "score >"))

        ctx = asyncio.run(engine.run("test", {"score": 10}))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.node_states["gate"] == NodeStatus.COMPLETED
        assert [call.name for call in fake_tools.calls] == ["lo"]
        warnings = [entry for entry in ctx.logs if entry.level == "warn"]
        assert warnings and warnings[0].node_id == "gate"

    def test_missing_data_is_false(self, engine, fake_tools, make_pipeline):
        """Undefined names evaluate as empty, not as errors."""
        engine.register(branching_pipeline(make_pipeline, "ctx.content and ctx.content | length > 3"))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.nodes["gate"].result is False
        assert [call.name for call in fake_tools.calls] == ["lo"]

    def test_branch_reachable_from_taken_branch_is_not_skipped(self, engine, fake_tools, recorder, make_pipeline):
        """A not-taken branch still runs when the taken branch leads to it."""
        engine.register(branching_pipeline(make_pipeline, "score > 5", edges=[("lo", "hi")]))

        ctx = asyncio.run(engine.run("test", {"score": 1}))

        assert ctx.status == RunStatus.COMPLETED
        assert [call.name for call in fake_tools.calls] == ["lo", "hi"]
        assert recorder.nodes(EventType.NODE_SKIPPED) == []

    def test_skipped_node_does_not_run_when_reached_later(self, engine, fake_tools, make_pipeline):
        """A skipped node short-circuits when another path reaches it."""
        nodes = [
            tool("start"),
            {
                "id": "gate",
                "type": "condition",
                "config": {"expression": "true", "trueBranch": "hi", "falseBranch": "lo"},
            },
            tool("hi"),
            tool("lo"),
        ]
        engine.register(make_pipeline(nodes, [("start", "gate"), ("start", "lo")]))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.node_states["lo"] == NodeStatus.SKIPPED
        assert fake_tools.get_attempt_count("lo") == 0

    def test_failure_in_branch_fails_run_without_retrying_condition(self, engine, fake_tools, make_pipeline):
        """A failure in the chosen branch propagates unchanged."""
        fake_tools.add_scenario(FakeToolScenario("hi", should_fail=True, error="boom"))
        pipeline = branching_pipeline(make_pipeline, "true")
        engine.register(pipeline)

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.failed_node_id == "hi"
        assert ctx.node_states["gate"] == NodeStatus.COMPLETED


# ============================================================================
# Parallel Nodes
# ============================================================================


def parallel_pipeline(make_pipeline, wait_for: str, edges=None, extra_nodes=None):
    nodes = [
        {"id": "fan", "type": "parallel", "config": {"nodeIds": ["x", "y"], "waitFor": wait_for}},
        tool("x"),
        tool("y"),
        *(extra_nodes or []),
    ]
    return make_pipeline(nodes, edges)


class TestParallelNodes:
    """Tests for concurrent fan-out."""

    def test_all_runs_children_concurrently(self, engine, fake_tools, make_pipeline):
        """Children overlap in time and the node waits for both."""
        fake_tools.add_scenario(FakeToolScenario("x", data="X", delay_ms=150))
        fake_tools.add_scenario(FakeToolScenario("y", data="Y", delay_ms=150))
        engine.register(parallel_pipeline(make_pipeline, "all", [("fan", "after")], [tool("after")]))

        start = time.perf_counter()
        ctx = asyncio.run(engine.run("test"))
        elapsed = time.perf_counter() - start

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.data["x"] == "X"
        assert ctx.data["y"] == "Y"
        assert ctx.nodes["fan"].result == [
            {"node_id": "x", "status": "completed"},
            {"node_id": "y", "status": "completed"},
        ]
        assert fake_tools.calls[-1].name == "after"
        assert elapsed < 0.28

    def test_all_fails_on_child_failure(self, engine, fake_tools, recorder, make_pipeline):
        """The first child failure fails the parallel node and the run."""
        fake_tools.add_scenario(FakeToolScenario("x", should_fail=True, error="x broke"))
        engine.register(parallel_pipeline(make_pipeline, "all"))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.error == "x broke"
        assert ctx.failed_node_id == "x"
        assert ctx.node_states["fan"] == NodeStatus.FAILED
        assert set(recorder.nodes(EventType.NODE_FAILED)) == {"x", "fan"}

    def test_any_settles_on_first_child(self, engine, fake_tools, make_pipeline):
        """wait_for=any resolves with the fastest child."""
        fake_tools.add_scenario(FakeToolScenario("x", data="fast", delay_ms=5))
        fake_tools.add_scenario(FakeToolScenario("y", data="slow", delay_ms=400))
        engine.register(parallel_pipeline(make_pipeline, "any"))

        start = time.perf_counter()
        ctx = asyncio.run(engine.run("test"))
        elapsed = time.perf_counter() - start

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.nodes["fan"].result == [
            {"node_id": "x", "status": "completed"},
            {"node_id": "y", "status": "running"},
        ]
        assert elapsed < 0.35

    def test_any_fails_when_first_child_fails(self, engine, fake_tools, make_pipeline):
        """wait_for=any re-raises the first settled child's failure."""
        fake_tools.add_scenario(FakeToolScenario("x", should_fail=True, delay_ms=5))
        fake_tools.add_scenario(FakeToolScenario("y", delay_ms=300))
        engine.register(parallel_pipeline(make_pipeline, "any"))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.failed_node_id == "x"


# ============================================================================
# Approval Nodes
# ============================================================================


def approval_pipeline(make_pipeline, **config):
    nodes = [
        {"id": "review", "type": "approval", "config": {"prompt": "Publish?", **config}},
        tool("publish"),
    ]
    return make_pipeline(nodes, [("review", "publish")])


class TestApprovalNodes:
    """Tests for human-in-the-loop approvals."""

    def test_approved_by_user(self, engine, fake_tools, recorder, make_pipeline):
        """A decision delivered while the node waits resumes the run."""
        engine.register(approval_pipeline(make_pipeline))
        seen_status = []

        def approve(event):
            if event.type == EventType.APPROVAL_REQUIRED:
                seen_status.append(engine.get_run(event.run_id).node_states["review"])
                assert engine.handle_approval(event.run_id, event.node_id, True)

        engine.subscribe(approve)
        ctx = asyncio.run(engine.run("test"))

        assert seen_status == [NodeStatus.WAITING]
        assert ctx.status == RunStatus.COMPLETED
        assert ctx.nodes["review"].result == {"approved": True, "decided_by": "user"}
        assert fake_tools.get_attempt_count("publish") == 1
        required = [event for event in recorder.events if event.type == EventType.APPROVAL_REQUIRED]
        assert required[0].prompt == "Publish?"

    def test_rejected_by_user(self, engine, fake_tools, make_pipeline):
        """A rejection fails the approval node."""
        engine.register(approval_pipeline(make_pipeline))

        def reject(event):
            if event.type == EventType.APPROVAL_REQUIRED:
                engine.handle_approval(event.run_id, event.node_id, False)

        engine.subscribe(reject)
        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.error == "approval rejected"
        assert ctx.failed_node_id == "review"
        assert fake_tools.get_attempt_count("publish") == 0

    def test_timeout_applies_default_approve(self, engine, make_pipeline):
        """With no decision the default action applies after the timeout."""
        engine.register(approval_pipeline(make_pipeline, timeoutMs=20, defaultAction="approve"))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.nodes["review"].result == {"approved": True, "decided_by": "timeout"}
        assert any(entry.level == "warn" and entry.node_id == "review" for entry in ctx.logs)

    def test_timeout_default_reject(self, engine, make_pipeline):
        """The default action is reject."""
        engine.register(approval_pipeline(make_pipeline, timeout_ms=20))

        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.node_states["review"] == NodeStatus.FAILED

    def test_decision_from_another_thread(self, engine, make_pipeline):
        """handle_approval may be called from a worker thread."""
        engine.register(approval_pipeline(make_pipeline))

        async def scenario():
            task = asyncio.create_task(engine.run("test"))
            while not engine.approvals.pending():
                await asyncio.sleep(0.005)
            run_id, node_id = engine.approvals.pending()[0]
            delivered = await asyncio.to_thread(engine.handle_approval, run_id, node_id, True)
            return delivered, await task

        delivered, ctx = asyncio.run(scenario())

        assert delivered is True
        assert ctx.status == RunStatus.COMPLETED

    def test_decision_without_pending_approval_is_noop(self, engine):
        """Unknown (run, node) pairs are ignored."""
        assert engine.handle_approval("run-1-abcd", "review", True) is False

    def test_timed_out_attempt_withdraws_its_approval(self, engine, make_pipeline):
        """A node timeout shorter than the approval wait leaves nothing to decide."""
        nodes = [
            {"id": "review", "type": "approval", "timeout_ms": 30, "config": {"prompt": "Publish?", "timeoutMs": 5000}},
            tool("publish"),
        ]
        engine.register(make_pipeline(nodes, [("review", "publish")]))

        async def scenario():
            ctx = await engine.run("test")
            await asyncio.sleep(0.01)
            return ctx, engine.approvals.pending(), engine.handle_approval(ctx.run_id, "review", True)

        ctx, pending, delivered = asyncio.run(scenario())

        assert ctx.status == RunStatus.FAILED
        assert "timed out" in ctx.error
        assert pending == []
        assert delivered is False

    def test_retried_approval_waits_on_fresh_attempt(self, engine, fake_tools, make_pipeline):
        """After a node timeout, only the retry's approval is pending and it stays waiting."""
        nodes = [
            {
                "id": "review",
                "type": "approval",
                "timeout_ms": 30,
                "retry": {"max_attempts": 2},
                "config": {"prompt": "Publish?", "timeoutMs": 5000},
            },
            tool("publish"),
        ]
        engine.register(make_pipeline(nodes, [("review", "publish")]))
        seen = []

        def approve_second(event):
            if event.type != EventType.APPROVAL_REQUIRED:
                return
            seen.append(engine.get_run(event.run_id).node_states["review"])
            if len(seen) == 2:
                seen.append(engine.approvals.pending())
                assert engine.handle_approval(event.run_id, event.node_id, True)

        engine.subscribe(approve_second)
        ctx = asyncio.run(engine.run("test"))

        assert ctx.status == RunStatus.COMPLETED
        assert seen == [NodeStatus.WAITING, NodeStatus.WAITING, [(ctx.run_id, "review")]]
        assert ctx.nodes["review"].attempt == 1
        assert fake_tools.get_attempt_count("publish") == 1

    def test_finished_run_leaves_no_pending_approval(self, engine, make_pipeline):
        """Approvals of a run that already ended are withdrawn."""
        nodes = [
            {"id": "fan", "type": "parallel", "config": {"nodeIds": ["quick", "review"], "waitFor": "any"}},
            tool("quick"),
            {"id": "review", "type": "approval", "config": {"prompt": "Publish?", "timeoutMs": 5000}},
        ]
        engine.register(make_pipeline(nodes))

        async def scenario():
            ctx = await engine.run("test")
            return ctx, engine.approvals.pending()

        ctx, pending = asyncio.run(scenario())

        assert ctx.status == RunStatus.COMPLETED
        assert pending == []


# ============================================================================
# Transform and Delay Nodes
# ============================================================================


class TestTransformAndDelay:
    """Tests for transform and delay nodes."""

    def test_transform_writes_output_key(self, engine, make_pipeline):
        """The expression value lands under output_key."""
        node = {
            "id": "prep",
            "type": "transform",
            "config": {"expression": "{'title': ctx.title or 'Untitled', 'n': count + 1}", "outputKey": "prepared"},
        }
        engine.register(make_pipeline([node]))

        ctx = asyncio.run(engine.run("test", {"count": 2}))

        assert ctx.data["prepared"] == {"title": "Untitled", "n": 3}
        assert ctx.nodes["prep"].result == {"title": "Untitled", "n": 3}

    def test_transform_error_fails_node(self, engine, make_pipeline):
        """Evaluation errors fail transform nodes."""
        node = {"id": "prep", "type": "transform", "config": {"expression": "count + 'x'", "outputKey": "out"}}
        engine.register(make_pipeline([node]))

        ctx = asyncio.run(engine.run("test", {"count": 2}))

        assert ctx.status == RunStatus.FAILED
        assert ctx.error.startswith("Transform failed")
        assert "out" not in ctx.data

    def test_delay_sleeps(self, engine, make_pipeline):
        """Delay nodes wait and report their duration."""
        engine.register(make_pipeline([{"id": "wait", "type": "delay", "config": {"delayMs": 50}}]))

        start = time.perf_counter()
        ctx = asyncio.run(engine.run("test"))

        assert time.perf_counter() - start >= 0.05
        assert ctx.nodes["wait"].result == {"delay_ms": 50}


# ============================================================================
# Subflow Nodes
# ============================================================================


class TestSubflowNodes:
    """Tests for nested pipeline runs."""

    def child_pipeline(self, make_pipeline, expression: str = "ctx.value * 2"):
        node = {"id": "double", "type": "transform", "config": {"expression": expression, "outputKey": "doubled"}}
        return make_pipeline([node], pipeline_id="child")

    def parent_pipeline(self, make_pipeline, child_id: str = "child"):
        node = {
            "id": "sub",
            "type": "subflow",
            "config": {
                "pipelineId": child_id,
                "inputMapping": {"value": "input.n"},
                "outputMapping": {"result": "doubled"},
            },
        }
        return make_pipeline([node], pipeline_id="parent")

    def test_subflow_maps_input_and_output(self, engine, make_pipeline):
        """Child input comes from parent paths; outputs are copied back."""
        engine.register(self.child_pipeline(make_pipeline))
        engine.register(self.parent_pipeline(make_pipeline))

        ctx = asyncio.run(engine.run("parent", {"input": {"n": 21}}))

        assert ctx.status == RunStatus.COMPLETED
        assert ctx.data["result"] == 42
        child = next(run for run in engine.get_all_runs() if run.parent_run_id == ctx.run_id)
        assert child.pipeline_id == "child"
        assert child.depth == 1
        assert ctx.nodes["sub"].result == {"run_id": child.run_id, "status": "completed"}

    def test_child_failure_fails_parent(self, engine, make_pipeline):
        """A failed child run fails the subflow node."""
        engine.register(self.child_pipeline(make_pipeline, expression="ctx.value + 'x'"))
        engine.register(self.parent_pipeline(make_pipeline))

        ctx = asyncio.run(engine.run("parent", {"input": {"n": 1}}))

        assert ctx.status == RunStatus.FAILED
        assert ctx.failed_node_id == "sub"
        assert "Subflow child failed" in ctx.error

    def test_unknown_child_pipeline(self, engine, make_pipeline):
        """A subflow naming an unregistered pipeline fails its node."""
        engine.register(self.parent_pipeline(make_pipeline, child_id="ghost"))

        ctx = asyncio.run(engine.run("parent"))

        assert ctx.status == RunStatus.FAILED
        assert ctx.failed_node_id == "sub"
        assert "ghost" in ctx.error

    def test_depth_limit(self, fake_tools, make_pipeline):
        """Recursive subflows stop at the configured depth."""
        from conduit.workflow.engine import WorkflowEngine
        from conduit.workflow.settings import EngineSettings

        engine = WorkflowEngine(fake_tools, settings=EngineSettings(max_subflow_depth=2))
        node = {"id": "again", "type": "subflow", "config": {"pipelineId": "recurse"}}
        engine.register(make_pipeline([node], pipeline_id="recurse"))

        ctx = asyncio.run(engine.run("recurse"))

        assert ctx.status == RunStatus.FAILED
        runs = engine.get_all_runs()
        assert len(runs) == 3
        deepest = max(runs, key=lambda run: run.depth)
        assert deepest.depth == 2
        assert "depth limit" in deepest.error


# ============================================================================
# Control and Queries
# ============================================================================


class TestControl:
    """Tests for pause/resume, background runs and status queries."""

    def test_pause_holds_edges_until_resume(self, engine, fake_tools, make_pipeline):
        """A paused run does not step into successors."""
        engine.register(make_pipeline([tool("a"), tool("b"), tool("c")], [("a", "b"), ("b", "c")]))

        def pause_after_a(event):
            if event.type == EventType.NODE_COMPLETED and event.node_id == "a":
                assert engine.pause(event.run_id)

        engine.subscribe(pause_after_a)

        async def scenario():
            task = asyncio.create_task(engine.run("test"))
            await asyncio.sleep(0.05)
            ctx = engine.get_all_runs()[0]
            paused_state = (ctx.status, ctx.node_states["b"], engine.get_status()["paused_runs"])
            assert engine.resume(ctx.run_id) is ctx
            return paused_state, await task

        (status, b_state, paused_runs), ctx = asyncio.run(scenario())

        assert status == RunStatus.PAUSED
        assert b_state == NodeStatus.IDLE
        assert paused_runs == 1
        assert ctx.status == RunStatus.COMPLETED
        assert [call.name for call in fake_tools.calls] == ["a", "b", "c"]

    def test_pause_and_resume_need_matching_state(self, engine, make_pipeline):
        """Only running runs pause and only paused runs resume."""
        engine.register(make_pipeline([tool("a")]))
        ctx = asyncio.run(engine.run("test"))

        assert engine.pause(ctx.run_id) is False
        assert engine.resume(ctx.run_id) is None
        assert engine.pause("unknown") is False

    def test_start_runs_in_background(self, engine, make_pipeline):
        """start() returns the context before the run finishes."""
        engine.register(make_pipeline([{"id": "wait", "type": "delay", "config": {"delay_ms": 20}}]))

        async def scenario():
            ctx = engine.start("test")
            initial = ctx.status
            while not ctx.finished:
                await asyncio.sleep(0.005)
            return initial, ctx

        initial, ctx = asyncio.run(scenario())

        assert initial == RunStatus.RUNNING
        assert ctx.status == RunStatus.COMPLETED
        assert engine.get_run(ctx.run_id) is ctx

    def test_get_status_counts(self, engine, fake_tools, make_pipeline):
        """Status counters reflect registered pipelines and finished runs."""
        fake_tools.add_scenario(FakeToolScenario("bad", should_fail=True))
        engine.register(make_pipeline([tool("a")], pipeline_id="good"))
        engine.register(make_pipeline([tool("bad")], pipeline_id="broken"))

        asyncio.run(engine.run("good"))
        asyncio.run(engine.run("broken"))

        assert engine.get_status() == {
            "pipelines": 2,
            "active_runs": 0,
            "paused_runs": 0,
            "completed_runs": 1,
            "failed_runs": 1,
        }

    def test_unsubscribe_stops_delivery(self, engine, recorder, make_pipeline):
        """Unsubscribed listeners receive nothing."""
        engine.unsubscribe(recorder)
        engine.register(make_pipeline([tool("a")]))

        asyncio.run(engine.run("test"))

        assert recorder.events == []
