"""Workflow engine - graph traversal and run bookkeeping."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from conduit.exceptions import (
    ConduitError,
    NodeExecutionError,
    NodeNotFoundError,
    NodeTimeoutError,
    UnsupportedNodeTypeError,
)
from conduit.workflow.approvals import ApprovalBroker
from conduit.workflow.context import PipelineContext, RunStatus
from conduit.workflow.definition import NodeDefinition, NodeStatus, NodeType, PipelineDefinition
from conduit.workflow.events import EventChannel, EventListener, PipelineEvent
from conduit.workflow.executors import (
    ApprovalNodeExecutor,
    ConditionNodeExecutor,
    DelayNodeExecutor,
    ExecutionScope,
    NodeExecutor,
    NodeResult,
    ParallelNodeExecutor,
    SubflowNodeExecutor,
    ToolNodeExecutor,
    TransformNodeExecutor,
)
from conduit.workflow.registry import PipelineRegistry
from conduit.workflow.settings import EngineSettings

if TYPE_CHECKING:
    from conduit.config import ConduitConfig
    from conduit.tools.base import ToolExecutor

logger = structlog.get_logger()

# A node in one of these states is not entered again by another predecessor.
_SETTLED = (NodeStatus.COMPLETED, NodeStatus.SKIPPED)
_IN_FLIGHT = (NodeStatus.RUNNING, NodeStatus.WAITING)


class WorkflowEngine:
    """Executes pipeline definitions as DAG walks.

    Each run gets its own :class:`PipelineContext`; definitions are never
    mutated, so one definition can back any number of concurrent runs.
    A node completes, then the engine steps into any follow-up nodes its
    executor requested and then into its edge targets, one at a time in
    declaration order. A node reachable from several predecessors runs
    once, when the first of them reaches it.
    """

    def __init__(
        self,
        tools: ToolExecutor,
        *,
        registry: PipelineRegistry | None = None,
        events: EventChannel | None = None,
        approvals: ApprovalBroker | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            tools: Capability that runs tool nodes.
            registry: Pipeline registry (a fresh, empty one by default).
            events: Event channel for lifecycle events.
            approvals: Broker holding pending approval decisions.
            settings: Engine settings.
        """
        self.tools = tools
        self.registry = registry if registry is not None else PipelineRegistry()
        self.events = events or EventChannel()
        self.approvals = approvals or ApprovalBroker()
        self.settings = settings or EngineSettings()

        self._runs: dict[str, PipelineContext] = {}
        self._tasks: set[asyncio.Task[PipelineContext]] = set()

        # Node executors
        self._executors: dict[NodeType, NodeExecutor] = {
            NodeType.TOOL: ToolNodeExecutor(),
            NodeType.CONDITION: ConditionNodeExecutor(),
            NodeType.PARALLEL: ParallelNodeExecutor(),
            NodeType.APPROVAL: ApprovalNodeExecutor(),
            NodeType.TRANSFORM: TransformNodeExecutor(),
            NodeType.DELAY: DelayNodeExecutor(),
            NodeType.SUBFLOW: SubflowNodeExecutor(),
        }

    @classmethod
    def from_config(cls, config: ConduitConfig, tools: ToolExecutor | None = None) -> WorkflowEngine:
        """Build an engine from a config file model.

        Args:
            config: Loaded configuration.
            tools: Tool capability; defaults to a registry built from
                ``config.tools`` bindings.

        Returns:
            Engine with presets and configured definitions registered.
        """
        from conduit.tools.registry import ToolRegistry

        registry = PipelineRegistry(presets=config.engine.load_presets)
        for path in config.definitions:
            registry.load_path(path)

        return cls(
            tools if tools is not None else ToolRegistry.from_bindings(config.tools),
            registry=registry,
            settings=config.engine,
        )

    # Registry passthroughs

    def register(self, pipeline: PipelineDefinition) -> None:
        self.registry.register(pipeline)

    def unregister(self, pipeline_id: str) -> bool:
        return self.registry.unregister(pipeline_id)

    def get_pipeline(self, pipeline_id: str) -> PipelineDefinition | None:
        return self.registry.find(pipeline_id)

    def list_pipelines(self) -> list[PipelineDefinition]:
        return self.registry.list()

    # Events

    def subscribe(self, listener: EventListener) -> None:
        self.events.subscribe(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        self.events.unsubscribe(listener)

    # Runs

    async def run(self, pipeline_id: str, input_data: dict[str, Any] | None = None) -> PipelineContext:
        """Run a pipeline to completion.

        Args:
            pipeline_id: Registered pipeline to run.
            input_data: Initial data, layered over the pipeline defaults.

        Returns:
            The finished context. Node failures are recorded on it and
            reported through events, never raised.

        Raises:
            PipelineNotFoundError: If the pipeline id is not registered.
        """
        pipeline, ctx = self._prepare(pipeline_id, input_data)
        return await self._drive(pipeline, ctx)

    def start(self, pipeline_id: str, input_data: dict[str, Any] | None = None) -> PipelineContext:
        """Schedule a run on the running event loop and return its context.

        Raises:
            PipelineNotFoundError: If the pipeline id is not registered.
        """
        pipeline, ctx = self._prepare(pipeline_id, input_data)
        task = asyncio.get_running_loop().create_task(self._drive(pipeline, ctx))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ctx

    def _prepare(
        self,
        pipeline_id: str,
        input_data: dict[str, Any] | None,
        *,
        parent: PipelineContext | None = None,
    ) -> tuple[PipelineDefinition, PipelineContext]:
        pipeline = self.registry.get(pipeline_id)
        ctx = PipelineContext.create(
            pipeline,
            input_data,
            parent_run_id=parent.run_id if parent else None,
            depth=parent.depth + 1 if parent else 0,
        )
        self._runs[ctx.run_id] = ctx
        return pipeline, ctx

    async def _drive(self, pipeline: PipelineDefinition, ctx: PipelineContext) -> PipelineContext:
        """Walk the graph from the entry node and settle the run status."""
        log = logger.bind(run_id=ctx.run_id, pipeline_id=pipeline.id)
        log.info("Starting pipeline run", parent_run_id=ctx.parent_run_id, depth=ctx.depth)

        scope = self._scope(pipeline, ctx)
        try:
            await self._execute_node(pipeline, pipeline.entry_node_id, ctx, scope)
        except Exception as e:
            error = str(e)
            failed_node = getattr(e, "node_id", "") or None
            ctx.fail(error, failed_node)
            log.error("Pipeline run failed", node_id=failed_node, error=error)
            self.events.publish(PipelineEvent.pipeline_failed(ctx, error))
        else:
            ctx.complete()
            log.info("Pipeline run completed")
            self.events.publish(PipelineEvent.pipeline_completed(ctx))
        self.approvals.withdraw_run(ctx.run_id)
        return ctx

    def _scope(self, pipeline: PipelineDefinition, ctx: PipelineContext) -> ExecutionScope:
        async def step(node_id: str) -> None:
            await self._execute_node(pipeline, node_id, ctx, scope)

        async def run_subflow(pipeline_id: str, input_data: dict[str, Any]) -> PipelineContext:
            child_pipeline, child = self._prepare(pipeline_id, input_data, parent=ctx)
            return await self._drive(child_pipeline, child)

        scope = ExecutionScope(
            pipeline=pipeline,
            tools=self.tools,
            approvals=self.approvals,
            events=self.events,
            settings=self.settings,
            step=step,
            run_subflow=run_subflow,
        )
        return scope

    async def _execute_node(
        self,
        pipeline: PipelineDefinition,
        node_id: str,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> None:
        """Run one node (with retries), then step into its successors.

        Raises:
            NodeNotFoundError: If ``node_id`` is not in the pipeline.
            NodeExecutionError: When the node, or a node after it, fails.
        """
        node = pipeline.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id, pipeline_id=pipeline.id)

        status = ctx.status_of(node_id)
        if status in _SETTLED or status in _IN_FLIGHT:
            return

        log = logger.bind(run_id=ctx.run_id, node_id=node_id, node_type=node.type.value)

        while True:
            run = ctx.mark_running(node_id)
            self.events.publish(PipelineEvent.node_started(ctx, node_id))
            ctx.log(node_id, "info", f"Executing node: {node.name}")
            log.debug("Executing node", attempt=run.attempt)

            try:
                result = await self._dispatch(node, ctx, scope)
                break
            except Exception as e:
                error = str(e)
                policy = node.retry
                if policy is not None and run.attempt + 1 < policy.max_attempts:
                    run.attempt += 1
                    ctx.log(node_id, "warn", f"Retry {run.attempt}/{policy.max_attempts - 1}: {error}")
                    log.warning("Retrying node", attempt=run.attempt, error=error)
                    await asyncio.sleep(policy.delay_ms / 1000)
                    ctx.set_node_status(node_id, NodeStatus.IDLE)
                    continue

                ctx.mark_failed(node_id, error)
                self.events.publish(PipelineEvent.node_failed(ctx, node_id, error))
                ctx.log(node_id, "error", f"Node failed: {error}")
                log.error("Node failed", error=error)
                if isinstance(e, ConduitError):
                    raise
                raise NodeExecutionError(error, node_id=node_id) from e

        for key, value in result.data.items():
            ctx.set_data(key, value)
        ctx.mark_completed(node_id, result.output)
        self.events.publish(PipelineEvent.node_completed(ctx, node_id, result.output))
        ctx.log(node_id, "info", "Node completed")

        for next_id in [*result.follow, *pipeline.outgoing(node_id)]:
            await ctx.wait_if_paused()
            if ctx.finished:
                log.debug("Run already finished, not stepping further", next_node=next_id)
                return
            await self._execute_node(pipeline, next_id, ctx, scope)

    async def _dispatch(self, node: NodeDefinition, ctx: PipelineContext, scope: ExecutionScope) -> NodeResult:
        executor = self._executors.get(node.type)
        if executor is None:
            raise UnsupportedNodeTypeError(node.type.value, node_id=node.id)

        if not node.timeout_ms:
            return await executor.execute(node, ctx, scope)

        task = asyncio.ensure_future(executor.execute(node, ctx, scope))
        done, _ = await asyncio.wait({task}, timeout=node.timeout_ms / 1000)
        if task in done:
            return task.result()

        # The executor keeps running; its outcome is dropped. An approval wait
        # of this attempt is withdrawn so it cannot take a decision.
        task.add_done_callback(_drain_abandoned)
        self.approvals.withdraw(ctx.run_id, node.id)
        msg = f"Node timed out after {node.timeout_ms}ms"
        raise NodeTimeoutError(msg, timeout_ms=node.timeout_ms, node_id=node.id)

    # Control

    def handle_approval(self, run_id: str, node_id: str, approved: bool) -> bool:
        """Deliver an approval decision; a call with no pending match is a no-op.

        Safe to call from any thread.
        """
        delivered = self.approvals.decide(run_id, node_id, approved)
        logger.info("Approval decision", run_id=run_id, node_id=node_id, approved=approved, delivered=delivered)
        return delivered

    def pause(self, run_id: str) -> bool:
        """Stop edge propagation of a running run at the next edge boundary."""
        ctx = self._runs.get(run_id)
        if ctx is None or not ctx.pause():
            return False
        ctx.log("", "info", "Run paused")
        logger.info("Run paused", run_id=run_id)
        return True

    def resume(self, run_id: str) -> PipelineContext | None:
        """Continue a paused run.

        Returns:
            The run's context, or None if it is unknown or not paused.
        """
        ctx = self._runs.get(run_id)
        if ctx is None or not ctx.resume():
            return None
        ctx.log("", "info", "Run resumed")
        logger.info("Run resumed", run_id=run_id)
        return ctx

    # Queries

    def get_run(self, run_id: str) -> PipelineContext | None:
        return self._runs.get(run_id)

    def get_all_runs(self) -> list[PipelineContext]:
        return list(self._runs.values())

    def get_status(self) -> dict[str, int]:
        """Counts of registered pipelines and runs per status."""
        runs = list(self._runs.values())

        def count(status: RunStatus) -> int:
            return sum(1 for ctx in runs if ctx.status == status)

        return {
            "pipelines": len(self.registry),
            "active_runs": count(RunStatus.RUNNING),
            "paused_runs": count(RunStatus.PAUSED),
            "completed_runs": count(RunStatus.COMPLETED),
            "failed_runs": count(RunStatus.FAILED),
        }


def _drain_abandoned(task: asyncio.Task[NodeResult]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Timed-out node finished with error", error=str(error))
