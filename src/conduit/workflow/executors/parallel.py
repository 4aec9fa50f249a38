"""Parallel node executor for concurrent fan-out."""

from __future__ import annotations

import asyncio

import structlog

from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import NodeDefinition, ParallelNodeConfig
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of

logger = structlog.get_logger()


class ParallelNodeExecutor:
    """Executor for parallel nodes.

    Children are started as concurrent tasks of the engine step. With
    ``wait_for="all"`` the node settles when every child has settled, or
    fails with the first child failure. With ``wait_for="any"`` it settles
    with the first child to settle. Children still in flight are never
    cancelled; they keep running and may update the context afterwards.
    """

    def __init__(self) -> None:
        # Strong references to children that outlive the wait
        self._stragglers: set[asyncio.Task[None]] = set()

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, ParallelNodeConfig)

        log = logger.bind(run_id=ctx.run_id, node_id=node.id, wait_for=config.wait_for)
        log.debug("Starting parallel children", children=config.node_ids)

        tasks = [
            asyncio.create_task(scope.step(child_id), name=f"{ctx.run_id}:{child_id}")
            for child_id in config.node_ids
        ]

        try:
            if config.wait_for == "all":
                await asyncio.gather(*tasks)
            else:
                done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                first = next(task for task in tasks if task in done)
                first.result()
        finally:
            for task in tasks:
                if not task.done():
                    self._track(task, ctx)
                elif not task.cancelled():
                    # Mark secondary failures as retrieved
                    task.exception()

        snapshot = [{"node_id": child_id, "status": ctx.status_of(child_id).value} for child_id in config.node_ids]
        return NodeResult(output=snapshot)

    def _track(self, task: asyncio.Task[None], ctx: PipelineContext) -> None:
        self._stragglers.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._stragglers.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning(
                    "Parallel child failed after the wait resolved",
                    run_id=ctx.run_id,
                    task=finished.get_name(),
                    error=str(error),
                )

        task.add_done_callback(_done)
