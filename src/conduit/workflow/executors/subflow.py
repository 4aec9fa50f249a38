"""Subflow node executor for nested pipeline runs."""

from __future__ import annotations

import structlog

from conduit.exceptions import PipelineNotFoundError, SubflowDepthError, SubflowFailedError
from conduit.workflow.context import PipelineContext, RunStatus
from conduit.workflow.definition import NodeDefinition, SubflowNodeConfig
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of
from conduit.workflow.paths import resolve_path

logger = structlog.get_logger()


class SubflowNodeExecutor:
    """Executor for subflow nodes.

    Runs another registered pipeline as a child run with its own context.
    ``input_mapping`` seeds the child input from parent paths and
    ``output_mapping`` copies child values back into parent keys.
    """

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, SubflowNodeConfig)

        if ctx.depth >= scope.settings.max_subflow_depth:
            msg = f"Subflow depth limit ({scope.settings.max_subflow_depth}) reached at '{config.pipeline_id}'"
            raise SubflowDepthError(msg, depth=ctx.depth, node_id=node.id)

        child_input = {key: resolve_path(ctx.data, path) for key, path in config.input_mapping.items()}
        log = logger.bind(run_id=ctx.run_id, node_id=node.id, subflow=config.pipeline_id)
        log.info("Starting subflow")

        try:
            child = await scope.run_subflow(config.pipeline_id, child_input)
        except PipelineNotFoundError as e:
            raise SubflowFailedError(str(e), node_id=node.id) from e
        ctx.log(node.id, "info", f"Subflow {config.pipeline_id} finished: {child.status.value}", data=child.run_id)

        if child.status != RunStatus.COMPLETED:
            msg = f"Subflow {config.pipeline_id} failed: {child.error or child.status.value}"
            raise SubflowFailedError(msg, child_run_id=child.run_id, node_id=node.id)

        return NodeResult(
            output={"run_id": child.run_id, "status": child.status.value},
            data={key: resolve_path(child.data, path) for key, path in config.output_mapping.items()},
        )
