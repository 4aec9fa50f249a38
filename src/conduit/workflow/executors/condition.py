"""Condition node executor."""

from __future__ import annotations

import structlog

from conduit.exceptions import ConditionEvaluationError
from conduit.workflow import expressions
from conduit.workflow.constants import BRANCH_NOT_TAKEN
from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import ConditionNodeConfig, NodeDefinition, NodeStatus
from conduit.workflow.events import PipelineEvent
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of

logger = structlog.get_logger()


def evaluate_condition(config: ConditionNodeConfig, ctx: PipelineContext, node_id: str) -> bool:
    """Evaluate the condition expression to a boolean.

    Raises:
        ConditionEvaluationError: If the expression cannot be evaluated.
    """
    try:
        return bool(expressions.evaluate(config.expression, ctx.data))
    except Exception as e:
        raise ConditionEvaluationError(str(e), expression=config.expression, node_id=node_id) from e


class ConditionNodeExecutor:
    """Executor for condition nodes.

    The branch not taken is marked skipped before the chosen branch runs,
    unless the chosen branch can reach it: such a node is left idle so it
    executes once traversal arrives along that path.
    """

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, ConditionNodeConfig)

        try:
            outcome = evaluate_condition(config, ctx, node.id)
        except ConditionEvaluationError as e:
            logger.warning(
                "Condition evaluation failed, taking false branch",
                run_id=ctx.run_id,
                node_id=node.id,
                error=str(e),
            )
            ctx.log(node.id, "warn", f"Condition expression failed: {config.expression}", data=str(e))
            outcome = False

        taken, not_taken = (
            (config.true_branch, config.false_branch) if outcome else (config.false_branch, config.true_branch)
        )
        if not_taken != taken and not_taken not in scope.pipeline.reachable_from(taken):
            self._skip_branch(not_taken, ctx, scope)

        return NodeResult(output=outcome, follow=[taken])

    def _skip_branch(self, node_id: str, ctx: PipelineContext, scope: ExecutionScope) -> None:
        # A node that already ran keeps its status
        if ctx.status_of(node_id) != NodeStatus.IDLE:
            return
        ctx.mark_skipped(node_id)
        ctx.log(node_id, "info", BRANCH_NOT_TAKEN)
        scope.events.publish(PipelineEvent.node_skipped(ctx, node_id, BRANCH_NOT_TAKEN))
