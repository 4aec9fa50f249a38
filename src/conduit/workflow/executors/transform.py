"""Transform node executor."""

from __future__ import annotations

from conduit.exceptions import TransformEvaluationError
from conduit.workflow import expressions
from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import NodeDefinition, TransformNodeConfig
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of


class TransformNodeExecutor:
    """Executor for transform nodes: evaluates an expression into ``output_key``."""

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, TransformNodeConfig)

        try:
            value = expressions.evaluate(config.expression, ctx.data)
        except Exception as e:
            msg = f"Transform failed: {e}"
            raise TransformEvaluationError(msg, expression=config.expression, node_id=node.id) from e

        return NodeResult(output=value, data={config.output_key: value})
