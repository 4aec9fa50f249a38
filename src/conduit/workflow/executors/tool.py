"""Tool node executor."""

from __future__ import annotations

from typing import Any

import structlog

from conduit.exceptions import ToolExecutionError
from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import NodeDefinition, ToolNodeConfig
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of
from conduit.workflow.paths import resolve_path

logger = structlog.get_logger()


def build_params(config: ToolNodeConfig, data: dict[str, Any]) -> dict[str, Any]:
    """Static params overridden by values resolved from ``param_mapping``."""
    params = dict(config.params)
    for param, path in config.param_mapping.items():
        params[param] = resolve_path(data, path)
    return params


class ToolNodeExecutor:
    """Executor for tool nodes.

    Calls the tool capability; its data is stored under ``output_key``.
    """

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, ToolNodeConfig)

        log = logger.bind(run_id=ctx.run_id, node_id=node.id, tool=config.tool_name)
        params = build_params(config, ctx.data)
        log.debug("Invoking tool", params=sorted(params))

        try:
            result = await scope.tools.execute_tool(config.tool_name, params)
        except Exception as e:
            msg = f"Tool {config.tool_name} raised: {e}"
            raise ToolExecutionError(msg, tool_name=config.tool_name, node_id=node.id) from e

        if not result.success:
            msg = result.error or f"Tool {config.tool_name} failed"
            raise ToolExecutionError(msg, tool_name=config.tool_name, node_id=node.id)

        writes = {config.output_key: result.data} if config.output_key else {}
        return NodeResult(output=result.data, data=writes)
