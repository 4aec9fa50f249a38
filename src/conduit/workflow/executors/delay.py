"""Delay node executor."""

from __future__ import annotations

import asyncio

from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import DelayNodeConfig, NodeDefinition
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of


class DelayNodeExecutor:
    """Executor for delay nodes. Always succeeds."""

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, DelayNodeConfig)

        ctx.log(node.id, "info", f"Delaying {config.delay_ms}ms")
        await asyncio.sleep(config.delay_ms / 1000)
        return NodeResult(output={"delay_ms": config.delay_ms})
