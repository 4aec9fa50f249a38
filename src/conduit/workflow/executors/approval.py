"""Approval node executor for human-in-the-loop gates."""

from __future__ import annotations

import structlog

from conduit.exceptions import ApprovalRejectedError
from conduit.workflow.context import PipelineContext
from conduit.workflow.definition import ApprovalNodeConfig, NodeDefinition, NodeStatus
from conduit.workflow.events import PipelineEvent
from conduit.workflow.executors.base import ExecutionScope, NodeResult, config_of

logger = structlog.get_logger()


class ApprovalNodeExecutor:
    """Executor for approval nodes.

    Emits ``approval_required`` and suspends until
    ``WorkflowEngine.handle_approval`` delivers a decision for
    ``(run_id, node_id)`` or the timeout applies ``default_action``.
    """

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        config = config_of(node, ApprovalNodeConfig)

        timeout_ms = config.timeout_ms or scope.settings.default_approval_timeout_ms
        log = logger.bind(run_id=ctx.run_id, node_id=node.id, timeout_ms=timeout_ms)

        ctx.set_node_status(node.id, NodeStatus.WAITING)
        ctx.log(node.id, "info", f"Waiting for approval: {config.prompt}")
        log.info("Approval required")

        def announce() -> None:
            scope.events.publish(PipelineEvent.approval_required(ctx, node.id, config.prompt))

        decision = await scope.approvals.wait(
            ctx.run_id,
            node.id,
            timeout_ms=timeout_ms,
            default_approve=config.default_action == "approve",
            on_pending=announce,
        )

        if decision.timed_out:
            ctx.log(node.id, "warn", f"Approval timed out, default action: {config.default_action}")

        if not decision.approved:
            log.info("Approval rejected", decided_by=decision.decided_by)
            raise ApprovalRejectedError(node_id=node.id, timed_out=decision.timed_out)

        log.info("Approval granted", decided_by=decision.decided_by)
        return NodeResult(output={"approved": True, "decided_by": decision.decided_by})
