"""Base protocol and types for node executors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from conduit.exceptions import UnsupportedNodeTypeError

if TYPE_CHECKING:
    from conduit.workflow.settings import EngineSettings
    from conduit.tools.base import ToolExecutor
    from conduit.workflow.approvals import ApprovalBroker
    from conduit.workflow.context import PipelineContext
    from conduit.workflow.definition import NodeDefinition, PipelineDefinition
    from conduit.workflow.events import EventChannel


@dataclass
class NodeResult:
    """Result of a successful node execution.

    Failures are raised as :class:`conduit.exceptions.NodeExecutionError`.

    Attributes:
        output: Result payload stored on the node's run state.
        data: Context writes. The engine applies them only when this
            attempt wins, so a timed-out attempt never touches ``ctx.data``.
        follow: Node ids the engine steps into after this node completes,
            before its outgoing edges (a condition's chosen branch).
    """

    output: Any = None
    data: dict[str, Any] = field(default_factory=dict)
    follow: list[str] = field(default_factory=list)


@dataclass
class ExecutionScope:
    """Dependencies available to node executors during one run.

    Attributes:
        pipeline: Definition being executed.
        tools: Tool capability.
        approvals: Approval broker.
        events: Event channel.
        settings: Engine settings.
        step: Runs the engine step for a node id in the current run.
        run_subflow: Runs another pipeline as a nested run.
    """

    pipeline: PipelineDefinition
    tools: ToolExecutor
    approvals: ApprovalBroker
    events: EventChannel
    settings: EngineSettings
    step: Callable[[str], Awaitable[None]]
    run_subflow: Callable[[str, dict[str, Any]], Awaitable[PipelineContext]]


class NodeExecutor(Protocol):
    """Protocol for node executors.

    Each node type has a corresponding executor that implements
    the actual execution logic.
    """

    async def execute(
        self,
        node: NodeDefinition,
        ctx: PipelineContext,
        scope: ExecutionScope,
    ) -> NodeResult:
        """Execute the node.

        Args:
            node: Node definition.
            ctx: Run context (shared data, node states, log).
            scope: Execution dependencies.

        Returns:
            NodeResult with the output payload.

        Raises:
            NodeExecutionError: When the node fails.
        """
        ...


ConfigT = TypeVar("ConfigT")


def config_of(node: NodeDefinition, config_type: type[ConfigT]) -> ConfigT:
    """Return the node's config as ``config_type``.

    Raises:
        UnsupportedNodeTypeError: If the node carries another config variant.
    """
    config = node.config
    if not isinstance(config, config_type):
        raise UnsupportedNodeTypeError(node.type.value, node_id=node.id)
    return config
