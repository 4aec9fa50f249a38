"""Node executors for pipeline execution."""

from conduit.workflow.executors.approval import ApprovalNodeExecutor
from conduit.workflow.executors.base import ExecutionScope, NodeExecutor, NodeResult
from conduit.workflow.executors.condition import ConditionNodeExecutor
from conduit.workflow.executors.delay import DelayNodeExecutor
from conduit.workflow.executors.parallel import ParallelNodeExecutor
from conduit.workflow.executors.subflow import SubflowNodeExecutor
from conduit.workflow.executors.tool import ToolNodeExecutor
from conduit.workflow.executors.transform import TransformNodeExecutor

__all__ = [
    "ApprovalNodeExecutor",
    "ConditionNodeExecutor",
    "DelayNodeExecutor",
    "ExecutionScope",
    "NodeExecutor",
    "NodeResult",
    "ParallelNodeExecutor",
    "SubflowNodeExecutor",
    "ToolNodeExecutor",
    "TransformNodeExecutor",
]
