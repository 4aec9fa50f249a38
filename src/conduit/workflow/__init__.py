"""Workflow engine for DAG pipelines of tool, branch and approval nodes."""

from conduit.workflow.approvals import ApprovalBroker, ApprovalDecision
from conduit.workflow.context import LogEntry, NodeRun, PipelineContext, RunStatus
from conduit.workflow.definition import (
    ApprovalNodeConfig,
    ConditionNodeConfig,
    DelayNodeConfig,
    Edge,
    NodeConfig,
    NodeDefinition,
    NodeStatus,
    NodeType,
    ParallelNodeConfig,
    PipelineDefinition,
    RetryPolicy,
    SubflowNodeConfig,
    ToolNodeConfig,
    TransformNodeConfig,
)
from conduit.workflow.engine import WorkflowEngine
from conduit.workflow.events import EventChannel, EventType, PipelineEvent
from conduit.workflow.paths import resolve_path
from conduit.workflow.registry import PipelineRegistry
from conduit.workflow.settings import EngineSettings

__all__ = [
    # Definitions
    "ApprovalNodeConfig",
    "ConditionNodeConfig",
    "DelayNodeConfig",
    "Edge",
    "NodeConfig",
    "NodeDefinition",
    "NodeStatus",
    "NodeType",
    "ParallelNodeConfig",
    "PipelineDefinition",
    "RetryPolicy",
    "SubflowNodeConfig",
    "ToolNodeConfig",
    "TransformNodeConfig",
    # Runtime
    "ApprovalBroker",
    "ApprovalDecision",
    "EngineSettings",
    "EventChannel",
    "EventType",
    "LogEntry",
    "NodeRun",
    "PipelineContext",
    "PipelineEvent",
    "PipelineRegistry",
    "RunStatus",
    "WorkflowEngine",
    "resolve_path",
]
