"""Custom exceptions for the conduit workflow engine."""

from pathlib import Path


class ConduitError(Exception):
    """Base exception for all conduit errors."""

    pass


class PipelineNotFoundError(ConduitError):
    """Raised when a pipeline id is not registered."""

    def __init__(self, pipeline_id: str) -> None:
        super().__init__(f"Pipeline '{pipeline_id}' not found")
        self.pipeline_id = pipeline_id


class InvalidDefinitionError(ConduitError):
    """Raised when a pipeline definition is structurally inconsistent."""

    def __init__(
        self,
        message: str,
        *,
        pipeline_id: str = "",
        problems: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.pipeline_id = pipeline_id
        self.problems = problems or []


class ConfigError(ConduitError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_path: Path | None = None,
        field: str = "",
    ) -> None:
        super().__init__(message)
        self.config_path = config_path
        self.field = field


class NodeNotFoundError(ConduitError):
    """Raised when traversal reaches a node id the pipeline does not define."""

    def __init__(self, node_id: str, *, pipeline_id: str = "") -> None:
        super().__init__(f"Node '{node_id}' not found")
        self.node_id = node_id
        self.pipeline_id = pipeline_id


class UnsupportedNodeTypeError(ConduitError):
    """Raised when no executor is registered for a node type."""

    def __init__(self, node_type: str, *, node_id: str = "") -> None:
        super().__init__(f"Unsupported node type: {node_type}")
        self.node_type = node_type
        self.node_id = node_id


class NodeExecutionError(ConduitError):
    """Base class for failures raised by node executors."""

    def __init__(self, message: str, *, node_id: str = "") -> None:
        super().__init__(message)
        self.node_id = node_id


class ToolExecutionError(NodeExecutionError):
    """Raised when the tool capability reports failure or raises."""

    def __init__(self, message: str, *, tool_name: str = "", node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.tool_name = tool_name


class ConditionEvaluationError(NodeExecutionError):
    """Raised by the expression evaluator for a condition.

    The condition executor always recovers from it and takes the false branch.
    """

    def __init__(self, message: str, *, expression: str = "", node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.expression = expression


class TransformEvaluationError(NodeExecutionError):
    """Raised when a transform expression fails to evaluate."""

    def __init__(self, message: str, *, expression: str = "", node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.expression = expression


class ApprovalRejectedError(NodeExecutionError):
    """Raised when an approval node resolves to reject."""

    def __init__(self, message: str = "approval rejected", *, node_id: str = "", timed_out: bool = False) -> None:
        super().__init__(message, node_id=node_id)
        self.timed_out = timed_out


class NodeTimeoutError(NodeExecutionError):
    """Raised when a node does not settle within its timeout."""

    def __init__(self, message: str, *, timeout_ms: int = 0, node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.timeout_ms = timeout_ms


class SubflowFailedError(NodeExecutionError):
    """Raised when a nested pipeline run ends in failure."""

    def __init__(self, message: str, *, child_run_id: str = "", node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.child_run_id = child_run_id


class SubflowDepthError(NodeExecutionError):
    """Raised when subflows nest deeper than the configured limit."""

    def __init__(self, message: str, *, depth: int = 0, node_id: str = "") -> None:
        super().__init__(message, node_id=node_id)
        self.depth = depth
