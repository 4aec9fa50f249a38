"""Pipeline, node and edge definition models."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from conduit.workflow.constants import MAX_NODES_PER_PIPELINE, MAX_RETRY_ATTEMPTS


class NodeType(str, Enum):
    """Type of pipeline node."""

    TOOL = "tool"  # Invokes a tool through the tool capability
    CONDITION = "condition"  # Routes to one of two branches
    PARALLEL = "parallel"  # Runs child nodes concurrently
    APPROVAL = "approval"  # Suspends for a human decision
    TRANSFORM = "transform"  # Computes a value from context data
    DELAY = "delay"  # Sleeps
    SUBFLOW = "subflow"  # Runs another registered pipeline


class NodeStatus(str, Enum):
    """Per-run status of a node."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"


class _Model(BaseModel):
    """Shared model config: camelCase aliases, snake_case names both accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ToolNodeConfig(_Model):
    """Configuration for a tool node.

    Attributes:
        tool_name: Name passed to the tool capability.
        params: Static parameters.
        param_mapping: Parameter name -> context path, overrides static params.
        output_key: Context key receiving the tool data.
    """

    type: Literal["tool"] = "tool"
    tool_name: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    param_mapping: dict[str, str] = Field(default_factory=dict)
    output_key: str | None = None


class ConditionNodeConfig(_Model):
    """Configuration for a condition node."""

    type: Literal["condition"] = "condition"
    expression: str = Field(..., min_length=1)
    true_branch: str
    false_branch: str


class ParallelNodeConfig(_Model):
    """Configuration for a parallel node."""

    type: Literal["parallel"] = "parallel"
    node_ids: list[str] = Field(..., min_length=1)
    wait_for: Literal["all", "any"] = "all"


class ApprovalNodeConfig(_Model):
    """Configuration for an approval node.

    ``timeout_ms`` falls back to the engine settings when unset.
    """

    type: Literal["approval"] = "approval"
    prompt: str
    default_action: Literal["approve", "reject"] = "reject"
    timeout_ms: int | None = Field(default=None, gt=0)


class TransformNodeConfig(_Model):
    """Configuration for a transform node."""

    type: Literal["transform"] = "transform"
    expression: str = Field(..., min_length=1)
    output_key: str = Field(..., min_length=1)


class DelayNodeConfig(_Model):
    """Configuration for a delay node."""

    type: Literal["delay"] = "delay"
    delay_ms: int = Field(..., ge=0)


class SubflowNodeConfig(_Model):
    """Configuration for a subflow node.

    Attributes:
        pipeline_id: Registered pipeline to run as a nested run.
        input_mapping: Child input key -> parent context path.
        output_mapping: Parent context key -> child context path.
    """

    type: Literal["subflow"] = "subflow"
    pipeline_id: str = Field(..., min_length=1)
    input_mapping: dict[str, str] = Field(default_factory=dict)
    output_mapping: dict[str, str] = Field(default_factory=dict)


NodeConfig = Annotated[
    ToolNodeConfig
    | ConditionNodeConfig
    | ParallelNodeConfig
    | ApprovalNodeConfig
    | TransformNodeConfig
    | DelayNodeConfig
    | SubflowNodeConfig,
    Field(discriminator="type"),
]


class RetryPolicy(_Model):
    """Retry policy for a node.

    ``max_attempts`` counts the first execution, so a node is retried
    ``max_attempts - 1`` times.
    """

    max_attempts: int = Field(default=1, ge=1, le=MAX_RETRY_ATTEMPTS)
    delay_ms: int = Field(default=0, ge=0)


class NodeDefinition(_Model):
    """Definition of a single pipeline node.

    Attributes:
        id: Unique identifier within the pipeline.
        type: The node type.
        name: Human-readable name (defaults to the id).
        description: Free-form description.
        config: Type-specific configuration, discriminated by ``type``.
        retry: Optional retry policy.
        timeout_ms: Optional timeout raced against the executor.
    """

    id: str = Field(..., min_length=1, max_length=128)
    type: NodeType
    name: str = ""
    description: str = ""
    config: NodeConfig
    retry: RetryPolicy | None = None
    timeout_ms: int | None = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def fill_config_type(cls, data: Any) -> Any:
        """Let the config mapping omit ``type`` when the node carries it."""
        if not isinstance(data, dict):
            return data
        config = data.get("config")
        node_type = data.get("type")
        if isinstance(config, dict) and "type" not in config and node_type is not None:
            value = node_type.value if isinstance(node_type, NodeType) else node_type
            data = {**data, "config": {**config, "type": value}}
        return data

    @model_validator(mode="after")
    def check_config_matches_type(self) -> NodeDefinition:
        """Ensure the config variant agrees with the node type."""
        if self.config.type != self.type.value:
            msg = f"Node '{self.id}' has type '{self.type.value}' but config type '{self.config.type}'"
            raise ValueError(msg)
        if not self.name:
            self.name = self.id
        return self


class Edge(_Model):
    """A directed dependency between two nodes."""

    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")
    label: str | None = None


class PipelineDefinition(_Model):
    """Complete definition of a pipeline.

    Definitions are never mutated by the engine; per-run state lives in
    :class:`conduit.workflow.context.PipelineContext`.

    Attributes:
        id: Unique identifier for the pipeline.
        name: Human-readable name.
        description: Description of the pipeline purpose.
        version: Definition version.
        entry_node_id: Node the traversal starts from.
        nodes: Nodes of the graph.
        edges: Directed edges between nodes.
        defaults: Initial context data, overridden by run input.
    """

    id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=256)
    description: str = ""
    version: str = "1.0.0"
    entry_node_id: str
    nodes: list[NodeDefinition] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    defaults: dict[str, Any] = Field(default_factory=dict)

    _index: dict[str, NodeDefinition] = PrivateAttr(default_factory=dict)

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[NodeDefinition]) -> list[NodeDefinition]:
        """Validate node list."""
        if len(v) > MAX_NODES_PER_PIPELINE:
            msg = f"Pipeline cannot have more than {MAX_NODES_PER_PIPELINE} nodes"
            raise ValueError(msg)

        ids = [n.id for n in v]
        if len(ids) != len(set(ids)):
            msg = "Duplicate node IDs found"
            raise ValueError(msg)

        return v

    def model_post_init(self, __context: Any) -> None:
        self._index = {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> NodeDefinition | None:
        """Get a node by ID."""
        return self._index.get(node_id)

    def outgoing(self, node_id: str) -> list[str]:
        """Edge targets leaving ``node_id``, in declaration order."""
        return [edge.target for edge in self.edges if edge.source == node_id]

    def references(self, node: NodeDefinition) -> list[str]:
        """Node ids a node can hand control to: edges, branches, children."""
        refs = self.outgoing(node.id)
        config = node.config
        if isinstance(config, ConditionNodeConfig):
            refs.extend([config.true_branch, config.false_branch])
        elif isinstance(config, ParallelNodeConfig):
            refs.extend(config.node_ids)
        return refs

    def reachable_from(self, node_id: str) -> set[str]:
        """Every node id traversal can reach from ``node_id`` (inclusive)."""
        seen: set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            node = self._index.get(current)
            if node is not None:
                stack.extend(self.references(node))
        return seen

    def find_problems(self) -> list[str]:
        """Check graph consistency.

        Returns:
            Human-readable problems; empty when the definition is usable.
        """
        problems: list[str] = []
        if self.entry_node_id not in self._index:
            problems.append(f"Entry node '{self.entry_node_id}' is not defined")

        for edge in self.edges:
            for end in (edge.source, edge.target):
                if end not in self._index:
                    problems.append(f"Edge {edge.source} -> {edge.target} references unknown node '{end}'")

        for node in self.nodes:
            config = node.config
            if isinstance(config, ConditionNodeConfig):
                for branch in (config.true_branch, config.false_branch):
                    if branch not in self._index:
                        problems.append(f"Condition '{node.id}' branches to unknown node '{branch}'")
            elif isinstance(config, ParallelNodeConfig):
                for child in config.node_ids:
                    if child == node.id:
                        problems.append(f"Parallel node '{node.id}' lists itself as a child")
                    elif child not in self._index:
                        problems.append(f"Parallel node '{node.id}' lists unknown node '{child}'")

        if not problems:
            cycle = self._find_cycle()
            if cycle:
                problems.append("Cycle detected: " + " -> ".join(cycle))

        return problems

    def _find_cycle(self) -> list[str] | None:
        visiting: set[str] = set()
        done: set[str] = set()
        trail: list[str] = []

        def visit(node_id: str) -> list[str] | None:
            if node_id in done:
                return None
            if node_id in visiting:
                return trail[trail.index(node_id) :] + [node_id]
            visiting.add(node_id)
            trail.append(node_id)
            node = self._index.get(node_id)
            if node is not None:
                for ref in self.references(node):
                    found = visit(ref)
                    if found:
                        return found
            trail.pop()
            visiting.discard(node_id)
            done.add(node_id)
            return None

        for node in self.nodes:
            found = visit(node.id)
            if found:
                return found
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_yaml(self) -> str:
        """Serialize to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def from_yaml(cls, content: str) -> PipelineDefinition:
        """Parse a definition from YAML (or JSON, which is valid YAML).

        Raises:
            ValueError: If the content is not a mapping or fails validation.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML: {e}"
            raise ValueError(msg) from e

        if not isinstance(data, dict):
            msg = "Pipeline definition must be a mapping"
            raise ValueError(msg)

        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: Path) -> PipelineDefinition:
        """Load a definition from a ``.yaml``/``.yml``/``.json`` file."""
        content = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            return cls.model_validate(json.loads(content))
        return cls.from_yaml(content)
