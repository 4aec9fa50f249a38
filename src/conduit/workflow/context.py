"""Per-run execution context."""

from __future__ import annotations

import asyncio
import copy
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from conduit.workflow.definition import NodeStatus, PipelineDefinition


class RunStatus(str, Enum):
    """Overall status of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


LogLevel = Literal["info", "warn", "error"]


def _now() -> datetime:
    return datetime.now(tz=UTC)


def new_run_id() -> str:
    """Generate a run id like ``run-1718000000000-a3f9``."""
    return f"run-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


@dataclass
class LogEntry:
    """A single entry of the run log."""

    node_id: str
    level: LogLevel
    message: str
    data: Any = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "node_id": self.node_id,
            "level": self.level,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class NodeRun:
    """Run-scoped state of one node.

    Attributes:
        node_id: The node this state belongs to.
        status: Current status.
        result: Executor result payload once completed.
        error: Error message once failed.
        started_at: Start of the latest attempt.
        completed_at: When the node reached a terminal status.
        attempt: Retries consumed so far (0 on the first execution).
    """

    node_id: str
    status: NodeStatus = NodeStatus.IDLE
    result: Any = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempt: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "attempt": self.attempt,
        }


@dataclass
class PipelineContext:
    """Mutable state of one pipeline run.

    All mutators are plain synchronous methods: on the event loop they run
    without interleaving, which keeps ``data``, ``logs`` and node states
    consistent while parallel children are in flight.

    Attributes:
        pipeline_id: Pipeline being run.
        run_id: Unique run identifier.
        data: Shared key/value store written by nodes.
        node_states: Status snapshot per node id.
        nodes: Full per-node run state.
        logs: Append-only run log.
        status: Overall run status.
        started_at: When the run was created.
        completed_at: When the run reached a terminal status.
        error: Error message of a failed run.
        failed_node_id: Node whose failure aborted the run.
        parent_run_id: Run that started this one as a subflow.
        depth: Subflow nesting depth (0 for top-level runs).
    """

    pipeline_id: str
    run_id: str = field(default_factory=new_run_id)
    data: dict[str, Any] = field(default_factory=dict)
    node_states: dict[str, NodeStatus] = field(default_factory=dict)
    nodes: dict[str, NodeRun] = field(default_factory=dict)
    logs: list[LogEntry] = field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    error: str | None = None
    failed_node_id: str | None = None
    parent_run_id: str | None = None
    depth: int = 0
    _resumed: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._resumed.set()

    @classmethod
    def create(
        cls,
        pipeline: PipelineDefinition,
        input_data: dict[str, Any] | None = None,
        *,
        parent_run_id: str | None = None,
        depth: int = 0,
    ) -> PipelineContext:
        """Seed a context from a definition: defaults overridden by input, all nodes idle."""
        ctx = cls(
            pipeline_id=pipeline.id,
            data={**copy.deepcopy(pipeline.defaults), **(input_data or {})},
            parent_run_id=parent_run_id,
            depth=depth,
        )
        for node in pipeline.nodes:
            ctx.nodes[node.id] = NodeRun(node_id=node.id)
            ctx.node_states[node.id] = NodeStatus.IDLE
        return ctx

    # Node state

    def node(self, node_id: str) -> NodeRun:
        """Get (or lazily create) the run state of a node."""
        run = self.nodes.get(node_id)
        if run is None:
            run = NodeRun(node_id=node_id)
            self.nodes[node_id] = run
            self.node_states[node_id] = run.status
        return run

    def status_of(self, node_id: str) -> NodeStatus:
        """Current status of a node."""
        return self.node(node_id).status

    def set_node_status(self, node_id: str, status: NodeStatus) -> NodeRun:
        """Write a node status to both the node state and the snapshot."""
        run = self.node(node_id)
        run.status = status
        self.node_states[node_id] = status
        return run

    def mark_running(self, node_id: str) -> NodeRun:
        """Enter an attempt: status running, fresh start time."""
        run = self.set_node_status(node_id, NodeStatus.RUNNING)
        run.started_at = _now()
        run.completed_at = None
        return run

    def mark_completed(self, node_id: str, result: Any) -> NodeRun:
        """Terminal success."""
        run = self.set_node_status(node_id, NodeStatus.COMPLETED)
        run.result = result
        run.error = None
        run.completed_at = _now()
        return run

    def mark_failed(self, node_id: str, error: str) -> NodeRun:
        """Terminal failure."""
        run = self.set_node_status(node_id, NodeStatus.FAILED)
        run.error = error
        run.completed_at = _now()
        return run

    def mark_skipped(self, node_id: str) -> NodeRun:
        """Terminal skip (branch not taken)."""
        run = self.set_node_status(node_id, NodeStatus.SKIPPED)
        run.completed_at = _now()
        return run

    # Data and logs

    def set_data(self, key: str, value: Any) -> None:
        """Add or overwrite a data key; keys are never removed."""
        self.data[key] = value

    def log(self, node_id: str, level: LogLevel, message: str, data: Any = None) -> LogEntry:
        """Append to the run log."""
        entry = LogEntry(node_id=node_id, level=level, message=message, data=data)
        self.logs.append(entry)
        return entry

    # Run lifecycle

    @property
    def finished(self) -> bool:
        """Whether the run reached a terminal status."""
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def complete(self) -> None:
        """Mark the run completed."""
        self.status = RunStatus.COMPLETED
        self.completed_at = _now()
        self._resumed.set()

    def fail(self, error: str, node_id: str | None = None) -> None:
        """Mark the run failed."""
        self.status = RunStatus.FAILED
        self.error = error
        if node_id and not self.failed_node_id:
            self.failed_node_id = node_id
        self.completed_at = _now()
        self._resumed.set()

    def pause(self) -> bool:
        """Pause edge propagation. Only running runs can be paused."""
        if self.status != RunStatus.RUNNING:
            return False
        self.status = RunStatus.PAUSED
        self._resumed.clear()
        return True

    def resume(self) -> bool:
        """Continue a paused run."""
        if self.status != RunStatus.PAUSED:
            return False
        self.status = RunStatus.RUNNING
        self._resumed.set()
        return True

    async def wait_if_paused(self) -> None:
        """Block while the run is paused."""
        await self._resumed.wait()

    def to_dict(self, include_logs: bool = True) -> dict[str, Any]:
        """JSON-ready snapshot of the run."""
        data: dict[str, Any] = {
            "pipeline_id": self.pipeline_id,
            "run_id": self.run_id,
            "parent_run_id": self.parent_run_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "failed_node_id": self.failed_node_id,
            "data": self.data,
            "node_states": {k: v.value for k, v in self.node_states.items()},
            "nodes": {k: v.to_dict() for k, v in self.nodes.items()},
        }
        if include_logs:
            data["logs"] = [entry.to_dict() for entry in self.logs]
        return data
