"""Lifecycle events and the publish/subscribe channel that delivers them."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from conduit.workflow.context import PipelineContext

logger = structlog.get_logger()


class EventType(str, Enum):
    """Closed set of engine events."""

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    APPROVAL_REQUIRED = "approval_required"


@dataclass
class PipelineEvent:
    """An engine lifecycle event.

    Only the fields relevant to ``type`` are set: ``node_id`` for node and
    approval events, ``result`` for node_completed, ``error`` for failures,
    ``reason`` for node_skipped, ``prompt`` for approval_required and
    ``context`` for pipeline_completed.
    """

    type: EventType
    run_id: str
    pipeline_id: str = ""
    node_id: str | None = None
    result: Any = None
    error: str | None = None
    reason: str | None = None
    prompt: str | None = None
    context: PipelineContext | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def node_started(cls, ctx: PipelineContext, node_id: str) -> PipelineEvent:
        return cls(EventType.NODE_STARTED, ctx.run_id, ctx.pipeline_id, node_id=node_id)

    @classmethod
    def node_completed(cls, ctx: PipelineContext, node_id: str, result: Any) -> PipelineEvent:
        return cls(EventType.NODE_COMPLETED, ctx.run_id, ctx.pipeline_id, node_id=node_id, result=result)

    @classmethod
    def node_failed(cls, ctx: PipelineContext, node_id: str, error: str) -> PipelineEvent:
        return cls(EventType.NODE_FAILED, ctx.run_id, ctx.pipeline_id, node_id=node_id, error=error)

    @classmethod
    def node_skipped(cls, ctx: PipelineContext, node_id: str, reason: str) -> PipelineEvent:
        return cls(EventType.NODE_SKIPPED, ctx.run_id, ctx.pipeline_id, node_id=node_id, reason=reason)

    @classmethod
    def pipeline_completed(cls, ctx: PipelineContext) -> PipelineEvent:
        return cls(EventType.PIPELINE_COMPLETED, ctx.run_id, ctx.pipeline_id, context=ctx)

    @classmethod
    def pipeline_failed(cls, ctx: PipelineContext, error: str) -> PipelineEvent:
        return cls(EventType.PIPELINE_FAILED, ctx.run_id, ctx.pipeline_id, error=error)

    @classmethod
    def approval_required(cls, ctx: PipelineContext, node_id: str, prompt: str) -> PipelineEvent:
        return cls(EventType.APPROVAL_REQUIRED, ctx.run_id, ctx.pipeline_id, node_id=node_id, prompt=prompt)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary, dropping unset fields."""
        payload: dict[str, Any] = {
            "type": self.type.value,
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "timestamp": self.timestamp.isoformat(),
        }
        for key in ("node_id", "result", "error", "reason", "prompt"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.context is not None:
            payload["context"] = self.context.to_dict(include_logs=False)
        return payload


EventListener = Callable[[PipelineEvent], None]


class EventChannel:
    """Synchronous fan-out of events to subscribers.

    Subscribers are called in subscription order on the publishing thread.
    A subscriber that raises is logged and skipped; it never aborts the run
    or prevents delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        """Register a listener (idempotent)."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        with self._lock:
            self._listeners = [existing for existing in self._listeners if existing != listener]

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event: PipelineEvent) -> None:
        """Deliver an event to every subscriber."""
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "Event subscriber failed",
                    event_type=event.type.value,
                    run_id=event.run_id,
                    error=str(e),
                )
