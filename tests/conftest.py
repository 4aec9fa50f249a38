"""Pytest fixtures for conduit tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import pytest

from conduit.tools.fake import FakeToolExecutor
from conduit.workflow.definition import PipelineDefinition
from conduit.workflow.engine import WorkflowEngine
from conduit.workflow.events import EventType, PipelineEvent


def build_pipeline(
    nodes: list[dict[str, Any]],
    edges: list[tuple[str, str]] | None = None,
    *,
    pipeline_id: str = "test",
    entry: str | None = None,
    defaults: dict[str, Any] | None = None,
) -> PipelineDefinition:
    """Build a definition from node dicts and ``(source, target)`` edge pairs."""
    return PipelineDefinition.model_validate(
        {
            "id": pipeline_id,
            "name": pipeline_id,
            "entryNodeId": entry or nodes[0]["id"],
            "nodes": nodes,
            "edges": [{"from": source, "to": target} for source, target in edges or []],
            "defaults": defaults or {},
        }
    )


class EventRecorder:
    """Subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[PipelineEvent] = []

    def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def nodes(self, event_type: EventType) -> list[str | None]:
        """Node ids of the events of one type, in order."""
        return [event.node_id for event in self.events if event.type == event_type]

    def trace(self) -> list[tuple[str, str | None]]:
        return [(event.type.value, event.node_id) for event in self.events]


@pytest.fixture
def make_pipeline():
    """Factory for small test pipelines."""
    return build_pipeline


@pytest.fixture
def fake_tools() -> FakeToolExecutor:
    """Fake tool executor echoing params for unknown tools."""
    return FakeToolExecutor()


@pytest.fixture
def engine(fake_tools: FakeToolExecutor) -> WorkflowEngine:
    """Engine with an empty registry and fake tools."""
    return WorkflowEngine(fake_tools)


@pytest.fixture
def recorder(engine: WorkflowEngine) -> EventRecorder:
    """Event recorder subscribed to the engine."""
    rec = EventRecorder()
    engine.subscribe(rec)
    return rec
