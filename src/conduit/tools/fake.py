"""Fake tool executor for testing and dry runs."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from conduit.tools.base import ToolResult

logger = structlog.get_logger()


@dataclass
class FakeToolScenario:
    """Describes how the fake executor answers one tool.

    Attributes:
        name: Tool name.
        data: Payload returned on success. A callable receives the params.
        delay_ms: Simulated latency.
        should_fail: If True, every call fails.
        fail_times: Fail the first N calls, then succeed.
        error: Error message for failures.
    """

    name: str
    data: Any = None
    delay_ms: int = 0
    should_fail: bool = False
    fail_times: int = 0
    error: str = "simulated failure"


@dataclass
class FakeCall:
    """A recorded invocation."""

    name: str
    params: dict[str, Any]
    attempt: int


class FakeToolExecutor:
    """A deterministic tool executor.

    Unknown tools succeed and echo their params unless ``strict`` is set.

    Example:
        >>> fake = FakeToolExecutor(scenarios=[FakeToolScenario("publish", data={"url": "u"})])
        >>> fake.get_scenario("publish").data
        {'url': 'u'}
    """

    def __init__(
        self,
        *,
        scenarios: list[FakeToolScenario] | None = None,
        strict: bool = False,
        on_call: Callable[[FakeCall], None] | None = None,
    ) -> None:
        """Initialize the fake executor.

        Args:
            scenarios: Scenarios indexed by tool name.
            strict: Fail calls to tools without a scenario.
            on_call: Optional hook invoked for every call.
        """
        self._scenarios: dict[str, FakeToolScenario] = {}
        self._attempt_counts: dict[str, int] = {}
        self._strict = strict
        self._on_call = on_call
        self.calls: list[FakeCall] = []

        for scenario in scenarios or []:
            self._scenarios[scenario.name] = scenario

    def add_scenario(self, scenario: FakeToolScenario) -> None:
        """Add or replace a scenario."""
        self._scenarios[scenario.name] = scenario

    def get_scenario(self, name: str) -> FakeToolScenario | None:
        return self._scenarios.get(name)

    def get_attempt_count(self, name: str) -> int:
        """Number of calls made to a tool."""
        return self._attempt_counts.get(name, 0)

    def calls_for(self, name: str) -> list[FakeCall]:
        return [call for call in self.calls if call.name == name]

    async def execute_tool(self, name: str, params: dict[str, Any]) -> ToolResult:
        """Answer a tool call from its scenario."""
        attempt = self._attempt_counts.get(name, 0) + 1
        self._attempt_counts[name] = attempt
        call = FakeCall(name=name, params=dict(params), attempt=attempt)
        self.calls.append(call)
        if self._on_call:
            self._on_call(call)

        scenario = self._scenarios.get(name)
        logger.debug("FakeToolExecutor call", tool=name, attempt=attempt)

        if scenario is None:
            if self._strict:
                return ToolResult.fail(f"Unknown tool: {name}")
            return ToolResult.ok(dict(params))

        if scenario.delay_ms:
            await asyncio.sleep(scenario.delay_ms / 1000)

        if scenario.should_fail or attempt <= scenario.fail_times:
            return ToolResult.fail(scenario.error)

        data = scenario.data(params) if callable(scenario.data) else scenario.data
        return ToolResult.ok(data)
