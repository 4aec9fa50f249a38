"""Tool capability protocol and result type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class ToolResult:
    """Result of a tool invocation.

    Attributes:
        success: Whether the tool succeeded.
        data: Payload produced by the tool.
        error: Error message if failed.
    """

    success: bool
    data: Any = None
    error: str | None = None

    def __bool__(self) -> bool:
        """Return success status."""
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


@runtime_checkable
class ToolExecutor(Protocol):
    """Capability that performs the actual work of tool nodes.

    Implementations must tolerate concurrent calls: parallel nodes invoke
    it from several in-flight children.
    """

    async def execute_tool(self, name: str, params: dict[str, Any]) -> ToolResult:
        """Run a named tool.

        Args:
            name: Tool name.
            params: Resolved parameters.

        Returns:
            ToolResult describing success or failure.
        """
        ...
