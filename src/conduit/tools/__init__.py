"""Tool capability consumed by tool nodes."""

from conduit.tools.base import ToolExecutor, ToolResult
from conduit.tools.fake import FakeToolExecutor, FakeToolScenario
from conduit.tools.registry import ToolRegistry, import_callable

__all__ = [
    "FakeToolExecutor",
    "FakeToolScenario",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "import_callable",
]
