"""In-process tool registry backing the tool capability."""

from __future__ import annotations

import asyncio
import importlib
import inspect
from collections.abc import Callable
from typing import Any

import structlog

from conduit.exceptions import ConfigError
from conduit.tools.base import ToolResult

logger = structlog.get_logger()

ToolFunction = Callable[..., Any]


def import_callable(path: str) -> ToolFunction:
    """Import a callable from a dotted path.

    Args:
        path: Dotted path like ``'module.submodule:function'`` or
            ``'module.submodule.function'``.

    Returns:
        The imported callable.

    Raises:
        ImportError: If import fails.
        AttributeError: If function not found.
    """
    if ":" in path:
        module_path, func_name = path.rsplit(":", 1)
    else:
        module_path, func_name = path.rsplit(".", 1)

    module = importlib.import_module(module_path)
    return getattr(module, func_name)


def echo_tool(params: dict[str, Any]) -> dict[str, Any]:
    """Built-in tool returning its parameters."""
    return dict(params)


class ToolRegistry:
    """Maps tool names to Python callables.

    A tool function receives the parameter dict and may be sync or async.
    Sync functions run in a worker thread so they do not block the loop.
    Return values are normalized: a :class:`ToolResult` passes through,
    anything else becomes ``ToolResult.ok(value)``. Exceptions and unknown
    tools become ``ToolResult.fail(...)``.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register("upper", lambda params: params["text"].upper())
        >>> "upper" in registry.names()
        True
    """

    def __init__(self, *, builtins: bool = True) -> None:
        """Initialize the registry.

        Args:
            builtins: Whether to register the built-in ``echo`` tool.
        """
        self._tools: dict[str, ToolFunction] = {}
        if builtins:
            self.register("echo", echo_tool)

    def register(self, name: str, func: ToolFunction) -> None:
        """Bind a tool name to a callable, replacing any previous binding."""
        self._tools[name] = func
        logger.debug("Registered tool", tool=name)

    def unregister(self, name: str) -> bool:
        """Remove a tool binding."""
        return self._tools.pop(name, None) is not None

    def names(self) -> list[str]:
        """Registered tool names, sorted."""
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def execute_tool(self, name: str, params: dict[str, Any]) -> ToolResult:
        """Invoke a registered tool."""
        func = self._tools.get(name)
        if func is None:
            return ToolResult.fail(f"Unknown tool: {name}")

        log = logger.bind(tool=name)
        try:
            if inspect.iscoroutinefunction(func):
                value = await func(params)
            else:
                value = await asyncio.to_thread(func, params)
                if inspect.isawaitable(value):
                    value = await value
        except Exception as e:
            log.warning("Tool raised", error=str(e))
            return ToolResult.fail(f"Tool {name} raised: {e}")

        if isinstance(value, ToolResult):
            return value
        return ToolResult.ok(value)

    @classmethod
    def from_bindings(cls, bindings: dict[str, str], *, builtins: bool = True) -> ToolRegistry:
        """Build a registry from ``{tool_name: "module:function"}`` bindings.

        Raises:
            ConfigError: If a binding cannot be imported.
        """
        registry = cls(builtins=builtins)
        for name, path in bindings.items():
            try:
                func = import_callable(path)
            except (ImportError, AttributeError, ValueError) as e:
                msg = f"Cannot import tool '{name}' from '{path}': {e}"
                raise ConfigError(msg, field=f"tools.{name}") from e
            if not callable(func):
                msg = f"Tool '{name}' binding '{path}' is not callable"
                raise ConfigError(msg, field=f"tools.{name}")
            registry.register(name, func)
        return registry
