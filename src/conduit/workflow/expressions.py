"""Sandboxed expression evaluation for condition and transform nodes.

Expressions use Jinja2 expression syntax and run inside an immutable
sandbox, so they can read context data but cannot mutate it or reach
Python internals. The context is exposed as ``ctx``; keys that are valid
identifiers are also available as top-level names.

Example:
    >>> evaluate("ctx.content and ctx.content | length > 3", {"content": "hello"})
    True
    >>> evaluate("{'title': ctx.title or 'untitled'}", {})
    {'title': 'untitled'}
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from typing import Any

import jinja2
from jinja2.sandbox import ImmutableSandboxedEnvironment

_env = ImmutableSandboxedEnvironment(undefined=jinja2.ChainableUndefined)


@lru_cache(maxsize=256)
def _compile(expression: str) -> Any:
    return _env.compile_expression(expression, undefined_to_none=True)


def evaluate(expression: str, data: Mapping[str, Any]) -> Any:
    """Evaluate an expression against context data.

    Args:
        expression: Jinja2 expression source.
        data: Context data, bound as ``ctx``.

    Returns:
        The expression value; undefined lookups yield None.

    Raises:
        jinja2.TemplateError: On syntax errors or sandbox violations.
        Exception: Whatever the expression raises while evaluating
            (e.g. TypeError for ``1 + 'a'``).
    """
    compiled = _compile(expression)
    names = {key: value for key, value in data.items() if isinstance(key, str) and key.isidentifier()}
    names["ctx"] = data
    return compiled(**names)


def validate(expression: str) -> str | None:
    """Check that an expression parses.

    Returns:
        The syntax error message, or None when the expression compiles.
    """
    try:
        _compile(expression)
    except jinja2.TemplateSyntaxError as e:
        return str(e)
    return None
