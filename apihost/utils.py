"""
apihost — Small Shared Helpers
==============================

What:  Coercion helpers used across the host, storage and database layers.
"""

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def to_str_safe(value: Any) -> str:
    """``None`` → "", everything else → ``str(value)``."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def normalize_string(value: Any) -> str:
    """Trimmed, lower-cased string form of ``value``."""
    return to_str_safe(value).strip().lower()
