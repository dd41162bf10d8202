"""Helpers for caller-supplied callbacks that may be sync or async."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, TypeVar, Union

T = TypeVar("T")

Sink = Callable[[T], Union[Awaitable[None], None]]


async def maybe_await(value: Any) -> Any:
    """Await *value* if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value
