"""Bounded awaiting of external calls."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

from .primitives.exceptions import OperationTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


def describe(operation: Callable[..., Any]) -> str:
    """Best-effort readable name for a callable (used in logs and errors)."""
    return getattr(operation, "__qualname__", None) or type(operation).__name__


async def call_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float | None,
    *,
    name: str | None = None,
) -> T:
    """
    Await ``operation()`` for at most ``timeout`` seconds.

    Args:
        operation: Zero-argument coroutine function.
        timeout: Upper bound in seconds; ``None`` waits indefinitely.
        name: Label used in the timeout error (defaults to the callable name).

    Raises:
        OperationTimeoutError: If the bound elapsed. The pending call is
            cancelled first.
    """
    if timeout is None:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as err:
        raise OperationTimeoutError(name or describe(operation), timeout) from err
