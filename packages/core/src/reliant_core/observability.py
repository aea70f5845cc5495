"""StructuredLoggingHook — JSON log entries for every instrumented operation."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from .correlation import get_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_log = logging.getLogger("reliant.observability")


class StructuredLoggingHook:
    """Emits JSON log entries with operation, outcome, duration and context.

    Register it on a :class:`~reliant_core.instrumentation.HookRegistry`::

        get_hook_registry().register(StructuredLoggingHook(), priority=-100)
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or _log

    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        start = time.monotonic()
        outcome = "success"
        error_type: str | None = None
        try:
            return await next_handler()
        except BaseException as exc:
            outcome = "error"
            error_type = type(exc).__name__
            raise
        finally:
            try:
                entry = {
                    "operation": operation,
                    "outcome": outcome,
                    "error_type": error_type,
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                    "correlation_id": attributes.get("correlation_id")
                    or get_correlation_id(),
                    "attributes": {
                        k: v for k, v in attributes.items() if k != "correlation_id"
                    },
                }
                self._log.info(json.dumps(entry, default=str))
            except Exception:  # noqa: BLE001
                _log.debug("Failed to emit structured log entry", exc_info=True)
