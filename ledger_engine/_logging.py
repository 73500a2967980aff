"""Logging shim.

Stdlib logging for the ledger engine plus small instrumentation decorators
used by the orchestration layer.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable


ledger_logger = logging.getLogger("ledger_engine")


def log_operation(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            ledger_logger.debug("operation start: %s", name)
            result = fn(*args, **kwargs)
            ledger_logger.debug("operation done: %s", name)
            return result

        return wrapper

    return deco


def log_timing(threshold: float = 0.0) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - started
                if elapsed >= threshold:
                    ledger_logger.info("slow operation: %s took %.3fs", fn.__qualname__, elapsed)

        return wrapper

    return deco


def log_errors(severity: str = "medium") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                ledger_logger.error(
                    "%s failed (severity=%s): %s: %s",
                    fn.__qualname__,
                    severity,
                    type(exc).__name__,
                    exc,
                )
                raise

        return wrapper

    return deco


def log_ledger_operation(
    event: str,
    details: dict[str, Any] | None = None,
    execution_time: float | None = None,
) -> dict[str, Any]:
    if details:
        ledger_logger.info("[%s] %s", event, details)
    else:
        ledger_logger.info("[%s]", event)
    return {"event": event, "details": details or {}, "execution_time": execution_time}
