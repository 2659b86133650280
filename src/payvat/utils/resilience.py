"""Ordered-fallback and best-effort helpers shared by the pipeline stages."""
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import structlog

from ..telemetry import EventEmitter

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AllStrategiesFailed(Exception):
    """Every strategy in a fallback chain raised."""

    def __init__(self, errors: list[tuple[str, Exception]]):
        self.errors = errors
        summary = "; ".join(f"{name}: {exc}" for name, exc in errors) or "no strategies"
        super().__init__(f"All strategies failed ({summary})")

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1][1] if self.errors else None


def first_result(strategies: Iterable[tuple[str, Callable[[], T | None]]]) -> tuple[str, T] | None:
    """Run synchronous strategies in order; the first non-None result wins.

    A strategy that raises is treated as "no match" and the next one is tried.
    """
    for name, strategy in strategies:
        try:
            value = strategy()
        except Exception as exc:  # noqa: BLE001
            logger.debug("strategy_failed", strategy=name, error=str(exc))
            continue
        if value is not None:
            return name, value
    return None


async def first_success(
    strategies: Iterable[tuple[str, Callable[[], Awaitable[T]]]],
    *,
    on_failure: Callable[[str, Exception], None] | None = None,
) -> tuple[str, T]:
    """Await strategies in order; the first that does not raise wins.

    Raises ``AllStrategiesFailed`` with every collected error when none succeed.
    """
    errors: list[tuple[str, Exception]] = []
    for name, factory in strategies:
        try:
            return name, await factory()
        except Exception as exc:
            logger.warning("strategy_failed", strategy=name, error=str(exc))
            errors.append((name, exc))
            if on_failure is not None:
                on_failure(name, exc)
    raise AllStrategiesFailed(errors)


async def run_best_effort(
    name: str,
    fn: Callable[[], Awaitable[Any] | Any],
    emitter: EventEmitter | None = None,
) -> tuple[bool, Any]:
    """Run an auxiliary side effect whose failure must not affect the caller.

    Returns ``(True, result)`` on success and ``(False, None)`` after logging
    and emitting ``best_effort_failed`` on failure.
    """
    try:
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return True, result
    except Exception as exc:  # noqa: BLE001
        logger.warning("best_effort_failed", operation=name, error=str(exc), error_type=type(exc).__name__)
        if emitter is not None:
            emitter.emit("best_effort_failed", name=name, error=str(exc))
        return False, None
