"""
Best-effort side channels: lifecycle hooks and metrics.

Hooks and metric calls are isolated from the send path. An exception inside
either is caught and logged so one faulty observer never breaks delivery.
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

from loguru import logger

from .config import LifecycleHooks
from .types import MetricsAdapter, Tags


async def emit_hook(hooks: Optional[LifecycleHooks], name: str, *args: Any) -> None:
    """Invoke a lifecycle hook if configured; sync and async callables both work."""
    if hooks is None:
        return
    hook = getattr(hooks, name, None)
    if hook is None:
        return
    try:
        outcome = hook(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.error(f"Lifecycle hook {name} failed (ignored): {type(exc).__name__}: {exc}")


class MetricsEmitter:
    """Thin guard around an optional MetricsAdapter."""

    def __init__(self, adapter: Optional[MetricsAdapter] = None):
        self.adapter = adapter

    def emit(self, metric: str, value: Optional[float] = None, tags: Tags = None) -> None:
        """Counter when no value is given, gauge otherwise."""
        if self.adapter is None:
            return
        try:
            if value is None:
                self.adapter.increment(metric, tags)
            else:
                self.adapter.gauge(metric, value, tags)
        except Exception as exc:
            logger.error(f"Error emitting metric {metric}: {type(exc).__name__}: {exc}")

    def timing(self, metric: str, duration_ms: float, tags: Tags = None) -> None:
        if self.adapter is None:
            return
        try:
            self.adapter.timing(metric, duration_ms, tags)
        except Exception as exc:
            logger.error(f"Error emitting metric {metric}: {type(exc).__name__}: {exc}")
