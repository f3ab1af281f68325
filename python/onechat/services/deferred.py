"""Deferred effect queue.

Cache writes and deletes run after the HTTP response has been sent. Callers
schedule them through an EffectScheduler and must not assume they have run
when a mutation returns.
"""

from collections.abc import Callable
from typing import Any, Protocol

from fastapi import BackgroundTasks

from onechat.logging import get_logger

logger = get_logger(__name__)


class EffectScheduler(Protocol):
    def schedule_after_response(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        ...


class BackgroundTaskScheduler:
    """Runs effects as FastAPI background tasks, after the response is flushed."""

    def __init__(self, background_tasks: BackgroundTasks):
        self._tasks = background_tasks

    def schedule_after_response(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._tasks.add_task(fn, *args, **kwargs)


class ImmediateScheduler:
    """Runs effects inline. Used by workers and scripts with no response to wait for."""

    def schedule_after_response(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        fn(*args, **kwargs)


class QueuedScheduler:
    """Collects effects until flush() is called."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    def schedule_after_response(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.pending.append((fn, args, kwargs))

    def flush(self) -> int:
        """Run queued effects in order. Returns how many ran."""
        effects, self.pending = self.pending, []
        for fn, args, kwargs in effects:
            fn(*args, **kwargs)
        if effects:
            logger.debug("deferred_effects_flushed", count=len(effects))
        return len(effects)
