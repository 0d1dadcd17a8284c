"""Best-effort background work for learning and persistence.

Callers submit work and move on. Inside a running event loop the work is
scheduled as a detached task; outside one it runs inline. Either way a
failure is logged as ``best_effort_task_failed`` and recorded on the queue,
never raised back to the submitter.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from promptstudio.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

log = get_logger(__name__)

_MAX_RECORDED_FAILURES = 50


@dataclass(frozen=True)
class TaskFailure:
    """A recorded failure of a best-effort task."""

    label: str
    error: BaseException
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class BestEffortTaskQueue:
    """Runs fire-and-forget work with observable failures.

    Example:
        >>> queue = BestEffortTaskQueue()
        >>> queue.submit("persist_session", store.save_session, session)
        >>> await queue.join()
        >>> queue.failures
        []
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._failures: list[TaskFailure] = []

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Run ``fn(*args, **kwargs)`` without letting it fail the caller.

        Args:
            label: Short name used in logs and failure records.
            fn: Sync callable or coroutine function.
            *args: Positional arguments for ``fn``.
            **kwargs: Keyword arguments for ``fn``.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    asyncio.run(_await(result))
            except Exception as e:
                self._record(label, e)
            return

        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            self._record(label, e)
            return
        if not inspect.isawaitable(result):
            return

        task = loop.create_task(_await(result), name=f"best-effort:{label}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(label, t))

    async def join(self) -> None:
        """Wait until every scheduled task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def failures(self) -> list[TaskFailure]:
        return list(self._failures)

    def _on_done(self, label: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.debug("best_effort_task_cancelled", label=label)
            return
        error = task.exception()
        if error is not None:
            self._record(label, error)

    def _record(self, label: str, error: BaseException) -> None:
        log.warning(
            "best_effort_task_failed",
            label=label,
            error_type=type(error).__name__,
            error=str(error),
        )
        self._failures.append(TaskFailure(label=label, error=error))
        if len(self._failures) > _MAX_RECORDED_FAILURES:
            del self._failures[0]


async def _await(awaitable: Any) -> Any:
    return await awaitable
