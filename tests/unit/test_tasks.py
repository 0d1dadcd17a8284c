"""Tests for the best-effort task queue."""

from __future__ import annotations

import asyncio

import pytest

from promptstudio.learning.tasks import BestEffortTaskQueue


def test_sync_work_runs_inline_without_loop() -> None:
    queue = BestEffortTaskQueue()
    seen: list[int] = []

    queue.submit("append", seen.append, 1)

    assert seen == [1]
    assert queue.failures == []


def test_sync_failure_is_recorded_not_raised() -> None:
    queue = BestEffortTaskQueue()

    def explode() -> None:
        raise RuntimeError("disk full")

    queue.submit("persist", explode)

    assert len(queue.failures) == 1
    failure = queue.failures[0]
    assert failure.label == "persist"
    assert isinstance(failure.error, RuntimeError)


def test_coroutine_runs_to_completion_without_loop() -> None:
    queue = BestEffortTaskQueue()
    seen: list[str] = []

    async def work() -> None:
        await asyncio.sleep(0)
        seen.append("done")

    queue.submit("work", work)

    assert seen == ["done"]


@pytest.mark.asyncio
async def test_coroutine_is_detached_inside_loop() -> None:
    """Inside a loop the caller returns before the work finishes."""
    queue = BestEffortTaskQueue()
    release = asyncio.Event()
    seen: list[str] = []

    async def work() -> None:
        await release.wait()
        seen.append("done")

    queue.submit("work", work)
    assert queue.pending == 1
    assert seen == []

    release.set()
    await queue.join()

    assert seen == ["done"]
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_async_failure_is_recorded_after_join() -> None:
    queue = BestEffortTaskQueue()

    async def explode() -> None:
        raise ValueError("store unavailable")

    queue.submit("persist_session", explode)
    await queue.join()

    assert [f.label for f in queue.failures] == ["persist_session"]


@pytest.mark.asyncio
async def test_join_without_tasks_returns_immediately() -> None:
    queue = BestEffortTaskQueue()

    await asyncio.wait_for(queue.join(), timeout=1)

    assert queue.pending == 0
