from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Coroutine, Sequence, TypeVar

import anyio

T = TypeVar("T")

logger = logging.getLogger(__name__)


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run an async coroutine from sync code without asyncio.run in request threads.

    - In FastAPI sync endpoints, uses anyio.from_thread.run to execute on the main loop.
    - Falls back to anyio.run when no AnyIO worker thread is available (e.g., CLI/tests).
    - Raises if called from an async context in the same thread (use await instead).
    """

    async def _runner() -> T:
        if timeout is not None:
            with anyio.fail_after(timeout):
                return await coro
        return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_runner)
        raise RuntimeError("run_async called from async context; use await instead")


async def gather_best_effort(
    jobs: Sequence[Callable[[], Awaitable[object]]],
    *,
    limit: int,
    label: str,
) -> list[BaseException]:
    """
    Run every job in a task group capped at ``limit`` concurrent jobs.

    A failing job is logged and collected; it never cancels its siblings and
    never propagates. Returns the collected failures in completion order.
    """
    failures: list[BaseException] = []
    if not jobs:
        return failures

    limiter = anyio.CapacityLimiter(max(1, limit))

    async def _guarded(job: Callable[[], Awaitable[object]]) -> None:
        async with limiter:
            try:
                await job()
            except Exception as exc:
                logger.warning("%s job failed: %s", label, exc, exc_info=exc)
                failures.append(exc)

    async with anyio.create_task_group() as tg:
        for job in jobs:
            tg.start_soon(_guarded, job)

    return failures
