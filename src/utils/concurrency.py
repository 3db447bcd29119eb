"""Bounded-concurrency helpers for fan-out over external calls.

The embedding stage fans out one call per chunk.  Embedding APIs rate-limit
aggressively, so fan-out is throttled by a semaphore, and a single failure
aborts the whole file: :func:`gather_fail_fast` cancels every call still
in flight as soon as one raises.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, TypeVar

import structlog

from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def gather_fail_fast(
    coros: list[Awaitable[_T]],
    limit: int = 1,
) -> list[_T]:
    """Run awaitables with at most *limit* in flight, cancelling on first failure.

    Parameters
    ----------
    coros:
        Awaitable objects to execute.
    limit:
        Maximum number executing at once.  ``1`` runs them one after another.

    Returns
    -------
    list[_T]
        Results in the same order as *coros*.

    Raises
    ------
    BaseException
        The first exception raised by any awaitable.  Awaitables that had
        not finished by then are cancelled and awaited before raising.
    """
    if not coros:
        return []

    semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        try:
            # Blocks here until a slot opens.
            async with semaphore:
                return await coro
        finally:
            # Cancelled while queued: close the never-started coroutine.
            if inspect.iscoroutine(coro):
                coro.close()

    tasks = [asyncio.ensure_future(_wrapped(c)) for c in coros]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = [t for t in done if not t.cancelled() and t.exception() is not None]
    if failed:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        _logger.debug("fan_out_aborted", completed=len(done), cancelled=len(pending))
        # Several may fail in the same tick; report the earliest in input order.
        first = min(failed, key=tasks.index)
        raise first.exception()  # type: ignore[misc]

    return [t.result() for t in tasks]
