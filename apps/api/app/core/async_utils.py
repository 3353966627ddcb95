"""Bridges between the sync database layer and the async sync pipeline.

The sync pipeline is async (provider I/O) while sessions and services are
plain sync code. ``run_in_thread`` moves a blocking database step off the
event loop; ``run_async`` goes the other way for the CLI and worker threads.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Callable, Coroutine, ParamSpec, TypeVar

import anyio

T = TypeVar("T")
P = ParamSpec("P")


async def run_in_thread(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a blocking call (a page commit, a state transition) in a worker thread."""
    if kwargs:
        return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))
    return await anyio.to_thread.run_sync(func, *args)


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Drive a coroutine (a sync run, a provider probe) to completion from sync code.

    Inside an AnyIO worker thread the coroutine runs on the owning event loop;
    from plain sync code a fresh loop is started. Calling this from a running
    event loop in the same thread is an error: await instead.
    """

    async def _runner() -> T:
        if timeout is None:
            return await coro
        with anyio.fail_after(timeout):
            return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        pass

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return anyio.run(_runner)
    coro.close()
    raise RuntimeError("run_async called from async context; use await instead")
