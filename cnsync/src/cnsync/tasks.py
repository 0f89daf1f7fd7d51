"""
Periodic sync loop.

Each tick is awaited before the next interval starts, so ticks never overlap.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from loguru import logger

from cnsync.errors import SyncError
from cnsync.synchronizer import SyncResult, WalletSynchronizer


async def run_periodic_task(
    name: str,
    callback: Callable[[], Coroutine[Any, Any, None]],
    interval: float,
    initial_delay: float = 0.0,
    running_check: Callable[[], bool] | None = None,
    fatal_exceptions: tuple[type[BaseException], ...] = (),
) -> None:
    """
    Run a callback periodically until cancelled or running_check returns False.

    Args:
        name: Human-readable task name for logging
        callback: Async function to call each interval
        interval: Seconds between invocations
        initial_delay: Seconds to wait before first invocation
        running_check: Optional callable returning False to stop the task
        fatal_exceptions: Exceptions that stop the task and propagate to the caller
    """
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)

    while running_check is None or running_check():
        try:
            await asyncio.sleep(interval)
            await callback()
        except asyncio.CancelledError:
            logger.info(f"{name} task cancelled")
            break
        except fatal_exceptions:
            logger.error(f"{name} stopped on fatal error")
            raise
        except Exception as e:
            logger.error(f"Error in {name}: {e}")

    logger.info(f"{name} task stopped")


async def run_sync_loop(
    synchronizer: WalletSynchronizer,
    interval: float,
    on_result: Callable[[SyncResult], Awaitable[None]] | None = None,
    running_check: Callable[[], bool] | None = None,
) -> None:
    """
    Sync repeatedly, handing every non-empty tick result to ``on_result``.

    Synchronization errors (wrong first height, fork deeper than the
    checkpoint window, no key manager) stop the loop and propagate.
    """

    async def tick() -> None:
        result = await synchronizer.sync()
        if on_result is not None and (result.blocks_processed or result.fork_detected):
            await on_result(result)

    await run_periodic_task(
        name="wallet sync",
        callback=tick,
        interval=interval,
        running_check=running_check,
        fatal_exceptions=(SyncError,),
    )
