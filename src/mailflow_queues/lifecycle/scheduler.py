"""
Module: scheduler.py
Description: Single-flight refresh scheduler for live queue views.

Live refresh is opt-in. Refreshing a message view receives messages,
which increments their receive counts and hides them for the peek
visibility timeout, so polling is only started explicitly.

Key Components:
- RefreshScheduler: periodic refresh with start/stop and single-flight runs

Dependencies: asyncio, typing, utils
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from mailflow_queues.utils.logger import get_logger

logger = get_logger(__name__)


class RefreshScheduler:
    """
    Runs a refresh coroutine periodically, never more than one at a time.

    A refresh requested while another is in flight joins the in-flight
    run instead of starting a second one. The next periodic run starts
    only after the previous one completed.

    Example:
        >>> scheduler = RefreshScheduler(inspector.list_queues, interval_seconds=30)
        >>> scheduler.start()
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        refresh_fn: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        name: str = "refresh",
        on_result: Optional[Callable[[Any], None]] = None
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.refresh_fn = refresh_fn
        self.interval_seconds = interval_seconds
        self.name = name
        self.on_result = on_result
        self.last_result: Any = None
        self.last_error: Optional[BaseException] = None
        self.runs = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start periodic refreshes. Starting a running scheduler does nothing."""
        if self.running:
            return
        self._loop_task = asyncio.ensure_future(self._run_loop())
        logger.info("Refresh scheduler started", name=self.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop periodic refreshes and cancel a refresh in flight."""
        tasks = [task for task in (self._loop_task, self._inflight) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Refresh ended with error during stop", name=self.name, error=str(e))
        self._loop_task = None
        self._inflight = None
        logger.info("Refresh scheduler stopped", name=self.name, runs=self.runs)

    async def refresh(self) -> Any:
        """
        Run one refresh now, or join the refresh already in flight.

        Returns:
            The refresh result

        Raises:
            Whatever the refresh coroutine raised
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._run_once())
        return await asyncio.shield(self._inflight)

    async def _run_once(self) -> Any:
        try:
            result = await self.refresh_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = e
            raise
        self.runs += 1
        self.last_result = result
        self.last_error = None
        if self.on_result is not None:
            self.on_result(result)
        return result

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Scheduled refresh failed",
                    name=self.name,
                    error=str(e),
                    error_type=type(e).__name__
                )
            await asyncio.sleep(self.interval_seconds)
