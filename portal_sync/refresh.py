"""Periodic reload loop for monitoring-style stores."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from portal_common.logging import get_logger

logger = get_logger(__name__)


class AutoRefreshDriver:
    """Re-run a store refresh on a fixed interval while the caller stays authorized.

    The loop owns exactly one task. ``stop()`` cancels and awaits it, so once
    it returns no further refresh can be started.
    """

    def __init__(
        self,
        name: str,
        refresh: Callable[[], Awaitable[None]],
        interval: float,
        is_authorized: Callable[[], bool],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.interval = interval
        self._refresh = refresh
        self._is_authorized = is_authorized
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"auto-refresh:{self.name}")
        logger.info("auto_refresh_started", store=self.name, interval_sec=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("auto_refresh_stopped", store=self.name, cycles=self.cycles)

    async def _run(self) -> None:
        try:
            while True:
                await self._sleep(self.interval)
                if not self._is_authorized():
                    logger.info("auto_refresh_unauthorized", store=self.name)
                    return
                try:
                    await self._refresh()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.warning("auto_refresh_failed", store=self.name, error=str(exc))
                self.cycles += 1
        except asyncio.CancelledError:
            logger.debug("auto_refresh_cancelled", store=self.name)
            raise
