"""
Connection Watchdog
===================
Background loop that keeps a long-running process healthy.

Every interval it fires a tick in its own task and goes straight back to
sleep. A tick:
  1. Runs the cache memory-pressure check (may clear the cache).
  2. Pings the connection and reconnects once if the ping fails.

Ticks may overlap when a ping is slower than the interval; the reconnect
state machine's attempt counter bounds what overlapping ticks can do.
"""

import asyncio
from typing import Optional, Set

from loguru import logger

from mongolens.core.cache import MemoryCache
from mongolens.core.config import WatchdogConfig
from mongolens.core.connection import ConnectionManager, ConnectionStatus


class ConnectionWatchdog:
    """
    Periodic memory + liveness checker.

    Usage:
        watchdog = ConnectionWatchdog(connection, cache, config.watchdog)
        await watchdog.start()
        ...
        await watchdog.stop()
    """

    def __init__(
        self,
        connection: ConnectionManager,
        cache: MemoryCache,
        config: Optional[WatchdogConfig] = None,
    ):
        self.connection = connection
        self.cache = cache
        self.cfg = config or WatchdogConfig()
        self._task: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()
        self._running = False
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._running

    # ---- Lifecycle ----------------------------------------------- #

    async def start(self) -> None:
        if not self.cfg.enabled:
            logger.info("Connection watchdog disabled by config.")
            return
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="mongolens_watchdog")
        logger.info(f"Connection watchdog started, checking every {self.cfg.interval_seconds}s")

    async def stop(self) -> None:
        """Cancel the loop and any tick still in flight. Idempotent."""
        self._running = False
        pending = [t for t in self._ticks if not t.done()]
        if self._task and not self._task.done():
            pending.append(self._task)
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._ticks.clear()
        logger.info("Connection watchdog stopped.")

    # ---- Main loop ----------------------------------------------- #

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.cfg.interval_seconds)
                if self._running:
                    self._spawn_tick()
            except asyncio.CancelledError:
                break

    def _spawn_tick(self) -> asyncio.Task:
        task = asyncio.create_task(self.tick(), name=f"mongolens_watchdog_tick_{self.tick_count}")
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def tick(self) -> bool:
        """
        One watchdog pass. Returns True when the connection is usable afterwards.
        """
        self.tick_count += 1

        try:
            self.cache.report_memory_pressure(
                critical_threshold_mb=self.cfg.memory_critical_mb,
                warning_threshold_mb=self.cfg.memory_warning_mb,
            )
        except Exception as e:
            logger.error(f"Memory pressure check failed: {e}")

        if self.connection.status == ConnectionStatus.FAILED:
            return False

        try:
            return await self.connection.check_connection()
        except Exception as e:
            logger.error(f"Watchdog liveness check failed: {e}")
            return False
