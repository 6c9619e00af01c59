"""Recurring refresh of every active host's status and container snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from fleetcache.collaborators import HostRepository, PersistenceConnection
from fleetcache.models import Host
from fleetcache.refreshers import HostContainerRefresher, HostStatusRefresher

logger = logging.getLogger("fleetcache.scheduler")


class RefreshScheduler:
    """Owns the polling timer and runs refresh passes.

    ``start()`` and ``stop()`` must be called from inside a running event loop.
    Stopping cancels future ticks only; a pass that is already running finishes
    and its writes land in the stores.
    """

    def __init__(
        self,
        repository: HostRepository,
        status_refresher: HostStatusRefresher,
        container_refresher: HostContainerRefresher,
        *,
        interval_seconds: float,
        connection: Optional[PersistenceConnection] = None,
        max_concurrency: int = 10,
    ):
        self._repository = repository
        self._status_refresher = status_refresher
        self._container_refresher = container_refresher
        self._interval = float(interval_seconds)
        self._connection = connection
        self._max_concurrency = max(int(max_concurrency), 1)
        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._pass_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pass_in_flight(self) -> bool:
        return self._pass_task is not None and not self._pass_task.done()

    def start(self) -> bool:
        """Run one pass now and arm the timer. Returns False if already running."""
        if self._running:
            logger.warning("Cache polling is already running")
            return False

        self._running = True
        logger.info("Starting cache polling, refreshing every %.0fs", self._interval)
        self._trigger_pass()
        self._timer_task = asyncio.create_task(self._tick_loop(), name="fleetcache-refresh-timer")
        return True

    def stop(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        if self._running:
            logger.info("Cache polling stopped")
        self._running = False

    async def wait_idle(self) -> None:
        """Wait for the in-flight pass, if any, to finish."""
        task = self._pass_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def refresh_now(self) -> int:
        """Run a pass outside the schedule, joining the current one if a pass is in flight."""
        task = self._pass_task
        if task is None or task.done():
            task = self._spawn_pass()
        return await asyncio.shield(task)

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._trigger_pass()

    def _trigger_pass(self) -> Optional[asyncio.Task]:
        if self.pass_in_flight:
            logger.warning("Previous refresh pass still running; skipping this tick")
            return None
        return self._spawn_pass()

    def _spawn_pass(self) -> asyncio.Task:
        self._pass_task = asyncio.create_task(self.run_pass(), name="fleetcache-refresh-pass")
        return self._pass_task

    async def run_pass(self) -> int:
        """Refresh every active host once. Returns the number of hosts processed, never raises."""
        start = time.monotonic()
        logger.info("Cache refresh pass started")
        try:
            await self._ensure_connected()
            hosts = await self._load_hosts()
            semaphore = asyncio.Semaphore(self._max_concurrency)
            await asyncio.gather(*(self._refresh_host(host, semaphore) for host in hosts))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Cache refresh pass failed")
            return 0

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("Cache refresh pass finished hosts=%d duration_ms=%d", len(hosts), elapsed)
        return len(hosts)

    async def _ensure_connected(self) -> None:
        if self._connection is not None and not self._connection.is_connected:
            await self._connection.connect()

    async def _load_hosts(self) -> list[Host]:
        try:
            return list(await self._repository.list_active_hosts())
        except Exception:
            logger.exception("Failed loading active hosts")
            return []

    async def _refresh_host(self, host: Host, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            results = await asyncio.gather(
                self._status_refresher.refresh(host),
                self._container_refresher.refresh(host),
                return_exceptions=True,
            )
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error(
                    "Unexpected failure refreshing host %s (%s)",
                    host.name,
                    host.id,
                    exc_info=result,
                )
