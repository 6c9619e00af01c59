"""Read, write and admin surface over the host status and container caches."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from fleetcache.collaborators import ContainerLister, HostRepository, PersistenceConnection, ReachabilityProbe
from fleetcache.models import (
    CachedHostContainers,
    CachedHostStatus,
    CacheStats,
    HostContainerItem,
    HostContainerSnapshot,
    HostStatus,
    HostStatusSnapshot,
)
from fleetcache.refreshers import HostContainerRefresher, HostStatusRefresher, utc_from
from fleetcache.scheduler import RefreshScheduler
from fleetcache.ttl_store import Clock, TTLStore

logger = logging.getLogger("fleetcache.cache")

DEFAULT_TTL_SECONDS = 10 * 60


class HostNotFoundError(LookupError):
    """Raised when a host id is not among the active hosts."""

    def __init__(self, host_id: int) -> None:
        self.host_id = host_id
        super().__init__(f"Host {host_id} does not exist or is not active")


def _age_ms(age_seconds: float) -> int:
    return int(age_seconds * 1000)


class HostCacheService:
    """Owns both snapshot stores and the scheduler that keeps them fresh.

    Build one per process with the collaborators injected, call :meth:`start`
    once the event loop is running and :meth:`shutdown` when the process stops.
    """

    def __init__(
        self,
        *,
        repository: HostRepository,
        probe: ReachabilityProbe,
        lister: ContainerLister,
        connection: Optional[PersistenceConnection] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_concurrency: int = 10,
        clock: Clock = time.time,
    ):
        self._repository = repository
        self._clock = clock
        self._ttl = float(ttl_seconds)
        self.status_store: TTLStore[HostStatusSnapshot] = TTLStore(self._ttl, clock=clock)
        self.container_store: TTLStore[HostContainerSnapshot] = TTLStore(self._ttl, clock=clock)
        self.status_refresher = HostStatusRefresher(probe, self.status_store, clock=clock)
        self.container_refresher = HostContainerRefresher(lister, self.container_store, clock=clock)
        self.scheduler = RefreshScheduler(
            repository,
            self.status_refresher,
            self.container_refresher,
            interval_seconds=self._ttl,
            connection=connection,
            max_concurrency=max_concurrency,
        )

    # --- lifecycle ---

    def start(self) -> bool:
        return self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.scheduler.wait_idle()

    async def update_all_caches(self) -> int:
        return await self.scheduler.refresh_now()

    # --- reads ---

    def get_server_status(self, host_id: int) -> Optional[CachedHostStatus]:
        hit = self.status_store.read_valid(host_id)
        if hit is None:
            return None
        snapshot, age = hit
        return CachedHostStatus(**snapshot.model_dump(), from_cache=True, cache_age_ms=_age_ms(age))

    def get_containers(self, host_id: int) -> Optional[CachedHostContainers]:
        hit = self.container_store.read_valid(host_id)
        if hit is None:
            return None
        snapshot, age = hit
        return CachedHostContainers(**snapshot.model_dump(), from_cache=True, cache_age_ms=_age_ms(age))

    def get_all_server_statuses(self) -> list[CachedHostStatus]:
        return [
            CachedHostStatus(**snapshot.model_dump(), from_cache=True, cache_age_ms=_age_ms(age))
            for _, snapshot, age in self.status_store.valid_items()
        ]

    def get_all_containers(self) -> list[HostContainerItem]:
        items: list[HostContainerItem] = []
        for _, snapshot, _age in self.container_store.valid_items():
            for container in snapshot.containers:
                items.append(
                    HostContainerItem(
                        **container.model_dump(),
                        host_id=snapshot.host_id,
                        host_name=snapshot.host_name,
                    )
                )
        return items

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            server_status_cache=self.status_store.stats(),
            container_cache=self.container_store.stats(),
            cache_duration_ms=int(self._ttl * 1000),
            is_polling=self.scheduler.is_running,
        )

    # --- writes ---

    def set_server_status(self, host_id: int, status: HostStatus) -> HostStatusSnapshot:
        """Cache a status the caller learned some other way, bypassing the probe."""
        stamp = self._clock()
        now = utc_from(stamp)
        snapshot = HostStatusSnapshot(
            host_id=host_id,
            status=HostStatus(status),
            last_checked=now,
            timestamp=now,
        )
        self.status_store.set(host_id, snapshot, timestamp=stamp)
        logger.debug("Host %s status cached: %s", host_id, snapshot.status.value)
        return snapshot

    def clear_server_cache(self, host_id: int) -> None:
        self.status_store.delete(host_id)
        self.container_store.delete(host_id)
        logger.info("Cleared cache for host %s", host_id)

    def clear_all_cache(self) -> None:
        self.status_store.clear()
        self.container_store.clear()
        logger.info("Cleared all host caches")

    async def force_update_server_cache(
        self, host_id: int
    ) -> tuple[HostStatusSnapshot, HostContainerSnapshot]:
        """Refresh one host now. Raises :class:`HostNotFoundError` if it is not active."""
        hosts = await self._repository.list_active_hosts()
        host = next((candidate for candidate in hosts if candidate.id == host_id), None)
        if host is None:
            logger.warning("Forced cache refresh requested for unknown host %s", host_id)
            raise HostNotFoundError(host_id)

        try:
            status_snapshot, container_snapshot = await asyncio.gather(
                self.status_refresher.refresh(host),
                self.container_refresher.refresh(host),
            )
        except Exception:
            logger.exception("Forced cache refresh failed for host %s", host_id)
            raise

        logger.info("Forced cache refresh finished for host %s (%s)", host.name, host.id)
        return status_snapshot, container_snapshot
