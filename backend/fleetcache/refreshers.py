"""Per-host refreshers that turn probe/list results into cached snapshots."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Generic, TypeVar, Union

from fleetcache.collaborators import ContainerLister, ReachabilityProbe
from fleetcache.log_redact import redact_text
from fleetcache.models import Host, HostContainerSnapshot, HostStatus, HostStatusSnapshot
from fleetcache.ttl_store import Clock, TTLStore

logger = logging.getLogger("fleetcache.refresh")

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failed:
    reason: str


Outcome = Union[Ok[T], Failed]


async def attempt(call: Awaitable[T]) -> Outcome[T]:
    """Await a collaborator call and capture any failure as :class:`Failed`."""
    try:
        return Ok(await call)
    except Exception as exc:
        reason = redact_text(str(exc)) or exc.__class__.__name__
        return Failed(reason)


def utc_from(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class HostStatusRefresher:
    def __init__(
        self,
        probe: ReachabilityProbe,
        store: TTLStore[HostStatusSnapshot],
        *,
        clock: Clock = time.time,
    ):
        self._probe = probe
        self._store = store
        self._clock = clock

    async def refresh(self, host: Host) -> HostStatusSnapshot:
        """Probe *host* and cache the result. Returns the snapshot, never raises on probe failure."""
        outcome = await attempt(self._probe.check_connection(host.id))
        stamp = self._clock()
        now = utc_from(stamp)

        if isinstance(outcome, Ok):
            status = HostStatus.ONLINE if outcome.value else HostStatus.OFFLINE
            error = None
            logger.debug("Host %s (%s) status cached: %s", host.name, host.id, status.value)
        else:
            status = HostStatus.OFFLINE
            error = outcome.reason
            logger.warning("Status refresh failed for host %s (%s): %s", host.name, host.id, error)

        snapshot = HostStatusSnapshot(
            host_id=host.id,
            host_name=host.name,
            status=status,
            last_checked=now,
            timestamp=now,
            error=error,
        )
        self._store.set(host.id, snapshot, timestamp=stamp)
        return snapshot


class HostContainerRefresher:
    def __init__(
        self,
        lister: ContainerLister,
        store: TTLStore[HostContainerSnapshot],
        *,
        clock: Clock = time.time,
    ):
        self._lister = lister
        self._store = store
        self._clock = clock

    async def refresh(self, host: Host) -> HostContainerSnapshot:
        """List every container on *host*, running or not, and cache the list."""
        outcome = await attempt(self._lister.list_containers(host.id, include_all=True))
        stamp = self._clock()
        now = utc_from(stamp)

        if isinstance(outcome, Ok):
            containers = list(outcome.value)
            error = None
            logger.debug("Host %s (%s) container cache updated: %d containers", host.name, host.id, len(containers))
        else:
            containers = []
            error = outcome.reason
            logger.warning("Container refresh failed for host %s (%s): %s", host.name, host.id, error)

        snapshot = HostContainerSnapshot(
            host_id=host.id,
            host_name=host.name,
            containers=containers,
            last_updated=now,
            timestamp=now,
            error=error,
        )
        self._store.set(host.id, snapshot, timestamp=stamp)
        return snapshot
