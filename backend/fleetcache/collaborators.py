"""Interfaces the cache consumes; concrete defaults live in hosts_db and docker_api."""

from __future__ import annotations

from typing import Protocol

from fleetcache.models import ContainerSummary, Host


class HostRepository(Protocol):
    async def list_active_hosts(self) -> list[Host]:
        """Active hosts, most recently created first. May raise."""
        ...


class ReachabilityProbe(Protocol):
    async def check_connection(self, host_id: int) -> bool:
        ...


class ContainerLister(Protocol):
    async def list_containers(self, host_id: int, include_all: bool = True) -> list[ContainerSummary]:
        ...


class PersistenceConnection(Protocol):
    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...
