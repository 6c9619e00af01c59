"""Docker Engine API client: the default reachability probe and container lister."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import httpx

from fleetcache import config
from fleetcache.log_redact import httpx_event_hooks
from fleetcache.models import ContainerSummary

logger = logging.getLogger("fleetcache.docker")

TIMEOUT = httpx.Timeout(timeout=config.REQUEST_TIMEOUT_SECONDS)

UrlResolver = Callable[[int], Optional[str]]


class DockerAPIError(Exception):
    """Raised when a Docker endpoint is missing, unreachable or answers with an error."""


def normalize_engine_url(docker_url: str) -> tuple[str, Optional[str]]:
    """Map a Docker host URL to ``(base_url, unix_socket_path)`` for httpx.

    ``tcp://`` becomes ``http://``; ``unix:///path`` is served over the socket.
    """
    url = docker_url.strip()
    if url.startswith("unix://"):
        return "http://docker", url[len("unix://"):]
    if url.startswith("tcp://"):
        url = "http://" + url[len("tcp://"):]
    return url.rstrip("/"), None


class DockerEngineClient:
    """Talks to each host's Docker Engine over HTTP.

    ``resolve_url`` maps a host id to its Docker URL and is called in a worker
    thread, so it may block (the SQLite lookup does).
    """

    def __init__(
        self,
        resolve_url: UrlResolver,
        *,
        timeout: httpx.Timeout = TIMEOUT,
        verify_ssl: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._resolve_url = resolve_url
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._transport = transport

    async def _client_for(self, host_id: int) -> httpx.AsyncClient:
        docker_url = await asyncio.to_thread(self._resolve_url, host_id)
        if not docker_url:
            raise DockerAPIError(f"Host {host_id} has no Docker endpoint configured")

        base_url, socket_path = normalize_engine_url(docker_url)
        transport = self._transport
        if transport is None and socket_path:
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=self._timeout,
            verify=self._verify_ssl,
            transport=transport,
            event_hooks=httpx_event_hooks(),
        )

    async def _get(self, host_id: int, path: str, params: Optional[dict[str, str]] = None) -> httpx.Response:
        client = await self._client_for(host_id)
        try:
            async with client:
                return await client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise DockerAPIError(f"Timed out contacting Docker on host {host_id}") from exc
        except httpx.HTTPError as exc:
            raise DockerAPIError(
                f"Docker request {path} on host {host_id} failed ({exc.__class__.__name__}: {exc})"
            ) from exc

    async def check_connection(self, host_id: int) -> bool:
        response = await self._get(host_id, "/_ping")
        online = response.status_code == 200
        if not online:
            logger.info("Docker ping on host %s answered %d", host_id, response.status_code)
        return online

    async def list_containers(self, host_id: int, include_all: bool = True) -> list[ContainerSummary]:
        params = {"all": "1"} if include_all else None
        response = await self._get(host_id, "/containers/json", params=params)
        if response.status_code != 200:
            raise DockerAPIError(
                f"Docker on host {host_id} answered {response.status_code} listing containers"
            )
        payload = response.json()
        if not isinstance(payload, list):
            raise DockerAPIError(f"Unexpected container list payload from host {host_id}")
        return [ContainerSummary.from_engine(item) for item in payload if isinstance(item, dict)]
