"""fleetcache API: cached host status and container inventory for dashboards."""

import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from fleetcache import config
from fleetcache.cache_service import HostCacheService, HostNotFoundError
from fleetcache.docker_api import DockerEngineClient
from fleetcache.hosts_db import HostsDatabase
from fleetcache.log_redact import install_log_redaction, redact_url
from fleetcache.models import (
    CachedHostContainers,
    CachedHostStatus,
    CacheStats,
    CreateHostRequest,
    Host,
    HostContainerItem,
    HostStatusSnapshot,
    RefreshResponse,
    SetHostStatusRequest,
    UpdateHostRequest,
)

# --- Logging ---
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
install_log_redaction()
logger = logging.getLogger("fleetcache.api")


def build_cache_service(db: HostsDatabase) -> HostCacheService:
    docker_client = DockerEngineClient(db.get_docker_url, verify_ssl=config.DOCKER_VERIFY_SSL)
    return HostCacheService(
        repository=db,
        probe=docker_client,
        lister=docker_client,
        connection=db,
        ttl_seconds=config.CACHE_TTL_SECONDS,
        max_concurrency=config.MAX_CONCURRENCY,
    )


hosts_db = HostsDatabase(config.HOSTS_DB_PATH)
cache_service = build_cache_service(hosts_db)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    if not config.ADMIN_TOKEN:
        logger.warning("ADMIN_TOKEN is not set; admin endpoints are disabled.")
    await hosts_db.connect()
    if config.AUTOSTART_POLLING:
        cache_service.start()
    try:
        yield
    finally:
        await cache_service.shutdown()


# --- App ---
app = FastAPI(
    title="fleetcache",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=_lifespan,
)

if config.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )


def _require_admin(authorization: str = Header(default="")) -> None:
    if not config.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is disabled",
        )

    prefix = "Bearer "
    token = authorization[len(prefix):] if authorization.startswith(prefix) else ""
    if not hmac.compare_digest(token, config.ADMIN_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


@app.get("/api/health")
async def health():
    return {"status": "ok", "polling": cache_service.scheduler.is_running}


@app.get("/api/hosts/status", response_model=list[CachedHostStatus])
async def list_host_statuses():
    return cache_service.get_all_server_statuses()


@app.get("/api/hosts/{host_id}/status", response_model=CachedHostStatus)
async def get_host_status(host_id: int):
    cached = cache_service.get_server_status(host_id)
    if cached is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cached status for host")
    return cached


@app.put(
    "/api/hosts/{host_id}/status",
    response_model=HostStatusSnapshot,
    dependencies=[Depends(_require_admin)],
)
async def put_host_status(host_id: int, body: SetHostStatusRequest):
    return cache_service.set_server_status(host_id, body.status)


def _public_host(host: Host) -> Host:
    return host.model_copy(update={"docker_url": redact_url(host.docker_url)})


async def _refresh_after_host_change(host_id: int) -> None:
    # The host write already succeeded; a failed refresh is picked up by the next pass.
    try:
        await cache_service.update_all_caches()
    except Exception as exc:
        logger.warning(
            "Cache refresh after change to host %s failed (%s)",
            host_id,
            exc.__class__.__name__,
        )


@app.post(
    "/api/hosts",
    response_model=Host,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_require_admin)],
)
async def create_host(body: CreateHostRequest):
    host = await asyncio.to_thread(
        hosts_db.create_host,
        body.name,
        body.docker_url,
        is_active=body.is_active,
    )
    logger.info("Registered host %s (%s)", host.name, host.id)
    await _refresh_after_host_change(host.id)
    return _public_host(host)


@app.patch(
    "/api/hosts/{host_id}",
    response_model=Host,
    dependencies=[Depends(_require_admin)],
)
async def update_host(host_id: int, body: UpdateHostRequest):
    updated = await asyncio.to_thread(hosts_db.set_active, host_id, body.is_active)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Host not found")
    host = await asyncio.to_thread(hosts_db.get_host, host_id)
    if host is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Host not found")
    logger.info("Host %s (%s) is_active=%s", host.name, host.id, host.is_active)
    if not host.is_active:
        cache_service.clear_server_cache(host.id)
    await _refresh_after_host_change(host.id)
    return _public_host(host)


@app.get("/api/containers", response_model=list[HostContainerItem])
async def list_all_containers():
    return cache_service.get_all_containers()


@app.get("/api/hosts/{host_id}/containers", response_model=CachedHostContainers)
async def get_host_containers(host_id: int):
    cached = cache_service.get_containers(host_id)
    if cached is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cached containers for host")
    return cached


@app.get("/api/cache/stats", response_model=CacheStats)
async def cache_stats():
    return cache_service.get_cache_stats()


@app.post(
    "/api/cache/refresh",
    response_model=RefreshResponse,
    dependencies=[Depends(_require_admin)],
)
async def refresh_all():
    processed = await cache_service.update_all_caches()
    return RefreshResponse(hosts_processed=processed)


@app.post(
    "/api/cache/hosts/{host_id}/refresh",
    response_model=CachedHostStatus,
    dependencies=[Depends(_require_admin)],
)
async def refresh_host(host_id: int):
    try:
        await cache_service.force_update_server_cache(host_id)
    except HostNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Cache refresh failed ({exc.__class__.__name__})",
        ) from exc

    cached: Optional[CachedHostStatus] = cache_service.get_server_status(host_id)
    if cached is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cached status for host")
    return cached


@app.delete("/api/cache/hosts/{host_id}", dependencies=[Depends(_require_admin)])
async def clear_host_cache(host_id: int):
    cache_service.clear_server_cache(host_id)
    return {"cleared": host_id}


@app.delete("/api/cache", dependencies=[Depends(_require_admin)])
async def clear_cache():
    cache_service.clear_all_cache()
    return {"cleared": "all"}
