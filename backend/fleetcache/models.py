"""Host, container and cache snapshot models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class HostStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class Host(BaseModel):
    id: int
    name: str
    docker_url: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = None


class ContainerSummary(BaseModel):
    id: str
    name: str = ""
    image: str = ""
    state: str = ""
    status: str = ""
    created: Optional[int] = None
    ports: list[dict[str, Any]] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_engine(cls, payload: dict[str, Any]) -> "ContainerSummary":
        """Build a summary from one item of the engine's ``/containers/json`` list."""
        names = payload.get("Names") or []
        name = names[0].lstrip("/") if names else ""
        return cls(
            id=str(payload.get("Id", "")),
            name=name,
            image=str(payload.get("Image", "")),
            state=str(payload.get("State", "")),
            status=str(payload.get("Status", "")),
            created=payload.get("Created"),
            ports=list(payload.get("Ports") or []),
            labels=dict(payload.get("Labels") or {}),
        )


class HostStatusSnapshot(BaseModel):
    host_id: int
    host_name: Optional[str] = None
    status: HostStatus
    last_checked: datetime
    timestamp: datetime
    error: Optional[str] = None


class HostContainerSnapshot(BaseModel):
    host_id: int
    host_name: Optional[str] = None
    containers: list[ContainerSummary] = Field(default_factory=list)
    total: int = 0
    last_updated: datetime
    timestamp: datetime
    error: Optional[str] = None

    @model_validator(mode="after")
    def sync_total(self):
        self.total = len(self.containers)
        return self


class CachedHostStatus(HostStatusSnapshot):
    from_cache: bool = True
    cache_age_ms: int


class CachedHostContainers(HostContainerSnapshot):
    from_cache: bool = True
    cache_age_ms: int


class HostContainerItem(ContainerSummary):
    host_id: int
    host_name: Optional[str] = None


class StoreStats(BaseModel):
    total: int
    valid: int
    expired: int


class CacheStats(BaseModel):
    server_status_cache: StoreStats
    container_cache: StoreStats
    cache_duration_ms: int
    is_polling: bool


class SetHostStatusRequest(BaseModel):
    status: HostStatus


class RefreshResponse(BaseModel):
    hosts_processed: int


class CreateHostRequest(BaseModel):
    name: str = Field(min_length=1)
    docker_url: str = Field(min_length=1)
    is_active: bool = True


class UpdateHostRequest(BaseModel):
    is_active: bool
