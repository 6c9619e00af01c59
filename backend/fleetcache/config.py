"""Configuration read from environment variables."""

import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str) -> list[str]:
    raw = os.getenv(name, "")
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_secret(name: str, default: str = "") -> str:
    """Resolve an env value, falling back to the file named by ``<name>_FILE``."""
    value = os.getenv(name)
    if value:
        return value

    file_path = (os.getenv(f"{name}_FILE") or "").strip()
    if file_path:
        try:
            secret = Path(file_path).read_text(encoding="utf-8").strip()
        except OSError:
            return default
        if secret:
            return secret
    return default


# One TTL for every snapshot; also the polling interval.
CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "600"))
MAX_CONCURRENCY: int = int(os.getenv("MAX_CONCURRENCY", "10"))
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "5"))
AUTOSTART_POLLING: bool = _env_bool("AUTOSTART_POLLING", True)

HOSTS_DB_PATH: str = os.getenv("HOSTS_DB_PATH", "/data/hosts.db")
DOCKER_VERIFY_SSL: bool = _env_bool("DOCKER_VERIFY_SSL", False)

ADMIN_TOKEN: str = _env_secret("ADMIN_TOKEN")
CORS_ORIGINS: list[str] = _env_csv("CORS_ORIGINS")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
