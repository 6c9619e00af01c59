"""SQLite host registry: the default host repository and persistence connection."""

import asyncio
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from fleetcache.models import Host

logger = logging.getLogger("fleetcache.hosts_db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS hosts (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL,
    docker_url  TEXT    NOT NULL,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_hosts_active_created ON hosts(is_active, created_at);
"""


def _row_to_host(row: sqlite3.Row) -> Host:
    created_raw = row["created_at"]
    created_at = None
    if created_raw:
        created_at = datetime.fromisoformat(created_raw.replace("Z", "+00:00"))
    return Host(
        id=row["id"],
        name=row["name"],
        docker_url=row["docker_url"],
        is_active=bool(row["is_active"]),
        created_at=created_at,
    )


class HostsDatabase:
    def __init__(self, path: str):
        self.path = Path(path)
        self._local = threading.local()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _get_connection(self) -> sqlite3.Connection:
        """Return this thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn = conn
        return conn

    def init_db(self) -> None:
        conn = self._get_connection()
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        self._connected = True
        logger.info("Hosts database ready at %s", self.path)

    async def connect(self) -> None:
        await asyncio.to_thread(self.init_db)

    def fetch_active_hosts(self) -> list[Host]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT id, name, docker_url, is_active, created_at FROM hosts "
            "WHERE is_active = 1 ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [_row_to_host(row) for row in rows]

    async def list_active_hosts(self) -> list[Host]:
        return await asyncio.to_thread(self.fetch_active_hosts)

    def get_host(self, host_id: int) -> Optional[Host]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT id, name, docker_url, is_active, created_at FROM hosts WHERE id = ?",
            (host_id,),
        ).fetchone()
        return _row_to_host(row) if row else None

    def get_docker_url(self, host_id: int) -> Optional[str]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT docker_url FROM hosts WHERE id = ? AND is_active = 1",
            (host_id,),
        ).fetchone()
        return row["docker_url"] if row else None

    def create_host(self, name: str, docker_url: str, *, is_active: bool = True) -> Host:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO hosts (name, docker_url, is_active) VALUES (?, ?, ?)",
                (name, docker_url, int(is_active)),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        host = self.get_host(cursor.lastrowid)
        if host is None:
            raise RuntimeError(f"Host {cursor.lastrowid} vanished right after insert")
        return host

    def set_active(self, host_id: int, is_active: bool) -> bool:
        conn = self._get_connection()
        cursor = conn.execute(
            "UPDATE hosts SET is_active = ? WHERE id = ?",
            (int(is_active), host_id),
        )
        conn.commit()
        return cursor.rowcount > 0
