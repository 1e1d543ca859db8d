from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .settings import settings

logger = logging.getLogger("lsc")

_db_path: str | None = None

_LOG_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def configure(path: str | None) -> None:
    """Point the state database somewhere other than `settings.db_path`."""
    global _db_path
    _db_path = path


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (Docker creates one when a
    missing bind-mount source is a file path), the DB file goes inside it.
    """
    p = os.path.abspath(os.path.expanduser(_db_path or settings.db_path))

    if os.path.isdir(p):
        p = os.path.join(p, "lsc-state.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS applied (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              service_name TEXT NOT NULL UNIQUE,
              container_id TEXT NOT NULL,
              image TEXT NOT NULL,
              fingerprint TEXT NOT NULL,
              applied_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              stage TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, service_name: str | None = None, stage: str | None = None) -> None:
    level = level.upper()
    prefix = f"[{service_name}:{stage}] " if service_name and stage else f"[{service_name}] " if service_name else ""
    logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s%s", prefix, message)
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, stage, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level, service_name, stage, message),
        )


@dataclass(frozen=True)
class AppliedRow:
    id: int
    service_name: str
    container_id: str
    image: str
    fingerprint: str
    applied_at: str


def record_applied(service_name: str, container_id: str, image: str, fingerprint: str) -> AppliedRow:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO applied (service_name, container_id, image, fingerprint, applied_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(service_name) DO UPDATE SET
              container_id=excluded.container_id,
              image=excluded.image,
              fingerprint=excluded.fingerprint,
              applied_at=excluded.applied_at
            """,
            (service_name, container_id, image, fingerprint, utc_now()),
        )
        row = conn.execute("SELECT * FROM applied WHERE service_name=?", (service_name,)).fetchone()
        return AppliedRow(**dict(row))


def get_applied(service_name: str) -> AppliedRow | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM applied WHERE service_name=?", (service_name,)).fetchone()
        return AppliedRow(**dict(row)) if row else None


def list_applied() -> list[AppliedRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM applied ORDER BY service_name").fetchall()
        return [AppliedRow(**dict(r)) for r in rows]


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
