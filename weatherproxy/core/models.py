"""Lightweight database helpers for storing upstream weather snapshots."""
from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Tuple
from urllib.parse import unquote, urlparse

from weatherproxy.core.abstractions import Snapshot

try:  # Optional import for MySQL support
    import pymysql
    from pymysql.cursors import DictCursor
except ImportError:  # pragma: no cover - pymysql is optional
    pymysql = None  # type: ignore
    DictCursor = None  # type: ignore


logger = logging.getLogger(__name__)

TABLE = "weather_snapshots"


class StoreError(RuntimeError):
    """Raised when the snapshot store cannot complete an operation."""


def _database_errors() -> Tuple[type, ...]:
    if pymysql is None:
        return (sqlite3.Error,)
    return (sqlite3.Error, pymysql.MySQLError)


class DatabaseSession:
    """Minimal DB-API session wrapper with context aware placeholders."""

    def __init__(self, connection, placeholder: str, driver: str):
        self.connection = connection
        self.placeholder = placeholder
        self.driver = driver

    # -- DB-API compatibility -------------------------------------------------
    def _prepare_sql(self, sql: str) -> str:
        if self.placeholder == "?":
            return sql
        return sql.replace("?", self.placeholder)

    def execute(self, sql: str, params: tuple = ()):
        cursor = self.connection.cursor()
        cursor.execute(self._prepare_sql(sql), params)
        return cursor

    def fetchone(self, sql: str, params: tuple = ()):
        cursor = self.execute(sql, params)
        row = cursor.fetchone()
        cursor.close()
        return row

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    def close(self) -> None:
        self.connection.close()


class SessionFactory:
    def __init__(self, url: str, placeholder: str, driver: str):
        self.url = url
        self.placeholder = placeholder
        self.driver = driver

    def __call__(self) -> DatabaseSession:
        connection = create_connection(self.url, self.driver)
        return DatabaseSession(connection, self.placeholder, self.driver)


# ---------------------------------------------------------------------------

def detect_driver(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    if parsed.scheme.startswith("mysql"):
        if pymysql is None:
            raise RuntimeError("PyMySQL is required for MySQL connections")
        return "mysql", "%s"
    if parsed.scheme.startswith("sqlite") or parsed.scheme == "":
        return "sqlite", "?"
    raise ValueError(f"Unsupported database scheme: {parsed.scheme}")


def sqlite_path(url: str) -> str:
    """Resolve ``sqlite:///relative.db`` and ``sqlite:////absolute.db`` to a file path."""
    parsed = urlparse(url)
    if not parsed.scheme:
        return os.path.abspath(url)
    path = unquote(parsed.path)
    if path.startswith("/"):
        path = path[1:]
    if not path or path == ":memory:":
        # Every connection would see its own empty database.
        raise ValueError("In-memory SQLite databases are not supported for the snapshot store")
    if path.startswith("/"):
        return path
    return os.path.abspath(path)


def create_connection(url: str, driver: str):
    if driver == "sqlite":
        connection = sqlite3.connect(sqlite_path(url), check_same_thread=False)
        connection.row_factory = sqlite3.Row
        return connection

    if driver == "mysql":
        if pymysql is None or DictCursor is None:
            raise RuntimeError("PyMySQL is required for MySQL connections")
        parsed = urlparse(url)
        params = {
            "host": parsed.hostname or "localhost",
            "user": unquote(parsed.username) if parsed.username else None,
            "password": unquote(parsed.password) if parsed.password else None,
            "database": parsed.path.lstrip("/") or None,
            "port": parsed.port or 3306,
            "cursorclass": DictCursor,
            "autocommit": False,
            "charset": "utf8mb4",
        }
        return pymysql.connect(**params)

    raise ValueError(f"Unsupported driver: {driver}")


def create_session_factory(url: str) -> SessionFactory:
    driver, placeholder = detect_driver(url)
    return SessionFactory(url, placeholder, driver)


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[DatabaseSession]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------

def run_migrations(session_factory: SessionFactory) -> None:
    with session_scope(session_factory) as session:
        if session.driver == "mysql":
            session.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE} (
                    id BIGINT PRIMARY KEY AUTO_INCREMENT,
                    payload LONGTEXT NOT NULL,
                    captured_at VARCHAR(40) NOT NULL,
                    INDEX idx_{TABLE}_captured_at (captured_at DESC)
                )
                """
            )
            return
        session.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                payload TEXT NOT NULL,
                captured_at TEXT NOT NULL
            )
            """
        )
        session.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{TABLE}_captured_at
            ON {TABLE} (captured_at DESC)
            """
        )


# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    # Fixed width keeps lexical order equal to chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _snapshot_from_row(row) -> Snapshot:
    return Snapshot(
        id=int(row["id"]),
        payload=row["payload"],
        captured_at=datetime.fromisoformat(row["captured_at"]),
    )


class SnapshotStore:
    """Append-only snapshot table; every call runs in its own transaction."""

    def __init__(self, session_factory: SessionFactory, clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def append(self, payload: str) -> Snapshot:
        captured_at = format_timestamp(self._clock())
        try:
            with session_scope(self._session_factory) as session:
                cursor = session.execute(
                    f"INSERT INTO {TABLE} (payload, captured_at) VALUES (?, ?)",
                    (payload, captured_at),
                )
                snapshot_id = cursor.lastrowid
                cursor.close()
        except _database_errors() as exc:
            logger.error("Failed to persist weather snapshot", exc_info=exc)
            raise StoreError("failed to persist weather snapshot") from exc
        return Snapshot(id=int(snapshot_id), payload=payload, captured_at=datetime.fromisoformat(captured_at))

    def latest(self) -> Optional[Snapshot]:
        try:
            with session_scope(self._session_factory) as session:
                row = session.fetchone(
                    f"SELECT id, payload, captured_at FROM {TABLE} ORDER BY captured_at DESC, id DESC LIMIT 1"
                )
        except _database_errors() as exc:
            logger.error("Failed to read latest weather snapshot", exc_info=exc)
            raise StoreError("failed to read latest weather snapshot") from exc
        if row is None:
            return None
        return _snapshot_from_row(row)

    def count(self) -> int:
        try:
            with session_scope(self._session_factory) as session:
                row = session.fetchone(f"SELECT COUNT(*) AS cnt FROM {TABLE}")
        except _database_errors() as exc:
            raise StoreError("failed to count weather snapshots") from exc
        if isinstance(row, dict):
            return int(row["cnt"])
        return int(row[0])


__all__ = [
    "SnapshotStore",
    "StoreError",
    "create_session_factory",
    "run_migrations",
    "session_scope",
]
