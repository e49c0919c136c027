from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar

from db.migrate import apply_sqlite_migrations
from research.errors import PersistenceUnavailable

T = TypeVar("T")


def default_migrations_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "migrations")


@dataclass
class DbHandle:
    """One SQLite connection plus the asyncio lock that serializes access to it.

    Built once at startup and handed to every service; nothing reaches for a
    module-level connection.
    """

    conn: sqlite3.Connection
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    path: str = ":memory:"
    _closed: bool = False

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a sync store function off the event loop, under the lock.

        sqlite3 errors become PersistenceUnavailable so callers never see
        driver-specific exceptions.
        """
        if self._closed:
            raise PersistenceUnavailable("database handle is closed")
        async with self.lock:
            try:
                return await asyncio.to_thread(fn, self.conn, *args, **kwargs)
            except sqlite3.Error as e:
                raise PersistenceUnavailable(f"{getattr(fn, '__name__', 'store call')} failed: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.conn.close()
        print(f"[DB] closed {self.path}")

    @property
    def closed(self) -> bool:
        return self._closed


def open_db_handle(db_path: str, migrations_dir: str | None = None) -> DbHandle:
    # check_same_thread=False because discord.py event loop + to_thread usage
    conn = sqlite3.connect(db_path, check_same_thread=False)
    cur = conn.cursor()
    if db_path != ":memory:":
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
    cur.execute("PRAGMA foreign_keys=ON;")
    applied = apply_sqlite_migrations(conn, migrations_dir or default_migrations_dir())
    print(f"[DB] opened {db_path} migrations_applied={len(applied)}")
    return DbHandle(conn=conn, path=db_path)
