from __future__ import annotations

import hashlib
import importlib.util
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


# 0001_survey_core.sql, 0004_backfill_refs.py
MIGRATION_FILE = re.compile(r"^(?P<version>\d{4})_(?P<name>[A-Za-z0-9_]+)\.(?P<kind>sql|py)$")

SCHEMA_MIGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    checksum TEXT NOT NULL,
    applied_at_utc TEXT NOT NULL
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    path: Path

    @property
    def kind(self) -> str:
        return self.path.suffix.lstrip(".")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()

    def run(self, conn: sqlite3.Connection) -> None:
        if self.kind == "sql":
            conn.executescript(self.path.read_text(encoding="utf-8"))
            return
        spec = importlib.util.spec_from_file_location(f"mochimochi_schema_{self.version}", str(self.path))
        if spec is None or spec.loader is None:
            raise RuntimeError(f"Cannot import migration {self.path.name}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        upgrade = getattr(module, "upgrade", None)
        if not callable(upgrade):
            raise RuntimeError(f"{self.path.name} defines no upgrade(conn)")
        upgrade(conn)


def discover_migrations(migrations_dir: str | Path) -> list[Migration]:
    """Numbered migration files in version order; other files are ignored."""
    base = Path(migrations_dir)
    if not base.is_dir():
        raise RuntimeError(f"Migrations directory not found: {base}")
    by_version: dict[str, Migration] = {}
    for path in base.iterdir():
        match = MIGRATION_FILE.match(path.name)
        if match is None or not path.is_file():
            continue
        version = match.group("version")
        clash = by_version.get(version)
        if clash is not None:
            first, second = sorted([clash.path.name, path.name])
            raise RuntimeError(f"Two migrations share version {version}: {first}, {second}")
        by_version[version] = Migration(version=version, name=match.group("name"), path=path)
    return [by_version[v] for v in sorted(by_version)]


def _recorded_sync(conn: sqlite3.Connection) -> dict[str, tuple[str, str]]:
    conn.execute(SCHEMA_MIGRATIONS_DDL)
    conn.commit()
    rows = conn.execute("SELECT version, name, checksum FROM schema_migrations").fetchall()
    return {str(version): (str(name), str(checksum)) for version, name, checksum in rows}


def apply_sqlite_migrations(conn: sqlite3.Connection, migrations_dir: str | Path) -> list[str]:
    """Bring the schema up to date; returns the versions applied by this call.

    An applied migration whose file has since been renamed or edited stops
    startup instead of being silently skipped.
    """
    recorded = _recorded_sync(conn)
    applied_now: list[str] = []
    for migration in discover_migrations(migrations_dir):
        checksum = migration.checksum
        seen = recorded.get(migration.version)
        if seen is not None:
            if seen != (migration.name, checksum):
                raise RuntimeError(
                    f"Migration {migration.version} changed after it was applied "
                    f"(recorded as {seen[0]}, file is {migration.path.name})"
                )
            continue

        print(f"[DB] migrating to {migration.version} ({migration.name}, {migration.kind})")
        migration.run(conn)
        conn.execute(
            "INSERT INTO schema_migrations (version, name, checksum, applied_at_utc) VALUES (?, ?, ?, ?)",
            (migration.version, migration.name, checksum, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()
        applied_now.append(migration.version)
    return applied_now


def list_schema_migrations_sync(conn: sqlite3.Connection, limit: int = 200) -> list[tuple[str, str, str]]:
    """Newest first; empty before the first migration run."""
    try:
        return conn.execute(
            "SELECT version, name, applied_at_utc FROM schema_migrations ORDER BY version DESC LIMIT ?",
            (max(1, min(int(limit), 500)),),
        ).fetchall()
    except sqlite3.OperationalError:
        return []
