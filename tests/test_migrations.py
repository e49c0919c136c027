from __future__ import annotations

import sqlite3
import tempfile
import unittest
from pathlib import Path

from db.handle import default_migrations_dir
from db.migrate import apply_sqlite_migrations
from db.migrate import list_schema_migrations_sync


def _table_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {str(r[0]) for r in rows}


class MigrationTests(unittest.TestCase):
    def setUp(self):
        self.conn = sqlite3.connect(":memory:", check_same_thread=False)

    def tearDown(self):
        self.conn.close()

    def test_applies_survey_schema_once(self):
        first = apply_sqlite_migrations(self.conn, default_migrations_dir())
        second = apply_sqlite_migrations(self.conn, default_migrations_dir())

        self.assertEqual(first, ["0001", "0002"])
        self.assertEqual(second, [])
        tables = _table_names(self.conn)
        for table in (
            "guilds",
            "guild_activations",
            "question_banks",
            "questions",
            "research_sessions",
            "responses",
            "conversation_refs",
        ):
            self.assertIn(table, tables)

        rows = list_schema_migrations_sync(self.conn, 10)
        self.assertEqual([r[0] for r in rows], ["0002", "0001"])

    def test_one_active_session_per_responder_is_enforced_by_index(self):
        apply_sqlite_migrations(self.conn, default_migrations_dir())
        insert = (
            "INSERT INTO research_sessions (id, guild_id, bank_id, owner_id, responder_id, status) "
            "VALUES (?, 1, 'b', 10, 20, ?)"
        )
        self.conn.execute(insert, ("s1", "active"))
        self.conn.execute(insert, ("s2", "completed"))
        with self.assertRaises(sqlite3.IntegrityError):
            self.conn.execute(insert, ("s3", "active"))

    def test_one_response_per_session_question_is_enforced_by_index(self):
        apply_sqlite_migrations(self.conn, default_migrations_dir())
        insert = (
            "INSERT INTO responses (id, session_id, owner_id, responder_id, question_id, response) "
            "VALUES (?, 's1', 10, 20, 'q1', 'hi')"
        )
        self.conn.execute(insert, ("r1",))
        with self.assertRaises(sqlite3.IntegrityError):
            self.conn.execute(insert, ("r2",))

    def test_python_migration_runs_its_upgrade(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "0001_demo.sql").write_text("CREATE TABLE demo (id INTEGER);", encoding="utf-8")
            (Path(tmp) / "0002_seed_demo.py").write_text(
                "def upgrade(conn):\n    conn.execute('INSERT INTO demo (id) VALUES (7)')\n",
                encoding="utf-8",
            )
            (Path(tmp) / "notes.txt").write_text("not a migration", encoding="utf-8")

            applied = apply_sqlite_migrations(self.conn, tmp)

        self.assertEqual(applied, ["0001", "0002"])
        self.assertEqual(self.conn.execute("SELECT id FROM demo").fetchall(), [(7,)])

    def test_duplicate_versions_are_refused(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "0001_a.sql").write_text("CREATE TABLE a (id INTEGER);", encoding="utf-8")
            (Path(tmp) / "0001_b.sql").write_text("CREATE TABLE b (id INTEGER);", encoding="utf-8")
            with self.assertRaises(RuntimeError):
                apply_sqlite_migrations(self.conn, tmp)
        self.assertNotIn("a", _table_names(self.conn))

    def test_changed_migration_content_is_refused(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "0001_demo.sql"
            path.write_text("CREATE TABLE demo (id INTEGER);", encoding="utf-8")
            apply_sqlite_migrations(self.conn, tmp)
            path.write_text("CREATE TABLE demo (id INTEGER, extra TEXT);", encoding="utf-8")
            with self.assertRaises(RuntimeError):
                apply_sqlite_migrations(self.conn, tmp)


if __name__ == "__main__":
    unittest.main()
