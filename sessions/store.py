from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

from banks.store import BANK_COLUMNS
from banks.store import _row_to_bank
from banks.store import new_id
from research.models import QuestionBank
from research.models import ResearchSession
from research.models import Response


SESSION_COLUMNS = (
    "id, guild_id, bank_id, owner_id, responder_id, status, current_question_id, started_at_utc, ended_at_utc"
)
RESPONSE_COLUMNS = "id, session_id, owner_id, responder_id, question_id, response, created_at_utc"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_session(row: sqlite3.Row | tuple[Any, ...] | None) -> ResearchSession | None:
    if row is None:
        return None
    return ResearchSession(
        id=str(row[0]),
        guild_id=int(row[1]),
        bank_id=str(row[2]),
        owner_id=int(row[3]),
        responder_id=int(row[4]),
        status=str(row[5]),
        current_question_id=row[6],
        started_at_utc=row[7],
        ended_at_utc=row[8],
    )


def _row_to_response(row: sqlite3.Row | tuple[Any, ...] | None) -> Response | None:
    if row is None:
        return None
    return Response(
        id=str(row[0]),
        session_id=str(row[1]),
        owner_id=int(row[2]),
        responder_id=int(row[3]),
        question_id=str(row[4]),
        response=str(row[5]),
        created_at_utc=row[6],
    )


def get_session_sync(conn: sqlite3.Connection, session_id: str) -> ResearchSession | None:
    cur = conn.cursor()
    cur.execute(f"SELECT {SESSION_COLUMNS} FROM research_sessions WHERE id = ? LIMIT 1", (str(session_id),))
    return _row_to_session(cur.fetchone())


def list_active_sessions_for_responder_sync(conn: sqlite3.Connection, responder_id: int) -> list[ResearchSession]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {SESSION_COLUMNS}
        FROM research_sessions
        WHERE responder_id = ? AND status = 'active'
        ORDER BY started_at_utc DESC, rowid DESC
        """,
        (int(responder_id),),
    )
    return [s for s in (_row_to_session(r) for r in cur.fetchall()) if s is not None]


def available_banks_sync(
    conn: sqlite3.Connection,
    *,
    responder_id: int,
    owner_id: int,
    guild_id: int | None = None,
) -> list[QuestionBank]:
    # Inside a guild every manager's banks are offered; the owner only scopes
    # lookups that have no guild. Any prior session, whatever its status,
    # rules the bank out for this responder.
    if guild_id is not None:
        scope_clause = "b.guild_id = ?"
        params: list[Any] = [int(guild_id), int(responder_id)]
    else:
        scope_clause = "b.owner_id = ?"
        params = [int(owner_id), int(responder_id)]
    cols = ", ".join(f"b.{c.strip()}" for c in BANK_COLUMNS.split(","))
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {cols}
        FROM question_banks AS b
        WHERE {scope_clause}
          AND b.status = 'active'
          AND NOT EXISTS (
                SELECT 1
                FROM research_sessions AS s
                WHERE s.bank_id = b.id AND s.responder_id = ?
          )
        ORDER BY b.rowid ASC
        """,
        tuple(params),
    )
    return [b for b in (_row_to_bank(r) for r in cur.fetchall()) if b is not None]


def count_guild_sessions_sync(conn: sqlite3.Connection, guild_id: int) -> int:
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM research_sessions WHERE guild_id = ?", (int(guild_id),))
    return int(cur.fetchone()[0])


def insert_session_sync(
    conn: sqlite3.Connection,
    *,
    bank_id: str,
    owner_id: int,
    responder_id: int,
    guild_id: int,
) -> ResearchSession:
    session_id = new_id()
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO research_sessions (
            id, guild_id, bank_id, owner_id, responder_id, status,
            current_question_id, started_at_utc, ended_at_utc, last_activity_at_utc
        )
        VALUES (?, ?, ?, ?, ?, 'active', NULL, ?, NULL, ?)
        """,
        (session_id, int(guild_id), str(bank_id), int(owner_id), int(responder_id), now, now),
    )
    conn.commit()
    row = get_session_sync(conn, session_id)
    if row is None:
        raise sqlite3.OperationalError("Failed to create/fetch research session")
    return row


def set_current_question_sync(conn: sqlite3.Connection, session_id: str, question_id: str | None) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE research_sessions
        SET current_question_id = ?, last_activity_at_utc = ?
        WHERE id = ? AND status = 'active'
        """,
        (question_id, _utc_now_iso(), str(session_id)),
    )
    conn.commit()


def complete_session_sync(conn: sqlite3.Connection, session_id: str) -> bool:
    """active -> completed. Returns False when the session was not active (no mutation)."""
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE research_sessions
        SET status = 'completed',
            current_question_id = NULL,
            ended_at_utc = ?,
            last_activity_at_utc = ?
        WHERE id = ? AND status = 'active'
        """,
        (now, now, str(session_id)),
    )
    conn.commit()
    return cur.rowcount > 0


def cancel_session_sync(conn: sqlite3.Connection, session_id: str) -> bool:
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE research_sessions
        SET status = 'cancelled',
            current_question_id = NULL,
            ended_at_utc = ?,
            last_activity_at_utc = ?
        WHERE id = ? AND status = 'active'
        """,
        (now, now, str(session_id)),
    )
    conn.commit()
    return cur.rowcount > 0


def cancel_stale_sessions_sync(conn: sqlite3.Connection, cutoff_iso: str) -> list[str]:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id
        FROM research_sessions
        WHERE status = 'active'
          AND COALESCE(last_activity_at_utc, started_at_utc, '') < ?
        """,
        (str(cutoff_iso),),
    )
    stale = [str(r[0]) for r in cur.fetchall()]
    return [sid for sid in stale if cancel_session_sync(conn, sid)]


def answered_question_ids_sync(conn: sqlite3.Connection, session_id: str) -> set[str]:
    cur = conn.cursor()
    cur.execute("SELECT DISTINCT question_id FROM responses WHERE session_id = ?", (str(session_id),))
    return {str(r[0]) for r in cur.fetchall()}


def list_responses_sync(conn: sqlite3.Connection, session_id: str) -> list[Response]:
    cur = conn.cursor()
    cur.execute(
        f"SELECT {RESPONSE_COLUMNS} FROM responses WHERE session_id = ? ORDER BY rowid ASC",
        (str(session_id),),
    )
    return [r for r in (_row_to_response(row) for row in cur.fetchall()) if r is not None]


def find_response_sync(conn: sqlite3.Connection, session_id: str, question_id: str) -> Response | None:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {RESPONSE_COLUMNS}
        FROM responses
        WHERE session_id = ? AND question_id = ?
        ORDER BY rowid DESC
        LIMIT 1
        """,
        (str(session_id), str(question_id)),
    )
    return _row_to_response(cur.fetchone())


def count_guild_responses_sync(conn: sqlite3.Connection, guild_id: int) -> int:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT COUNT(*)
        FROM responses AS r
        JOIN research_sessions AS s ON s.id = r.session_id
        WHERE s.guild_id = ?
        """,
        (int(guild_id),),
    )
    return int(cur.fetchone()[0])


def insert_response_sync(
    conn: sqlite3.Connection,
    *,
    session_id: str,
    question_id: str,
    responder_id: int,
    owner_id: int,
    text: str,
) -> Response:
    response_id = new_id()
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO responses (id, session_id, owner_id, responder_id, question_id, response, created_at_utc)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (response_id, str(session_id), int(owner_id), int(responder_id), str(question_id), text, now),
    )
    cur.execute(
        "UPDATE research_sessions SET last_activity_at_utc = ? WHERE id = ?",
        (now, str(session_id)),
    )
    conn.commit()
    cur.execute(f"SELECT {RESPONSE_COLUMNS} FROM responses WHERE id = ? LIMIT 1", (response_id,))
    row = _row_to_response(cur.fetchone())
    if row is None:
        raise sqlite3.OperationalError("Failed to create/fetch response")
    return row
