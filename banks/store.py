from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from research.models import Question
from research.models import QuestionBank


BANK_COLUMNS = "id, guild_id, name, status, owner_id, created_at_utc, updated_at_utc"
QUESTION_COLUMNS = "id, bank_id, guild_id, content, category, created_at_utc"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _row_to_bank(row: sqlite3.Row | tuple[Any, ...] | None) -> QuestionBank | None:
    if row is None:
        return None
    return QuestionBank(
        id=str(row[0]),
        guild_id=int(row[1]),
        name=str(row[2]),
        status=str(row[3]),
        owner_id=int(row[4]),
        created_at_utc=row[5],
        updated_at_utc=row[6],
    )


def _row_to_question(row: sqlite3.Row | tuple[Any, ...] | None) -> Question | None:
    if row is None:
        return None
    return Question(
        id=str(row[0]),
        bank_id=str(row[1]),
        guild_id=int(row[2]),
        content=str(row[3]),
        category=row[4],
        created_at_utc=row[5],
    )


def list_banks_sync(conn: sqlite3.Connection, guild_id: int, *, include_archived: bool = False) -> list[QuestionBank]:
    cur = conn.cursor()
    if include_archived:
        cur.execute(
            f"SELECT {BANK_COLUMNS} FROM question_banks WHERE guild_id = ? ORDER BY rowid ASC",
            (int(guild_id),),
        )
    else:
        cur.execute(
            f"""
            SELECT {BANK_COLUMNS}
            FROM question_banks
            WHERE guild_id = ? AND status = 'active'
            ORDER BY rowid ASC
            """,
            (int(guild_id),),
        )
    return [b for b in (_row_to_bank(r) for r in cur.fetchall()) if b is not None]


def get_bank_sync(conn: sqlite3.Connection, bank_id: str, guild_id: int) -> QuestionBank | None:
    cur = conn.cursor()
    cur.execute(
        f"SELECT {BANK_COLUMNS} FROM question_banks WHERE id = ? AND guild_id = ? LIMIT 1",
        (str(bank_id), int(guild_id)),
    )
    return _row_to_bank(cur.fetchone())


def get_bank_any_guild_sync(conn: sqlite3.Connection, bank_id: str) -> QuestionBank | None:
    cur = conn.cursor()
    cur.execute(f"SELECT {BANK_COLUMNS} FROM question_banks WHERE id = ? LIMIT 1", (str(bank_id),))
    return _row_to_bank(cur.fetchone())


def find_active_bank_by_name_sync(conn: sqlite3.Connection, guild_id: int, name: str) -> QuestionBank | None:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {BANK_COLUMNS}
        FROM question_banks
        WHERE guild_id = ? AND status = 'active' AND LOWER(TRIM(name)) = LOWER(TRIM(?))
        ORDER BY rowid ASC
        LIMIT 1
        """,
        (int(guild_id), str(name)),
    )
    return _row_to_bank(cur.fetchone())


def count_active_banks_sync(conn: sqlite3.Connection, guild_id: int) -> int:
    cur = conn.cursor()
    cur.execute(
        "SELECT COUNT(*) FROM question_banks WHERE guild_id = ? AND status = 'active'",
        (int(guild_id),),
    )
    return int(cur.fetchone()[0])


def insert_bank_sync(conn: sqlite3.Connection, *, name: str, guild_id: int, owner_id: int) -> QuestionBank:
    bank_id = new_id()
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO question_banks (id, guild_id, name, status, owner_id, created_at_utc, updated_at_utc)
        VALUES (?, ?, ?, 'active', ?, ?, ?)
        """,
        (bank_id, int(guild_id), str(name).strip(), int(owner_id), now, now),
    )
    conn.commit()
    row = get_bank_sync(conn, bank_id, int(guild_id))
    if row is None:
        raise sqlite3.OperationalError("Failed to create/fetch question bank")
    return row


def archive_bank_sync(conn: sqlite3.Connection, bank_id: str, guild_id: int) -> QuestionBank | None:
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE question_banks
        SET status = 'archived', updated_at_utc = ?
        WHERE id = ? AND guild_id = ? AND status = 'active'
        """,
        (_utc_now_iso(), str(bank_id), int(guild_id)),
    )
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get_bank_sync(conn, str(bank_id), int(guild_id))


def list_questions_sync(conn: sqlite3.Connection, bank_id: str, guild_id: int) -> list[Question]:
    # rowid follows insertion order, which is the interview order.
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {QUESTION_COLUMNS}
        FROM questions
        WHERE bank_id = ? AND guild_id = ?
        ORDER BY rowid ASC
        """,
        (str(bank_id), int(guild_id)),
    )
    return [q for q in (_row_to_question(r) for r in cur.fetchall()) if q is not None]


def list_questions_for_bank_sync(conn: sqlite3.Connection, bank_id: str) -> list[Question]:
    cur = conn.cursor()
    cur.execute(
        f"SELECT {QUESTION_COLUMNS} FROM questions WHERE bank_id = ? ORDER BY rowid ASC",
        (str(bank_id),),
    )
    return [q for q in (_row_to_question(r) for r in cur.fetchall()) if q is not None]


def get_question_sync(conn: sqlite3.Connection, question_id: str, guild_id: int | None = None) -> Question | None:
    cur = conn.cursor()
    if guild_id is None:
        cur.execute(f"SELECT {QUESTION_COLUMNS} FROM questions WHERE id = ? LIMIT 1", (str(question_id),))
    else:
        cur.execute(
            f"SELECT {QUESTION_COLUMNS} FROM questions WHERE id = ? AND guild_id = ? LIMIT 1",
            (str(question_id), int(guild_id)),
        )
    return _row_to_question(cur.fetchone())


def count_questions_sync(conn: sqlite3.Connection, bank_id: str) -> int:
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM questions WHERE bank_id = ?", (str(bank_id),))
    return int(cur.fetchone()[0])


def insert_question_sync(
    conn: sqlite3.Connection,
    *,
    content: str,
    bank_id: str,
    guild_id: int,
    category: str | None = None,
) -> Question:
    question_id = new_id()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO questions (id, bank_id, guild_id, content, category, created_at_utc)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (question_id, str(bank_id), int(guild_id), str(content), category, _utc_now_iso()),
    )
    conn.commit()
    row = get_question_sync(conn, question_id)
    if row is None:
        raise sqlite3.OperationalError("Failed to create/fetch question")
    return row


def update_question_sync(
    conn: sqlite3.Connection,
    *,
    question_id: str,
    bank_id: str,
    guild_id: int,
    content: str,
    category: str | None = None,
) -> Question | None:
    cur = conn.cursor()
    if category is None:
        cur.execute(
            "UPDATE questions SET content = ? WHERE id = ? AND bank_id = ? AND guild_id = ?",
            (str(content), str(question_id), str(bank_id), int(guild_id)),
        )
    else:
        cur.execute(
            "UPDATE questions SET content = ?, category = ? WHERE id = ? AND bank_id = ? AND guild_id = ?",
            (str(content), category, str(question_id), str(bank_id), int(guild_id)),
        )
    conn.commit()
    if cur.rowcount == 0:
        return None
    return get_question_sync(conn, str(question_id), int(guild_id))


def delete_question_sync(conn: sqlite3.Connection, *, question_id: str, bank_id: str, guild_id: int) -> bool:
    cur = conn.cursor()
    cur.execute(
        "DELETE FROM questions WHERE id = ? AND bank_id = ? AND guild_id = ?",
        (str(question_id), str(bank_id), int(guild_id)),
    )
    conn.commit()
    return cur.rowcount > 0


def bank_results_sync(conn: sqlite3.Connection, bank_id: str, guild_id: int, *, per_question_limit: int = 25) -> dict[str, Any] | None:
    bank = get_bank_sync(conn, str(bank_id), int(guild_id))
    if bank is None:
        return None

    cur = conn.cursor()
    cur.execute(
        """
        SELECT status, COUNT(*)
        FROM research_sessions
        WHERE bank_id = ? AND guild_id = ?
        GROUP BY status
        """,
        (str(bank_id), int(guild_id)),
    )
    sessions = {"active": 0, "completed": 0, "cancelled": 0}
    for status, n in cur.fetchall():
        sessions[str(status)] = int(n)
    started = sum(sessions.values())

    lim = max(1, min(int(per_question_limit), 200))
    questions_out: list[dict[str, Any]] = []
    for question in list_questions_sync(conn, str(bank_id), int(guild_id)):
        # ux_responses_session_question keeps this at one row per session.
        cur.execute(
            """
            SELECT r.response, r.created_at_utc
            FROM responses AS r
            JOIN research_sessions AS s ON s.id = r.session_id
            WHERE r.question_id = ? AND s.guild_id = ?
            ORDER BY r.rowid DESC
            LIMIT ?
            """,
            (question.id, int(guild_id), lim),
        )
        rows = cur.fetchall()
        cur.execute(
            """
            SELECT COUNT(DISTINCT r.session_id)
            FROM responses AS r
            JOIN research_sessions AS s ON s.id = r.session_id
            WHERE r.question_id = ? AND s.guild_id = ?
            """,
            (question.id, int(guild_id)),
        )
        answered = int(cur.fetchone()[0])
        questions_out.append(
            {
                "question": question.to_payload(),
                "answered_sessions": answered,
                "responses": [{"response": text, "created_at_utc": ts} for text, ts in rows],
            }
        )

    return {
        "bank": bank.to_payload(),
        "sessions": {**sessions, "started": started},
        "completion_rate": round(sessions["completed"] / started, 3) if started else 0.0,
        "questions": questions_out,
    }
