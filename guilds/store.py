from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

from research.models import Guild


GUILD_COLUMNS = (
    "g.id, g.owner_id, g.question_limit, g.question_bank_limit, g.research_sessions_limit, "
    "g.responses_limit, g.created_at_utc, g.updated_at_utc"
)
# Without a user, "active" means some configuring user currently has the guild selected.
ACTIVE_FOR_ANYONE = "EXISTS (SELECT 1 FROM guild_activations AS a WHERE a.guild_id = g.id)"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_guild(row: sqlite3.Row | tuple[Any, ...] | None) -> Guild | None:
    if row is None:
        return None
    return Guild(
        id=int(row[0]),
        owner_id=int(row[1]) if row[1] is not None else None,
        question_limit=int(row[2]),
        question_bank_limit=int(row[3]),
        research_sessions_limit=int(row[4]),
        responses_limit=int(row[5]),
        created_at_utc=row[6],
        updated_at_utc=row[7],
        active=bool(row[8]),
    )


def get_guild_sync(conn: sqlite3.Connection, guild_id: int) -> Guild | None:
    cur = conn.cursor()
    cur.execute(
        f"SELECT {GUILD_COLUMNS}, {ACTIVE_FOR_ANYONE} FROM guilds AS g WHERE g.id = ? LIMIT 1",
        (int(guild_id),),
    )
    return _row_to_guild(cur.fetchone())


def get_active_guild_sync(conn: sqlite3.Connection, user_id: int) -> Guild | None:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {GUILD_COLUMNS}, 1
        FROM guild_activations AS a
        JOIN guilds AS g ON g.id = a.guild_id
        WHERE a.user_id = ?
        LIMIT 1
        """,
        (int(user_id),),
    )
    return _row_to_guild(cur.fetchone())


def list_owner_guilds_sync(conn: sqlite3.Connection, user_id: int) -> list[Guild]:
    """Guilds the user owns or has selected; `active` is relative to that user."""
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {GUILD_COLUMNS}, a.user_id IS NOT NULL
        FROM guilds AS g
        LEFT JOIN guild_activations AS a ON a.guild_id = g.id AND a.user_id = ?
        WHERE g.owner_id = ? OR a.user_id IS NOT NULL
        ORDER BY g.created_at_utc ASC
        """,
        (int(user_id), int(user_id)),
    )
    return [g for g in (_row_to_guild(r) for r in cur.fetchall()) if g is not None]


def set_active_guild_sync(
    conn: sqlite3.Connection,
    *,
    guild_id: int,
    owner_id: int,
    default_limits: dict[str, int],
) -> Guild:
    """Make `guild_id` the only guild `owner_id` is configuring.

    The guild row is created on first use and its recorded owner never changes
    afterwards; another manager selecting the same guild only moves their own
    activation row. Both writes share one transaction and roll back together.
    """
    now = _utc_now_iso()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO guilds (
                id, owner_id, question_limit, question_bank_limit,
                research_sessions_limit, responses_limit,
                created_at_utc, updated_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                int(guild_id),
                int(owner_id),
                int(default_limits["question_limit"]),
                int(default_limits["question_bank_limit"]),
                int(default_limits["research_sessions_limit"]),
                int(default_limits["responses_limit"]),
                now,
                now,
            ),
        )
        # The primary key on user_id is what keeps a user down to one active guild.
        cur.execute(
            """
            INSERT INTO guild_activations (user_id, guild_id, activated_at_utc)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                guild_id = excluded.guild_id,
                activated_at_utc = excluded.activated_at_utc
            """,
            (int(owner_id), int(guild_id), now),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    row = get_active_guild_sync(conn, int(owner_id))
    if row is None or row.id != int(guild_id):
        raise sqlite3.OperationalError(f"guild {guild_id} missing after activation")
    return row


def ensure_guild_sync(
    conn: sqlite3.Connection,
    *,
    guild_id: int,
    owner_id: int,
    default_limits: dict[str, int],
) -> Guild:
    """Create the guild row if it does not exist yet; never touches activation."""
    now = _utc_now_iso()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO guilds (
            id, owner_id, question_limit, question_bank_limit,
            research_sessions_limit, responses_limit,
            created_at_utc, updated_at_utc
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO NOTHING
        """,
        (
            int(guild_id),
            int(owner_id),
            int(default_limits["question_limit"]),
            int(default_limits["question_bank_limit"]),
            int(default_limits["research_sessions_limit"]),
            int(default_limits["responses_limit"]),
            now,
            now,
        ),
    )
    conn.commit()
    row = get_guild_sync(conn, int(guild_id))
    if row is None:
        raise sqlite3.OperationalError(f"guild {guild_id} missing after insert")
    return row


def provision_limits_sync(conn: sqlite3.Connection, guild_id: int, limits: dict[str, int]) -> Guild | None:
    allowed = {"question_limit", "question_bank_limit", "research_sessions_limit", "responses_limit"}
    fields = {k: int(v) for k, v in limits.items() if k in allowed}
    unknown = set(limits) - allowed
    if unknown:
        raise ValueError(f"Unknown guild limit fields: {sorted(unknown)}")
    if not fields:
        return get_guild_sync(conn, guild_id)

    assignments = [f"{key} = ?" for key in fields]
    values: list[Any] = list(fields.values())
    assignments.append("updated_at_utc = ?")
    values.append(_utc_now_iso())
    values.append(int(guild_id))

    cur = conn.cursor()
    cur.execute(f"UPDATE guilds SET {', '.join(assignments)} WHERE id = ?", tuple(values))
    conn.commit()
    return get_guild_sync(conn, int(guild_id))
