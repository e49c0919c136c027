from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable

from db.handle import DbHandle


# Result keys whose values carry persistence-generated ids, by ref kind.
_RESULT_KEY_KINDS = {
    "question_bank": "bank",
    "question_banks": "bank",
    "bank": "bank",
    "question": "question",
    "questions": "question",
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def conversation_key(channel_id: int, user_id: int) -> str:
    return f"{int(channel_id)}:{int(user_id)}"


def refs_from_result(result: Any) -> list[tuple[str, str]]:
    """Collect (kind, id) pairs for every bank/question a tool result shows the model."""
    out: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()

    def _add(kind: str, ref_id: Any) -> None:
        if ref_id is None:
            return
        pair = (kind, str(ref_id))
        if pair not in seen:
            seen.add(pair)
            out.append(pair)

    def _walk(node: Any) -> None:
        if isinstance(node, dict):
            if node.get("result") == "duplicate_warning" and node.get("entity") == "question_bank":
                _add("bank", node.get("existing_id"))
            for key, value in node.items():
                kind = _RESULT_KEY_KINDS.get(key)
                if kind is not None:
                    items = value if isinstance(value, list) else [value]
                    for item in items:
                        if isinstance(item, dict) and item.get("id"):
                            _add(kind, item["id"])
                _walk(value)
        elif isinstance(node, list):
            for item in node:
                _walk(item)

    _walk(result)
    return out


def record_refs_sync(conn: sqlite3.Connection, conversation_key: str, refs: Iterable[tuple[str, str]]) -> int:
    rows = [(str(conversation_key), str(kind), str(ref_id), _utc_now_iso()) for kind, ref_id in refs]
    if not rows:
        return 0
    cur = conn.cursor()
    cur.executemany(
        """
        INSERT OR IGNORE INTO conversation_refs (conversation_key, ref_kind, ref_id, created_at_utc)
        VALUES (?, ?, ?, ?)
        """,
        rows,
    )
    conn.commit()
    return int(cur.rowcount or 0)


def known_refs_sync(conn: sqlite3.Connection, conversation_key: str, ref_kind: str, ref_ids: list[str]) -> set[str]:
    ids = [str(r) for r in ref_ids if r]
    if not ids:
        return set()
    placeholders = ", ".join("?" for _ in ids)
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT ref_id
        FROM conversation_refs
        WHERE conversation_key = ? AND ref_kind = ? AND ref_id IN ({placeholders})
        """,
        (str(conversation_key), str(ref_kind), *ids),
    )
    return {str(r[0]) for r in cur.fetchall()}


class ConversationRefs:
    """Ids each conversation has legitimately been shown.

    Persisted so a conversation resumed after a restart keeps its ids.
    """

    def __init__(self, *, db: DbHandle) -> None:
        self.db = db

    async def record_result(self, conversation_key: str, result: Any) -> int:
        refs = refs_from_result(result)
        if not refs:
            return 0
        return await self.db.run(record_refs_sync, str(conversation_key), refs)

    async def record(self, conversation_key: str, ref_kind: str, ref_ids: Iterable[str]) -> int:
        return await self.db.run(record_refs_sync, str(conversation_key), [(ref_kind, str(r)) for r in ref_ids])

    async def unknown(self, conversation_key: str, ref_kind: str, ref_ids: list[str]) -> list[str]:
        wanted = [str(r) for r in ref_ids if r]
        if not wanted:
            return []
        known = await self.db.run(known_refs_sync, str(conversation_key), str(ref_kind), wanted)
        return [r for r in wanted if r not in known]
