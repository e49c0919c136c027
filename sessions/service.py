from __future__ import annotations

import asyncio
import sqlite3
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any

from banks.store import get_bank_any_guild_sync
from banks.store import get_question_sync
from banks.store import list_questions_for_bank_sync
from db.handle import DbHandle
from guilds.store import get_guild_sync
from research import results
from research.errors import SessionInconsistency
from research.models import NextQuestion
from research.models import Question
from research.models import QuestionBank
from research.models import ResearchSession
from sessions.store import answered_question_ids_sync
from sessions.store import available_banks_sync
from sessions.store import cancel_session_sync
from sessions.store import cancel_stale_sessions_sync
from sessions.store import complete_session_sync
from sessions.store import count_guild_responses_sync
from sessions.store import count_guild_sessions_sync
from sessions.store import find_response_sync
from sessions.store import get_session_sync
from sessions.store import insert_response_sync
from sessions.store import insert_session_sync
from sessions.store import list_active_sessions_for_responder_sync
from sessions.store import set_current_question_sync


def _start_session_sync(
    conn: sqlite3.Connection,
    *,
    bank_id: str,
    owner_id: int,
    responder_id: int,
    guild_id: int,
) -> dict[str, Any]:
    active = list_active_sessions_for_responder_sync(conn, responder_id)
    if active:
        return results.conflict("session_already_active", session=active[0].to_payload())

    available = available_banks_sync(conn, responder_id=responder_id, owner_id=owner_id, guild_id=guild_id)
    bank = next((b for b in available if b.id == bank_id), None)
    if bank is None:
        return results.not_found("question_bank", bank_id)

    guild = get_guild_sync(conn, guild_id)
    if guild is None:
        return results.not_found("guild", guild_id)
    current = count_guild_sessions_sync(conn, guild_id)
    if current >= guild.research_sessions_limit:
        return results.quota_exceeded("research_sessions", limit=guild.research_sessions_limit, current=current)

    try:
        session = insert_session_sync(
            conn,
            bank_id=bank_id,
            # Results belong to whoever wrote the bank, not whoever routed the turn.
            owner_id=bank.owner_id,
            responder_id=responder_id,
            guild_id=guild_id,
        )
    except sqlite3.IntegrityError:
        # Another writer won the race; the partial unique index caught it.
        conn.rollback()
        return results.conflict("session_already_active")
    return results.ok(session=session.to_payload())


def _next_question_sync(conn: sqlite3.Connection, session_id: str) -> NextQuestion | None:
    session = get_session_sync(conn, session_id)
    if session is None:
        return None

    questions = list_questions_for_bank_sync(conn, session.bank_id)
    answered = answered_question_ids_sync(conn, session.id)
    answered_count = sum(1 for q in questions if q.id in answered)

    if session.is_terminal:
        return NextQuestion(
            session_id=session.id,
            session_status=session.status,
            question=None,
            answered=answered_count,
            total=len(questions),
        )

    # The response set decides; the stored pointer is only a cache of this result.
    for question in questions:
        if question.id not in answered:
            if session.current_question_id != question.id:
                set_current_question_sync(conn, session.id, question.id)
            return NextQuestion(
                session_id=session.id,
                session_status=session.status,
                question=question,
                answered=answered_count,
                total=len(questions),
            )

    completed_now = complete_session_sync(conn, session.id)
    refreshed = get_session_sync(conn, session.id)
    return NextQuestion(
        session_id=session.id,
        session_status=refreshed.status if refreshed is not None else "completed",
        question=None,
        answered=answered_count,
        total=len(questions),
        completed_now=completed_now,
    )


def _current_question_sync(conn: sqlite3.Connection, session_id: str) -> Question | None:
    session = get_session_sync(conn, session_id)
    if session is None or not session.current_question_id:
        return None
    question = get_question_sync(conn, session.current_question_id, session.guild_id)
    if question is None or question.bank_id != session.bank_id:
        return None
    return question


def _save_response_sync(
    conn: sqlite3.Connection,
    *,
    session_id: str,
    question_id: str,
    responder_id: int,
    owner_id: int,
    text: str,
) -> dict[str, Any]:
    session = get_session_sync(conn, session_id)
    if session is None or session.responder_id != responder_id or session.owner_id != owner_id:
        return results.not_found("research_session", session_id)
    if session.is_terminal:
        return results.conflict("session_not_active", session_status=session.status)

    question = get_question_sync(conn, question_id, session.guild_id)
    if question is None or question.bank_id != session.bank_id:
        return results.not_found("question", question_id)

    existing = find_response_sync(conn, session.id, question.id)
    if existing is not None:
        return results.conflict("already_answered", question_id=question.id, response_id=existing.id)

    guild = get_guild_sync(conn, session.guild_id)
    if guild is not None:
        current = count_guild_responses_sync(conn, session.guild_id)
        if current >= guild.responses_limit:
            return results.quota_exceeded("responses", limit=guild.responses_limit, current=current)

    try:
        response = insert_response_sync(
            conn,
            session_id=session.id,
            question_id=question.id,
            responder_id=responder_id,
            owner_id=owner_id,
            text=text,
        )
    except sqlite3.IntegrityError:
        conn.rollback()
        return results.conflict("already_answered", question_id=question.id)
    return results.ok(response=response.to_payload())


class ResearchSessionService:
    """One responder, one active interview, one question at a time.

    States: active -> completed | cancelled. Terminal states never change again.
    Which question comes next is always recomputed from the saved responses;
    `current_question_id` on the session row is a cache so a later turn knows
    what was just asked.
    """

    def __init__(self, *, db: DbHandle) -> None:
        self.db = db
        self._responder_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def _responder_lock(self, responder_id: int) -> asyncio.Lock:
        lock = self._responder_locks.get(int(responder_id))
        if lock is None:
            lock = asyncio.Lock()
            self._responder_locks[int(responder_id)] = lock
        return lock

    async def get_active_session(self, responder_id: int) -> ResearchSession | None:
        sessions = await self.db.run(list_active_sessions_for_responder_sync, int(responder_id))
        if len(sessions) > 1:
            raise SessionInconsistency(int(responder_id), [s.id for s in sessions])
        return sessions[0] if sessions else None

    async def get_session(self, session_id: str) -> ResearchSession | None:
        return await self.db.run(get_session_sync, str(session_id))

    async def available_banks(
        self,
        responder_id: int,
        owner_id: int,
        guild_id: int | None = None,
    ) -> list[QuestionBank]:
        return await self.db.run(
            available_banks_sync,
            responder_id=int(responder_id),
            owner_id=int(owner_id),
            guild_id=int(guild_id) if guild_id is not None else None,
        )

    async def start_session(self, bank_id: str, owner_id: int, responder_id: int, guild_id: int) -> dict[str, Any]:
        async with self._responder_lock(responder_id):
            out = await self.db.run(
                _start_session_sync,
                bank_id=str(bank_id),
                owner_id=int(owner_id),
                responder_id=int(responder_id),
                guild_id=int(guild_id),
            )
        print(f"[Sessions] start responder={responder_id} bank={bank_id} -> {out['result']}")
        return out

    async def next_question(self, session_id: str) -> NextQuestion | None:
        out = await self.db.run(_next_question_sync, str(session_id))
        if out is not None and out.completed_now:
            print(f"[Sessions] completed session={session_id} answered={out.answered}/{out.total}")
        return out

    async def current_question(self, session_id: str) -> Question | None:
        return await self.db.run(_current_question_sync, str(session_id))

    async def save_response(
        self,
        session_id: str,
        question_id: str,
        responder_id: int,
        owner_id: int,
        text: str,
    ) -> dict[str, Any]:
        # Verbatim: no strip, no normalization.
        return await self.db.run(
            _save_response_sync,
            session_id=str(session_id),
            question_id=str(question_id),
            responder_id=int(responder_id),
            owner_id=int(owner_id),
            text=text,
        )

    async def cancel_session(self, session_id: str) -> bool:
        cancelled = await self.db.run(cancel_session_sync, str(session_id))
        if cancelled:
            print(f"[Sessions] cancelled session={session_id}")
        return cancelled

    async def expire_stale_sessions(self, max_idle_days: int) -> list[str]:
        if int(max_idle_days) <= 0:
            return []
        cutoff = (datetime.now(timezone.utc) - timedelta(days=int(max_idle_days))).isoformat()
        return await self.db.run(cancel_stale_sessions_sync, cutoff)

    async def bank_for_session(self, session: ResearchSession) -> QuestionBank | None:
        bank = await self.db.run(get_bank_any_guild_sync, session.bank_id)
        if bank is None or bank.guild_id != session.guild_id:
            return None
        return bank
