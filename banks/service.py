from __future__ import annotations

import sqlite3
from typing import Any

from banks.store import archive_bank_sync
from banks.store import bank_results_sync
from banks.store import count_active_banks_sync
from banks.store import count_questions_sync
from banks.store import delete_question_sync
from banks.store import find_active_bank_by_name_sync
from banks.store import get_bank_sync
from banks.store import get_question_sync
from banks.store import insert_bank_sync
from banks.store import insert_question_sync
from banks.store import list_banks_sync
from banks.store import list_questions_sync
from banks.store import update_question_sync
from db.handle import DbHandle
from guilds.store import get_guild_sync
from research import results
from research.models import Question
from research.models import QuestionBank


def _create_bank_sync(
    conn: sqlite3.Connection,
    *,
    name: str,
    guild_id: int,
    owner_id: int,
    force: bool,
) -> dict[str, Any]:
    guild = get_guild_sync(conn, guild_id)
    if guild is None:
        return results.not_found("guild", guild_id)

    if not force:
        existing = find_active_bank_by_name_sync(conn, guild_id, name)
        if existing is not None:
            return results.duplicate_warning("question_bank", name=existing.name, existing_id=existing.id)

    current = count_active_banks_sync(conn, guild_id)
    if current >= guild.question_bank_limit:
        return results.quota_exceeded("question_banks", limit=guild.question_bank_limit, current=current)

    bank = insert_bank_sync(conn, name=name, guild_id=guild_id, owner_id=owner_id)
    return results.ok(question_bank=bank.to_payload())


def _create_question_sync(
    conn: sqlite3.Connection,
    *,
    content: str,
    bank_id: str,
    guild_id: int,
    category: str | None,
) -> dict[str, Any]:
    guild = get_guild_sync(conn, guild_id)
    if guild is None:
        return results.not_found("guild", guild_id)
    bank = get_bank_sync(conn, bank_id, guild_id)
    if bank is None or bank.status != "active":
        return results.not_found("question_bank", bank_id)

    current = count_questions_sync(conn, bank_id)
    if current >= guild.question_limit:
        return results.quota_exceeded("questions", limit=guild.question_limit, current=current)

    question = insert_question_sync(conn, content=content, bank_id=bank_id, guild_id=guild_id, category=category)
    return results.ok(question=question.to_payload(), question_count=current + 1)


class QuestionBankRepository:
    """Guild-scoped CRUD over question banks and their questions.

    Every lookup filters on guild id; a bank or question that lives in another
    guild is reported as not found rather than forbidden.
    """

    def __init__(self, *, db: DbHandle) -> None:
        self.db = db

    async def list_banks(self, guild_id: int) -> list[QuestionBank]:
        return await self.db.run(list_banks_sync, int(guild_id))

    async def get_bank(self, bank_id: str, guild_id: int) -> QuestionBank | None:
        return await self.db.run(get_bank_sync, str(bank_id), int(guild_id))

    async def list_questions(self, bank_id: str, guild_id: int) -> list[Question]:
        return await self.db.run(list_questions_sync, str(bank_id), int(guild_id))

    async def create_bank(self, name: str, guild_id: int, owner_id: int, force: bool = False) -> dict[str, Any]:
        out = await self.db.run(
            _create_bank_sync,
            name=str(name).strip(),
            guild_id=int(guild_id),
            owner_id=int(owner_id),
            force=bool(force),
        )
        print(f"[Banks] create_bank guild={guild_id} name={name!r} force={force} -> {out['result']}")
        return out

    async def create_question(
        self,
        content: str,
        bank_id: str,
        guild_id: int,
        category: str | None = None,
    ) -> dict[str, Any]:
        out = await self.db.run(
            _create_question_sync,
            content=str(content),
            bank_id=str(bank_id),
            guild_id=int(guild_id),
            category=category,
        )
        print(f"[Banks] create_question guild={guild_id} bank={bank_id} -> {out['result']}")
        return out

    async def update_question(
        self,
        question_id: str,
        bank_id: str,
        guild_id: int,
        content: str,
        category: str | None = None,
    ) -> dict[str, Any]:
        question = await self.db.run(
            update_question_sync,
            question_id=str(question_id),
            bank_id=str(bank_id),
            guild_id=int(guild_id),
            content=str(content),
            category=category,
        )
        if question is None:
            return results.not_found("question", question_id)
        return results.ok(question=question.to_payload())

    async def delete_question(self, question_id: str, bank_id: str, guild_id: int) -> dict[str, Any]:
        deleted = await self.db.run(
            delete_question_sync,
            question_id=str(question_id),
            bank_id=str(bank_id),
            guild_id=int(guild_id),
        )
        if not deleted:
            return results.not_found("question", question_id)
        return results.ok(deleted_question_id=str(question_id))

    async def delete_bank(self, bank_id: str, guild_id: int) -> dict[str, Any]:
        # Banks are archived, not dropped: sessions and responses still point at them.
        bank = await self.db.run(archive_bank_sync, str(bank_id), int(guild_id))
        if bank is None:
            return results.not_found("question_bank", bank_id)
        return results.ok(question_bank=bank.to_payload())

    async def get_question(self, question_id: str, guild_id: int) -> Question | None:
        return await self.db.run(get_question_sync, str(question_id), int(guild_id))

    async def bank_results(self, bank_id: str, guild_id: int) -> dict[str, Any]:
        payload = await self.db.run(bank_results_sync, str(bank_id), int(guild_id))
        if payload is None:
            return results.not_found("question_bank", bank_id)
        return results.ok(**payload)
