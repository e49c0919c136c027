from __future__ import annotations

import unittest
from types import SimpleNamespace

import discord

from banks.service import QuestionBankRepository
from config.settings import GuildLimits
from db.handle import open_db_handle
from guilds.service import GuildContextStore
from orchestrator.modes import ConfigurationMode
from orchestrator.modes import InterviewMode
from orchestrator.refs import ConversationRefs
from orchestrator.refs import refs_from_result
from orchestrator.tools import SurveyTools
from research.errors import DispatchTimeout
from sessions.service import ResearchSessionService

OWNER = 111111111111
GUILD = 900000000001
OTHER_GUILD = 900000000002
KEY = f"500:{OWNER}"


def _member(member_id: int, name: str):
    return SimpleNamespace(id=member_id, name=name, display_name=name, bot=False)


class _FakeDiscordIO:
    def __init__(self, members: list, *, closed_dms: set[int] | None = None, failing_sends: set[int] | None = None):
        self.members = members
        self.closed_dms = closed_dms or set()
        self.failing_sends = failing_sends or set()
        self.sent: list[tuple[int, str]] = []
        self.guild = SimpleNamespace(id=GUILD, name="Pixel Forge", owner_id=OWNER)
        self.client = SimpleNamespace(get_guild=lambda guild_id: self.guild if guild_id == GUILD else None)
        self.excluded: set[int] = set()

    def list_manageable_guilds(self, user_id: int):
        return [self.guild]

    def pick_online_members(self, guild, count: int, *, exclude_ids=None):
        self.excluded = set(exclude_ids or ())
        return [m for m in self.members if m.id not in self.excluded][:count]

    async def send_direct(self, user_id: int, text: str):
        if user_id in self.closed_dms:
            raise discord.Forbidden(SimpleNamespace(status=403, reason="Forbidden"), "Cannot send messages to this user")
        if user_id in self.failing_sends:
            raise DispatchTimeout("direct_message", 30)
        self.sent.append((user_id, text))
        return []


class SurveyToolsTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = open_db_handle(":memory:")
        self.guilds = GuildContextStore(db=self.db, default_limits=GuildLimits())
        self.banks = QuestionBankRepository(db=self.db)
        self.sessions = ResearchSessionService(db=self.db)
        self.refs = ConversationRefs(db=self.db)
        self.mode = ConfigurationMode(owner_id=OWNER)

    async def asyncTearDown(self):
        self.db.close()

    def _tools(self, discord_io) -> SurveyTools:
        return SurveyTools(
            guilds=self.guilds,
            banks=self.banks,
            sessions=self.sessions,
            refs=self.refs,
            discord_io=discord_io,
            invite_max=5,
        )

    async def _bank_with_question(self) -> str:
        bank_id = (await self.banks.create_bank("Beta", GUILD, OWNER))["question_bank"]["id"]
        await self.banks.create_question("How was the tutorial?", bank_id, GUILD)
        await self.refs.record(KEY, "bank", [bank_id])
        return bank_id

    async def test_configuration_tools_need_an_active_guild(self):
        tools = self._tools(_FakeDiscordIO([]))

        out = await tools.invoke(self.mode, KEY, "view_question_banks", "{}")

        self.assertEqual(out["result"], "not_found")
        self.assertEqual(out["entity"], "active_guild")

    async def test_set_active_guild_only_for_manageable_guilds(self):
        tools = self._tools(_FakeDiscordIO([]))

        denied = await tools.invoke(self.mode, KEY, "set_active_guild", {"guild_id": str(OTHER_GUILD)})
        allowed = await tools.invoke(self.mode, KEY, "set_active_guild", {"guild_id": str(GUILD)})
        listed = await tools.invoke(self.mode, KEY, "list_guilds", "{}")

        self.assertEqual(denied["result"], "not_found")
        self.assertEqual(allowed["guild"]["name"], "Pixel Forge")
        self.assertEqual(listed["guilds"], [{"id": str(GUILD), "name": "Pixel Forge", "active": True}])

    async def test_refused_dm_skips_that_member_and_keeps_inviting(self):
        io = _FakeDiscordIO([_member(1001, "aki"), _member(1002, "ren"), _member(1003, "yui")], closed_dms={1002})
        tools = self._tools(io)
        await self.guilds.set_active(GUILD, OWNER)
        bank_id = await self._bank_with_question()

        out = await tools.invoke(self.mode, KEY, "invite_responders", {"question_bank_id": bank_id, "count": 3})

        self.assertEqual(out["result"], "ok")
        self.assertEqual([i["member"] for i in out["invited"]], ["aki", "yui"])
        self.assertEqual(out["skipped"], [{"member": "ren", "reason": "dms_closed"}])
        self.assertIn(OWNER, io.excluded)
        self.assertEqual([uid for uid, _ in io.sent], [1001, 1003])
        self.assertIn("Pixel Forge", io.sent[0][1])
        self.assertIsNotNone(await self.sessions.get_active_session(1001))
        self.assertIsNone(await self.sessions.get_active_session(1002))
        self.assertIsNotNone(await self.sessions.get_active_session(1003))

    async def test_failed_invite_cancels_the_new_session(self):
        io = _FakeDiscordIO([_member(1001, "aki")], failing_sends={1001})
        tools = self._tools(io)
        await self.guilds.set_active(GUILD, OWNER)
        bank_id = await self._bank_with_question()

        with self.assertRaises(DispatchTimeout):
            await tools.invoke(self.mode, KEY, "invite_responders", {"question_bank_id": bank_id})

        self.assertIsNone(await self.sessions.get_active_session(1001))

    async def test_invite_from_empty_bank_is_a_conflict(self):
        tools = self._tools(_FakeDiscordIO([_member(1001, "aki")]))
        await self.guilds.set_active(GUILD, OWNER)
        bank_id = (await self.banks.create_bank("Empty", GUILD, OWNER))["question_bank"]["id"]
        await self.refs.record(KEY, "bank", [bank_id])

        out = await tools.invoke(self.mode, KEY, "invite_responders", {"question_bank_id": bank_id})

        self.assertEqual(out["result"], "conflict")
        self.assertEqual(out["reason"], "question_bank_empty")

    async def test_extra_arguments_are_rejected(self):
        tools = self._tools(_FakeDiscordIO([]))
        await self.guilds.set_active(GUILD, OWNER)

        out = await tools.invoke(self.mode, KEY, "create_question_bank", {"name": "Beta", "owner_id": "1"})

        self.assertEqual(out["result"], "validation_failure")
        self.assertEqual(await self.banks.list_banks(GUILD), [])

    async def test_save_response_without_a_question_asks_for_one(self):
        tools = self._tools(_FakeDiscordIO([]))
        await self.guilds.set_active(GUILD, OWNER)
        bank_id = await self._bank_with_question()
        mode = InterviewMode(responder_id=1001, owner_id=OWNER, guild_id=GUILD)
        key = "600:1001"
        await self.refs.record(key, "bank", [bank_id])

        none_yet = await tools.invoke(mode, key, "save_response", {"response": "hi"})
        await tools.invoke(mode, key, "start_session", {"question_bank_id": bank_id})
        unasked = await tools.invoke(mode, key, "save_response", {"response": "hi"})

        self.assertEqual(none_yet["result"], "not_found")
        self.assertEqual(none_yet["entity"], "research_session")
        self.assertEqual(unasked["result"], "conflict")
        self.assertEqual(unasked["reason"], "no_current_question")

    def test_refs_from_result_walks_nested_payloads(self):
        result = {
            "result": "ok",
            "question_bank": {"id": "b1", "name": "Beta"},
            "questions": [{"id": "q1"}, {"id": "q2"}],
            "nested": {"question": {"id": "q3"}},
        }
        dup = {"result": "duplicate_warning", "entity": "question_bank", "existing_id": "b9"}

        self.assertEqual(
            refs_from_result(result),
            [("bank", "b1"), ("question", "q1"), ("question", "q2"), ("question", "q3")],
        )
        self.assertEqual(refs_from_result(dup), [("bank", "b9")])


if __name__ == "__main__":
    unittest.main()
