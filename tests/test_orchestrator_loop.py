from __future__ import annotations

import copy
import json
import time
import unittest
from types import SimpleNamespace

import openai

from banks.service import QuestionBankRepository
from config.settings import GuildLimits
from db.handle import open_db_handle
from guilds.service import GuildContextStore
from orchestrator.catalog import CONFIGURATION_TOOLS
from orchestrator.catalog import INTERVIEW_TOOLS
from orchestrator.loop import ConversationOrchestrator
from orchestrator.modes import ConfigurationMode
from orchestrator.modes import InterviewMode
from orchestrator.refs import ConversationRefs
from orchestrator.tools import SurveyTools
from research.errors import CompletionUnavailable
from research.errors import LoopExhausted
from sessions.service import ResearchSessionService

OWNER = 111111111111
RESPONDER = 222222222222
GUILD = 900000000001
OWNER_KEY = f"500:{OWNER}"
RESPONDER_KEY = f"600:{RESPONDER}"


def _call(call_id: str, name: str, args: dict | str | None = None):
    raw = args if isinstance(args, str) else json.dumps(args or {})
    return SimpleNamespace(id=call_id, type="function", function=SimpleNamespace(name=name, arguments=raw))


def _resp(content: str | None = None, calls: list | None = None):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=calls))])


class _ScriptedCompletions:
    def __init__(self, steps: list):
        self._steps = list(steps)
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(copy.deepcopy(kwargs))
        step = self._steps.pop(0)
        return step() if callable(step) else step


class _ScriptedClient:
    def __init__(self, steps: list):
        self.completions = _ScriptedCompletions(steps)
        self.chat = SimpleNamespace(completions=self.completions)


class _FakeDiscordIO:
    def __init__(self, *, typing_ok: bool = True):
        self.typing_ok = typing_ok
        self.typing_channels: list[int] = []
        self.client = SimpleNamespace(get_guild=lambda guild_id: None)

    async def send_typing(self, channel_id: int) -> bool:
        self.typing_channels.append(int(channel_id))
        return self.typing_ok

    def list_manageable_guilds(self, user_id: int):
        return [SimpleNamespace(id=GUILD, name="Pixel Forge")]


def _tool_messages(request: dict) -> list[dict]:
    return [json.loads(m["content"]) for m in request["messages"] if m["role"] == "tool"]


class ConversationOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = open_db_handle(":memory:")
        self.guilds = GuildContextStore(db=self.db, default_limits=GuildLimits())
        self.banks = QuestionBankRepository(db=self.db)
        self.sessions = ResearchSessionService(db=self.db)
        self.refs = ConversationRefs(db=self.db)
        self.discord_io = _FakeDiscordIO()
        self.tools = SurveyTools(
            guilds=self.guilds,
            banks=self.banks,
            sessions=self.sessions,
            refs=self.refs,
            discord_io=self.discord_io,
        )
        await self.guilds.set_active(GUILD, OWNER)

    async def asyncTearDown(self):
        self.db.close()

    def _orchestrator(self, client, **kwargs) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            client=client,
            model="test-model",
            tools=self.tools,
            discord_io=self.discord_io,
            **kwargs,
        )

    async def _configure(self, client, history_text: str = "[owner]: hi") -> str:
        return await self._orchestrator(client).run_turn(
            mode=ConfigurationMode(owner_id=OWNER, guild_id=GUILD),
            conversation_key=OWNER_KEY,
            history=[{"role": "user", "content": history_text}],
            channel_id=500,
        )

    async def test_configuration_turn_runs_tools_then_replies(self):
        client = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "view_question_banks")]),
                _resp(calls=[_call("c2", "create_question_bank", {"name": "Beta feedback"})]),
                _resp(content="Done! Your survey is ready."),
            ]
        )

        reply = await self._configure(client, "[owner]: make a survey called Beta feedback")

        self.assertEqual(reply, "Done! Your survey is ready.")
        banks = await self.banks.list_banks(GUILD)
        self.assertEqual([b.name for b in banks], ["Beta feedback"])

        first = client.completions.requests[0]
        self.assertEqual(first["model"], "test-model")
        self.assertEqual(first["messages"][0]["role"], "system")
        self.assertEqual(
            [t["function"]["name"] for t in first["tools"]],
            [spec.name for spec in CONFIGURATION_TOOLS],
        )
        last = client.completions.requests[-1]
        results = _tool_messages(last)
        self.assertEqual(results[0]["question_banks"], [])
        self.assertEqual(results[1]["result"], "ok")
        self.assertEqual(self.discord_io.typing_channels, [500])

    async def test_invalid_arguments_are_returned_to_the_model(self):
        bank = await self.banks.create_bank("Beta", GUILD, OWNER)
        bank_id = bank["question_bank"]["id"]
        await self.refs.record(OWNER_KEY, "bank", [bank_id])
        client = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "create_question", {"question_bank_id": bank_id})]),
                _resp(calls=[_call("c2", "create_question", "{not json")]),
                _resp(content="Could you tell me the question text?"),
            ]
        )

        reply = await self._configure(client)

        self.assertEqual(reply, "Could you tell me the question text?")
        results = _tool_messages(client.completions.requests[-1])
        self.assertEqual([r["result"] for r in results], ["validation_failure", "validation_failure"])
        self.assertIn(["question"], [e["loc"] for e in results[0]["errors"]])
        self.assertEqual(await self.banks.list_questions(bank_id, GUILD), [])

    async def test_ids_must_come_from_earlier_tool_results(self):
        bank = await self.banks.create_bank("Beta", GUILD, OWNER)
        bank_id = bank["question_bank"]["id"]
        client = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "create_question", {"question_bank_id": bank_id, "question": "Fun?"})]),
                _resp(calls=[_call("c2", "view_question_banks")]),
                _resp(calls=[_call("c3", "create_question", {"question_bank_id": bank_id, "question": "Fun?"})]),
                _resp(content="Added."),
            ]
        )

        await self._configure(client)

        results = _tool_messages(client.completions.requests[-1])
        self.assertEqual([r["result"] for r in results], ["validation_failure", "ok", "ok"])
        self.assertEqual([q.content for q in await self.banks.list_questions(bank_id, GUILD)], ["Fun?"])

    async def test_ledger_survives_a_new_service_instance_but_not_other_conversations(self):
        bank = await self.banks.create_bank("Beta", GUILD, OWNER)
        bank_id = bank["question_bank"]["id"]
        await self.tools.invoke(ConfigurationMode(owner_id=OWNER), OWNER_KEY, "view_question_banks", "{}")

        resumed = ConversationRefs(db=self.db)

        self.assertEqual(await resumed.unknown(OWNER_KEY, "bank", [bank_id]), [])
        self.assertEqual(await resumed.unknown("999:1", "bank", [bank_id]), [bank_id])

    async def test_tool_calls_in_one_step_run_in_requested_order(self):
        bank = await self.banks.create_bank("Beta", GUILD, OWNER)
        bank_id = bank["question_bank"]["id"]
        await self.refs.record(OWNER_KEY, "bank", [bank_id])
        client = _ScriptedClient(
            [
                _resp(
                    calls=[
                        _call("c1", "create_question", {"question_bank_id": bank_id, "question": "First?"}),
                        _call("c2", "create_question", {"question_bank_id": bank_id, "question": "Second?"}),
                        _call("c3", "create_question", {"question_bank_id": bank_id, "question": "Third?"}),
                    ]
                ),
                _resp(content="All three added."),
            ]
        )

        await self._configure(client)

        questions = await self.banks.list_questions(bank_id, GUILD)
        self.assertEqual([q.content for q in questions], ["First?", "Second?", "Third?"])
        tool_ids = [m["tool_call_id"] for m in client.completions.requests[-1]["messages"] if m["role"] == "tool"]
        self.assertEqual(tool_ids, ["c1", "c2", "c3"])

    async def test_quota_and_duplicate_results_pass_through_unfiltered(self):
        await self.guilds.provision_limits(GUILD, question_bank_limit=1)
        client = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "create_question_bank", {"name": "Beta"})]),
                _resp(calls=[_call("c2", "create_question_bank", {"name": "beta"})]),
                _resp(calls=[_call("c3", "create_question_bank", {"name": "Gamma"})]),
                _resp(content="You have hit your limit."),
            ]
        )

        await self._configure(client)

        results = _tool_messages(client.completions.requests[-1])
        self.assertEqual([r["result"] for r in results], ["ok", "duplicate_warning", "quota_exceeded"])
        self.assertEqual(results[2]["limit"], 1)

    async def test_step_ceiling_raises_loop_exhausted(self):
        client = _ScriptedClient([_resp(calls=[_call(f"c{i}", "get_active_guild")]) for i in range(3)])
        orchestrator = self._orchestrator(client, max_steps=3)

        with self.assertRaises(LoopExhausted):
            await orchestrator.run_turn(
                mode=ConfigurationMode(owner_id=OWNER),
                conversation_key=OWNER_KEY,
                history=[],
            )
        self.assertEqual(len(client.completions.requests), 3)

    async def test_completion_errors_become_completion_unavailable(self):
        def _boom():
            raise openai.OpenAIError("upstream exploded")

        with self.assertRaises(CompletionUnavailable):
            await self._configure(_ScriptedClient([_boom]))

    async def test_slow_completion_times_out(self):
        def _slow():
            time.sleep(0.5)
            return _resp(content="too late")

        orchestrator = self._orchestrator(_ScriptedClient([_slow]), completion_timeout_seconds=0.05)

        with self.assertRaises(CompletionUnavailable):
            await orchestrator.run_turn(mode=ConfigurationMode(owner_id=OWNER), conversation_key=OWNER_KEY, history=[])

    async def test_typing_failure_does_not_stop_the_turn(self):
        self.discord_io.typing_ok = False
        reply = await self._configure(_ScriptedClient([_resp(content="Hello!")]))

        self.assertEqual(reply, "Hello!")

    async def test_interview_turn_only_sees_interview_tools(self):
        client = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "create_question_bank", {"name": "Sneaky"})]),
                _resp(content="Let's get started."),
            ]
        )

        await self._orchestrator(client).run_turn(
            mode=InterviewMode(responder_id=RESPONDER, owner_id=OWNER, guild_id=GUILD),
            conversation_key=RESPONDER_KEY,
            history=[{"role": "user", "content": "[player]: hi"}],
        )

        offered = {t["function"]["name"] for t in client.completions.requests[0]["tools"]}
        self.assertEqual(offered, {spec.name for spec in INTERVIEW_TOOLS})
        self.assertTrue(offered.isdisjoint({spec.name for spec in CONFIGURATION_TOOLS}))
        results = _tool_messages(client.completions.requests[-1])
        self.assertEqual(results[0]["result"], "validation_failure")
        self.assertEqual(await self.banks.list_banks(GUILD), [])

    async def test_interview_flow_across_two_turns(self):
        bank = await self.banks.create_bank("Beta", GUILD, OWNER)
        bank_id = bank["question_bank"]["id"]
        q1 = (await self.banks.create_question("What did you enjoy?", bank_id, GUILD))["question"]["id"]
        q2 = (await self.banks.create_question("What would you change?", bank_id, GUILD))["question"]["id"]
        mode = InterviewMode(responder_id=RESPONDER, owner_id=OWNER, guild_id=GUILD)

        first_turn = _ScriptedClient(
            [
                _resp(calls=[_call("c1", "get_active_session"), _call("c2", "list_available_banks")]),
                _resp(calls=[_call("c3", "start_session", {"question_bank_id": bank_id})]),
                _resp(calls=[_call("c4", "get_next_question")]),
                _resp(content="What did you enjoy?"),
            ]
        )
        await self._orchestrator(first_turn).run_turn(mode=mode, conversation_key=RESPONDER_KEY, history=[])

        second_turn = _ScriptedClient(
            [
                _resp(calls=[_call("c5", "save_response", {"response": "The boss fights!"})]),
                _resp(calls=[_call("c6", "get_next_question")]),
                _resp(content="What would you change?"),
            ]
        )
        await self._orchestrator(second_turn).run_turn(mode=mode, conversation_key=RESPONDER_KEY, history=[])

        results = _tool_messages(second_turn.completions.requests[-1])
        self.assertEqual(results[0]["result"], "ok")
        self.assertEqual(results[0]["response"]["question_id"], q1)
        self.assertEqual(results[1]["question"]["id"], q2)
        session = await self.sessions.get_active_session(RESPONDER)
        self.assertEqual(session.current_question_id, q2)


if __name__ == "__main__":
    unittest.main()
