from __future__ import annotations

import json
from typing import Any

import discord
from pydantic import ValidationError

from banks.service import QuestionBankRepository
from dispatch.discord_io import DiscordDispatcher
from guilds.service import GuildContextStore
from orchestrator.catalog import ToolArgs
from orchestrator.catalog import catalog_for
from orchestrator.modes import ConfigurationMode
from orchestrator.modes import ConversationMode
from orchestrator.modes import InterviewMode
from orchestrator.refs import ConversationRefs
from research import results
from research.errors import SessionInconsistency
from sessions.service import ResearchSessionService


INVITE_TEXT = (
    "Hi {name}! The folks running **{guild}** would love your feedback. "
    "Reply here whenever you have a few minutes and I'll walk you through some short questions."
)


def _validation_errors(err: ValidationError) -> list[dict[str, Any]]:
    return [{"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", ""))} for e in err.errors()]


class SurveyTools:
    """Validates and runs catalog operations on behalf of the model.

    Results go back to the model untouched; only transport failures raise.
    """

    def __init__(
        self,
        *,
        guilds: GuildContextStore,
        banks: QuestionBankRepository,
        sessions: ResearchSessionService,
        refs: ConversationRefs,
        discord_io: DiscordDispatcher | None = None,
        invite_max: int = 5,
    ) -> None:
        self.guilds = guilds
        self.banks = banks
        self.sessions = sessions
        self.refs = refs
        self.discord_io = discord_io
        self.invite_max = int(invite_max)

    async def invoke(
        self,
        mode: ConversationMode,
        conversation_key: str,
        name: str,
        raw_arguments: str | dict[str, Any] | None,
    ) -> dict[str, Any]:
        spec = catalog_for(mode).get(name)
        if spec is None:
            return results.validation_failure(name, f"Unknown tool {name!r} for a {mode.kind} conversation.")

        if isinstance(raw_arguments, dict):
            data = raw_arguments
        else:
            try:
                data = json.loads(raw_arguments or "{}")
            except json.JSONDecodeError as e:
                return results.validation_failure(name, f"Arguments are not valid JSON: {e}")
        if not isinstance(data, dict):
            return results.validation_failure(name, "Arguments must be a JSON object.")

        try:
            args = spec.args.model_validate(data)
        except ValidationError as e:
            return results.validation_failure(name, _validation_errors(e))

        for field_name, ref_kind in spec.refs:
            value = getattr(args, field_name, None)
            if not value:
                continue
            if await self.refs.unknown(conversation_key, ref_kind, [value]):
                listing = "view_question_banks" if ref_kind == "bank" else "view_questions"
                if mode.kind == "interview":
                    listing = "list_available_banks" if ref_kind == "bank" else "get_next_question"
                return results.validation_failure(
                    name,
                    [{"loc": [field_name], "msg": f"Unknown id. Call {listing} and use an id it returns."}],
                )

        handler = getattr(self, f"_tool_{name}")
        result = await handler(mode, args)
        await self.refs.record_result(conversation_key, result)
        print(f"[Orchestrator] tool={name} mode={mode.kind} -> {results.result_kind(result)}")
        return result

    # ---- configuration ----

    async def _active_guild_id(self, mode: ConfigurationMode) -> int | None:
        guild = await self.guilds.get_active(mode.owner_id)
        return guild.id if guild is not None else None

    def _no_active_guild(self) -> dict[str, Any]:
        out = results.not_found("active_guild")
        out["hint"] = "Call list_guilds, then set_active_guild."
        return out

    async def _tool_list_guilds(self, mode: ConfigurationMode, args: ToolArgs) -> dict[str, Any]:
        manageable = self.discord_io.list_manageable_guilds(mode.owner_id) if self.discord_io else []
        active = await self._active_guild_id(mode)
        return results.ok(
            guilds=[
                {"id": str(g.id), "name": str(getattr(g, "name", g.id)), "active": int(g.id) == active}
                for g in manageable
            ]
        )

    async def _tool_set_active_guild(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = int(args.guild_id)
        manageable = self.discord_io.list_manageable_guilds(mode.owner_id) if self.discord_io else []
        match = next((g for g in manageable if int(g.id) == guild_id), None)
        if match is None:
            return results.not_found("guild", guild_id)
        guild = await self.guilds.set_active(guild_id, mode.owner_id)
        payload = guild.to_payload()
        payload["name"] = str(getattr(match, "name", guild_id))
        return results.ok(guild=payload)

    async def _tool_get_active_guild(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild = await self.guilds.get_active(mode.owner_id)
        if guild is None:
            return self._no_active_guild()
        payload = guild.to_payload()
        if self.discord_io is not None:
            discord_guild = self.discord_io.client.get_guild(guild.id)
            if discord_guild is not None:
                payload["name"] = str(discord_guild.name)
        return results.ok(guild=payload)

    async def _tool_view_question_banks(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        banks = await self.banks.list_banks(guild_id)
        return results.ok(question_banks=[b.to_payload() for b in banks])

    async def _tool_create_question_bank(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.create_bank(args.name, guild_id, mode.owner_id, force=args.force)

    async def _tool_view_questions(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        bank = await self.banks.get_bank(args.question_bank_id, guild_id)
        if bank is None:
            return results.not_found("question_bank", args.question_bank_id)
        questions = await self.banks.list_questions(bank.id, guild_id)
        return results.ok(question_bank=bank.to_payload(), questions=[q.to_payload() for q in questions])

    async def _tool_create_question(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.create_question(args.question, args.question_bank_id, guild_id, category=args.category)

    async def _tool_edit_question(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.update_question(
            args.question_id,
            args.question_bank_id,
            guild_id,
            args.question,
            category=args.category,
        )

    async def _tool_delete_question(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.delete_question(args.question_id, args.question_bank_id, guild_id)

    async def _tool_delete_question_bank(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.delete_bank(args.question_bank_id, guild_id)

    async def _tool_view_bank_results(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        return await self.banks.bank_results(args.question_bank_id, guild_id)

    async def _tool_invite_responders(self, mode: ConfigurationMode, args) -> dict[str, Any]:
        guild_id = await self._active_guild_id(mode)
        if guild_id is None:
            return self._no_active_guild()
        bank = await self.banks.get_bank(args.question_bank_id, guild_id)
        if bank is None or bank.status != "active":
            return results.not_found("question_bank", args.question_bank_id)
        if not await self.banks.list_questions(bank.id, guild_id):
            return results.conflict("question_bank_empty", hint="Add at least one question first.")

        discord_guild = self.discord_io.client.get_guild(guild_id) if self.discord_io else None
        if discord_guild is None:
            return results.not_found("guild", guild_id)

        count = min(int(args.count), self.invite_max)
        members = self.discord_io.pick_online_members(discord_guild, count, exclude_ids={int(mode.owner_id)})
        invited: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for member in members:
            name = str(getattr(member, "display_name", None) or member.name)
            started = await self.sessions.start_session(bank.id, mode.owner_id, member.id, guild_id)
            if not started.get("ok"):
                skipped.append({"member": name, "reason": started.get("reason") or started["result"]})
                if started["result"] == "quota_exceeded":
                    break
                continue
            try:
                await self.discord_io.send_direct(
                    member.id, INVITE_TEXT.format(name=name, guild=getattr(discord_guild, "name", "this server"))
                )
            except discord.Forbidden as e:
                # Closed DMs only show up on send; that member is skipped, the rest still get invited.
                await self.sessions.cancel_session(started["session"]["id"])
                print(f"[Orchestrator] invite to member={member.id} refused: {e}")
                skipped.append({"member": name, "reason": "dms_closed"})
                continue
            except Exception:
                # An unsent invite must not leave an interview waiting on someone who never heard of it.
                await self.sessions.cancel_session(started["session"]["id"])
                raise
            invited.append({"member": name})

        return results.ok(
            question_bank=bank.to_payload(),
            invited=invited,
            skipped=skipped,
            online_candidates=len(members),
        )

    # ---- interview ----

    async def _determinate_session(self, mode: InterviewMode):
        try:
            return await self.sessions.get_active_session(mode.responder_id), None
        except SessionInconsistency as e:
            print(f"[Sessions] {e}")
            return None, results.conflict("session_state_unclear")

    def _no_session(self) -> dict[str, Any]:
        out = results.not_found("research_session")
        out["hint"] = "Call list_available_banks, then start_session."
        return out

    async def _tool_get_active_session(self, mode: InterviewMode, args) -> dict[str, Any]:
        session, problem = await self._determinate_session(mode)
        if problem is not None:
            return problem
        if session is None:
            return results.ok(session=None)
        bank = await self.sessions.bank_for_session(session)
        return results.ok(
            session=session.to_payload(),
            question_bank=bank.to_payload() if bank is not None else None,
        )

    async def _tool_list_available_banks(self, mode: InterviewMode, args) -> dict[str, Any]:
        banks = await self.sessions.available_banks(mode.responder_id, mode.owner_id, mode.guild_id)
        return results.ok(question_banks=[b.to_payload() for b in banks])

    async def _tool_start_session(self, mode: InterviewMode, args) -> dict[str, Any]:
        return await self.sessions.start_session(
            args.question_bank_id,
            mode.owner_id,
            mode.responder_id,
            mode.guild_id,
        )

    async def _tool_get_next_question(self, mode: InterviewMode, args) -> dict[str, Any]:
        session, problem = await self._determinate_session(mode)
        if problem is not None:
            return problem
        if session is None:
            return self._no_session()
        nxt = await self.sessions.next_question(session.id)
        if nxt is None:
            return self._no_session()
        return results.ok(**nxt.to_payload())

    async def _tool_get_current_question(self, mode: InterviewMode, args) -> dict[str, Any]:
        session, problem = await self._determinate_session(mode)
        if problem is not None:
            return problem
        if session is None:
            return self._no_session()
        question = await self.sessions.current_question(session.id)
        return results.ok(question=question.to_payload() if question is not None else None)

    async def _tool_save_response(self, mode: InterviewMode, args) -> dict[str, Any]:
        session, problem = await self._determinate_session(mode)
        if problem is not None:
            return problem
        if session is None:
            return self._no_session()
        question_id = args.question_id or session.current_question_id
        if not question_id:
            return results.conflict("no_current_question", hint="Call get_next_question first.")
        return await self.sessions.save_response(
            session.id,
            question_id,
            mode.responder_id,
            session.owner_id,
            args.response,
        )
