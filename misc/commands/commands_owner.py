from __future__ import annotations

from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from research.errors import TransportFailure


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    @bot.command(name="survey.status")
    async def cmd_survey_status(ctx: commands.Context):
        owner_id = int(ctx.author.id)
        try:
            guild = await deps.guilds.get_active(owner_id)
            if guild is None:
                await ctx.send("No active server yet. Mention me in your server (or DM me) to set one up.")
                return
            banks = await deps.banks.list_banks(guild.id)
            bank_lines = []
            for bank in banks:
                report = await deps.banks.bank_results(bank.id, guild.id)
                s = report.get("sessions", {}) if report.get("ok") else {}
                bank_lines.append(
                    f"- {bank.name}: questions={len(report.get('questions', []))} "
                    f"started={s.get('started', 0)} completed={s.get('completed', 0)} "
                    f"active={s.get('active', 0)} cancelled={s.get('cancelled', 0)}"
                )
        except TransportFailure as e:
            print(f"[Commands] survey.status failed owner={owner_id}: {e}")
            await ctx.send("Could not read survey status right now. Try again shortly.")
            return

        discord_guild = bot.get_guild(guild.id)
        name = discord_guild.name if discord_guild is not None else str(guild.id)
        lines = [
            f"Active server: {name}",
            (
                f"Limits: banks={guild.question_bank_limit} questions/bank={guild.question_limit} "
                f"sessions={guild.research_sessions_limit} responses={guild.responses_limit}"
            ),
            f"Question banks ({len(banks)}):",
            *(bank_lines or ["- (none)"]),
        ]
        if gates.user_is_operator(ctx.author) and deps.dispatcher_stats is not None:
            lines.append("Dispatch:")
            for cls, row in deps.dispatcher_stats().items():
                lines.append(
                    f"- {cls}: started={int(row['started'])} failed={int(row['failed'])} "
                    f"spacing={row['min_interval']:.2f}s"
                )

        await deps.send_chunked(ctx.channel, "```\n" + "\n".join(lines)[:7000] + "\n```")

    @bot.command(name="survey.cancel")
    async def cmd_survey_cancel(ctx: commands.Context, session_id: str = ""):
        sid = (session_id or "").strip()
        if not sid:
            await ctx.send("Usage: `!survey.cancel <session_id>`")
            return

        try:
            session = await deps.sessions.get_session(sid)
            if session is None or (
                session.owner_id != int(ctx.author.id) and not gates.user_is_operator(ctx.author)
            ):
                await ctx.send("No such session.")
                return
            if session.is_terminal:
                await ctx.send(f"Session is already {session.status}.")
                return
            cancelled = await deps.sessions.cancel_session(sid)
        except TransportFailure as e:
            print(f"[Commands] survey.cancel failed session={sid}: {e}")
            await ctx.send("Could not cancel the session right now. Try again shortly.")
            return

        await ctx.send("Session cancelled." if cancelled else "Session was no longer active.")

    @bot.command(name="dbmigrations")
    async def cmd_dbmigrations(ctx: commands.Context, limit: int = 30):
        if not gates.user_is_operator(ctx.author):
            await ctx.send("This command is owner-only.")
            return

        lim = max(1, min(int(limit or 30), 200))
        rows = await deps.db.run(deps.list_schema_migrations_sync, lim)

        if not rows:
            await ctx.send("No schema migrations found.")
            return

        lines = [f"Applied schema migrations (latest {len(rows)}):"]
        for version, name, applied_at in rows:
            lines.append(f"- {version}_{name} @ {applied_at}")

        await deps.send_chunked(ctx.channel, "```\n" + "\n".join(lines)[:7000] + "\n```")
