from __future__ import annotations

import asyncio
import traceback

import discord
from discord.ext import commands
from config.defaults import WELCOME_TEXT
from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps
from orchestrator.refs import conversation_key
from orchestrator.routing import TurnRoute
from orchestrator.routing import classify_turn
from orchestrator.routing import format_history
from orchestrator.routing import strip_bot_mention
from research.errors import LoopExhausted
from research.errors import TransportFailure


def _thread_name(message: discord.Message, route: TurnRoute) -> str:
    who = getattr(message.author, "display_name", None) or getattr(message.author, "name", "someone")
    if route.action == "configuration":
        return f"mochimochi setup with {who}"
    return f"feedback from {who}"


async def handle_turn(message: discord.Message, route: TurnRoute, *, deps: RuntimeDeps, bot_user_id: int) -> None:
    author_id = int(message.author.id)
    try:
        if route.activate_guild and message.guild is not None:
            await deps.guilds.set_active(int(message.guild.id), author_id)

        raw_history = await deps.discord_io.fetch_recent_history(message.channel, deps.history_limit)
        history = format_history(raw_history, bot_user_id=bot_user_id, max_line_chars=deps.history_line_chars)
        if not history:
            prompt = strip_bot_mention(message.content or "", bot_user_id)
            history = [{"role": "user", "content": f"[{message.author.display_name}]: {prompt or 'hi'}"}]

        thread = None
        if route.open_thread:
            thread = await deps.discord_io.create_thread(message, _thread_name(message, route))
        target_channel_id = int(thread.id) if thread is not None else int(message.channel.id)

        reply = await deps.orchestrator.run_turn(
            mode=route.mode,
            conversation_key=conversation_key(target_channel_id, author_id),
            history=history,
            channel_id=target_channel_id,
        )

        if thread is not None:
            await deps.discord_io.send_to_channel(thread, reply)
        else:
            await deps.discord_io.reply(message, reply)

    except (TransportFailure, LoopExhausted) as e:
        print(
            f"[Orchestrator] turn failed user={author_id} channel={message.channel.id} "
            f"route={route.reason}: {type(e).__name__}: {e}"
        )
        await _apologize(message, deps)
    except Exception as e:
        print(f"[Orchestrator] Error user={author_id} channel={message.channel.id}: {e}\n{traceback.format_exc()}")
        await _apologize(message, deps)


async def _apologize(message: discord.Message, deps: RuntimeDeps) -> None:
    await deps.discord_io.scheduler.best_effort(
        "reply",
        lambda: message.reply(deps.apology_text),
        label=f"apology channel={message.channel.id}",
    )


async def greet_guild_managers(guild: discord.Guild, *, deps: RuntimeDeps) -> int:
    try:
        managers = await deps.discord_io.fetch_members_with_permission(guild, "manage_guild")
    except (TransportFailure, discord.HTTPException) as e:
        print(f"[Guilds] could not list managers of {guild.id}: {e}")
        return 0

    greeted = 0
    for member in managers:
        try:
            await deps.discord_io.send_direct(int(member.id), WELCOME_TEXT.format(guild=guild.name))
            greeted += 1
        except (TransportFailure, discord.HTTPException) as e:
            print(f"[Guilds] welcome DM to {member.id} failed: {e}")
    print(f"[Guilds] greeted {greeted}/{len(managers)} managers of {guild.id}")
    return greeted


def invokes_registered_command(bot: commands.Bot, content: str | None) -> bool:
    """True only when the first word after `!` names a command; "!!! loved it" is a normal turn."""
    text = (content or "").lstrip()
    if not text.startswith("!"):
        return False
    parts = text[1:].split(maxsplit=1)
    return bool(parts) and bot.get_command(parts[0]) is not None


def register_runtime_events(
    bot: commands.Bot,
    *,
    deps: RuntimeDeps,
    boot: RuntimeBootDeps,
) -> None:
    @bot.event
    async def on_ready():
        print(f"mochimochi is online as {bot.user} in {len(bot.guilds)} guilds (prompts={boot.prompts_source})")
        if not getattr(bot, "_maintenance_task", None):
            bot._maintenance_task = asyncio.create_task(boot.maintenance_loop_func())
            print("[Jobs] maintenance loop started")

    @bot.event
    async def on_guild_join(guild: discord.Guild):
        print(f"[Guilds] bot added to {guild.name} (id={guild.id}) owned by {guild.owner_id}")
        try:
            await deps.guilds.ensure(int(guild.id), int(guild.owner_id))
        except TransportFailure as e:
            print(f"[Guilds] could not record guild {guild.id}: {e}")
        await greet_guild_managers(guild, deps=deps)

    @bot.event
    async def on_message(message: discord.Message):
        if message.author.bot:
            return

        if invokes_registered_command(bot, message.content):
            await bot.process_commands(message)
            return

        if bot.user is None:
            return
        bot_user_id = int(bot.user.id)

        try:
            route = await classify_turn(message, bot_user_id=bot_user_id, guilds=deps.guilds, sessions=deps.sessions)
        except TransportFailure as e:
            print(f"[Router] routing failed user={message.author.id}: {e}")
            await _apologize(message, deps)
            return

        if route.action == "ignore":
            return

        print(f"[Router] user={message.author.id} channel={message.channel.id} -> {route.action} ({route.reason})")
        await handle_turn(message, route, deps=deps, bot_user_id=bot_user_id)
