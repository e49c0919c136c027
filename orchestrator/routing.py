from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from config.defaults import DEFAULT_HISTORY_LINE_CHARS
from guilds.service import GuildContextStore
from misc.discord_gates import message_in_bot_thread
from misc.discord_gates import user_manages_guild
from orchestrator.modes import ConfigurationMode
from orchestrator.modes import ConversationMode
from orchestrator.modes import InterviewMode
from research.errors import SessionInconsistency
from sessions.service import ResearchSessionService


@dataclass(frozen=True)
class TurnRoute:
    action: str  # ignore | configuration | interview
    mode: ConversationMode | None = None
    open_thread: bool = False
    activate_guild: bool = False
    reason: str = ""


IGNORE = TurnRoute(action="ignore")


def strip_bot_mention(text: str, bot_user_id: int) -> str:
    return re.sub(rf"<@!?\s*{int(bot_user_id)}\s*>", "", text or "").strip()


async def _active_session_or_none(sessions: ResearchSessionService, user_id: int):
    try:
        return await sessions.get_active_session(user_id)
    except SessionInconsistency as e:
        print(f"[Router] {e}; treating as no session")
        return None


async def classify_turn(
    message: Any,
    *,
    bot_user_id: int,
    guilds: GuildContextStore,
    sessions: ResearchSessionService,
) -> TurnRoute:
    author = message.author
    if getattr(author, "bot", False) or int(author.id) == int(bot_user_id):
        return IGNORE
    author_id = int(author.id)

    guild = getattr(message, "guild", None)
    if guild is None:
        session = await _active_session_or_none(sessions, author_id)
        if session is not None and session.responder_id == author_id and session.owner_id != author_id:
            return TurnRoute(
                action="interview",
                mode=InterviewMode(responder_id=author_id, owner_id=session.owner_id, guild_id=session.guild_id),
                reason="dm_active_session",
            )
        active = await guilds.get_active(author_id)
        return TurnRoute(
            action="configuration",
            mode=ConfigurationMode(owner_id=author_id, guild_id=active.id if active is not None else None),
            reason="dm_owner",
        )

    mentioned = any(int(getattr(m, "id", 0)) == int(bot_user_id) for m in getattr(message, "mentions", []) or [])
    in_bot_thread = message_in_bot_thread(message, bot_user_id)
    if not mentioned and not in_bot_thread:
        return IGNORE

    open_thread = mentioned and not in_bot_thread
    guild_id = int(guild.id)

    if user_manages_guild(author, guild):
        return TurnRoute(
            action="configuration",
            mode=ConfigurationMode(owner_id=author_id, guild_id=guild_id),
            open_thread=open_thread,
            activate_guild=True,
            reason="guild_manager",
        )

    # Banks are offered per guild; the owner here is the first one recorded for it,
    # never replaced by later managers, else the Discord owner.
    session = await _active_session_or_none(sessions, author_id)
    if session is not None and session.guild_id == guild_id:
        owner_id = session.owner_id
    else:
        stored = await guilds.get(guild_id)
        owner_id = stored.owner_id if stored is not None and stored.owner_id else int(guild.owner_id)

    return TurnRoute(
        action="interview",
        mode=InterviewMode(responder_id=author_id, owner_id=int(owner_id), guild_id=guild_id),
        open_thread=open_thread,
        reason="guild_member",
    )


def format_history(
    messages: list[Any],
    *,
    bot_user_id: int,
    max_line_chars: int = DEFAULT_HISTORY_LINE_CHARS,
) -> list[dict[str, str]]:
    """Channel history (newest first, as Discord returns it) as chat messages, oldest first."""
    out: list[dict[str, str]] = []
    for msg in reversed(list(messages)):
        text = strip_bot_mention(getattr(msg, "content", "") or "", bot_user_id)
        if not text:
            continue
        author = msg.author
        if int(author.id) == int(bot_user_id):
            out.append({"role": "assistant", "content": text[:max_line_chars]})
            continue
        name = getattr(author, "display_name", None) or getattr(author, "name", None) or str(author.id)
        out.append({"role": "user", "content": f"[{name}]: {text}"[:max_line_chars]})
    return out
