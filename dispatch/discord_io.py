from __future__ import annotations

import random
from typing import Any

import discord

from config.defaults import DEFAULT_THREAD_AUTO_ARCHIVE_MINUTES
from config.defaults import DISCORD_MAX_MESSAGE_LEN
from dispatch.scheduler import ScheduledDispatcher
from misc.discord_gates import member_can


def chunk_text(text: str, limit: int = DISCORD_MAX_MESSAGE_LEN) -> list[str]:
    text = text or ""
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text

    while len(remaining) > limit:
        # Prefer splitting on paragraph, then newline, then space
        split_at = remaining.rfind("\n\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind("\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, limit)
        if split_at == -1:
            split_at = limit

        chunk = remaining[:split_at].strip()
        if chunk:
            chunks.append(chunk)

        remaining = remaining[split_at:].strip()

    if remaining:
        chunks.append(remaining)

    return chunks


class DiscordDispatcher:
    """Discord primitives, each outbound call paced by its dispatch class."""

    def __init__(self, client: Any, scheduler: ScheduledDispatcher, *, max_message_len: int = DISCORD_MAX_MESSAGE_LEN):
        self.client = client
        self.scheduler = scheduler
        self.max_message_len = int(max_message_len)

    async def _resolve_user(self, user_id: int):
        user = self.client.get_user(int(user_id))
        if user is not None:
            return user
        return await self.scheduler.schedule("global", lambda: self.client.fetch_user(int(user_id)))

    async def _resolve_channel(self, channel_id: int):
        channel = self.client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        return await self.scheduler.schedule("global", lambda: self.client.fetch_channel(int(channel_id)))

    async def send_direct(self, user_id: int, text: str) -> list[Any]:
        user = await self._resolve_user(user_id)
        sent = []
        for part in chunk_text(text, self.max_message_len):
            sent.append(await self.scheduler.schedule("direct_message", lambda part=part: user.send(part)))
        return sent

    async def reply(self, message: Any, text: str) -> list[Any]:
        parts = chunk_text(text, self.max_message_len)
        sent = [await self.scheduler.schedule("reply", lambda: message.reply(parts[0]))]
        for part in parts[1:]:
            sent.append(await self.scheduler.schedule("reply", lambda part=part: message.channel.send(part)))
        return sent

    async def send_to_channel(self, channel: Any, text: str) -> list[Any]:
        sent = []
        for part in chunk_text(text, self.max_message_len):
            sent.append(await self.scheduler.schedule("reply", lambda part=part: channel.send(part)))
        return sent

    async def create_thread(self, message: Any, name: str) -> Any:
        clean = " ".join((name or "").split())[:100] or "survey"
        return await self.scheduler.schedule(
            "thread_create",
            lambda: message.create_thread(name=clean, auto_archive_duration=DEFAULT_THREAD_AUTO_ARCHIVE_MINUTES),
        )

    async def send_typing(self, channel_id: int) -> bool:
        async def _typing():
            channel = self.client.get_channel(int(channel_id))
            if channel is None:
                channel = await self.client.fetch_channel(int(channel_id))
            await channel.typing()

        return await self.scheduler.best_effort("global", _typing, label=f"typing channel={channel_id}")

    async def fetch_recent_history(self, channel: Any, limit: int = 20) -> list[Any]:
        async def _history():
            return [m async for m in channel.history(limit=int(limit))]

        return await self.scheduler.schedule("global", _history)

    async def fetch_members_with_permission(self, guild: Any, permission: str) -> list[Any]:
        if not getattr(guild, "chunked", True):
            await self.scheduler.schedule("global", guild.chunk)
        return [m for m in getattr(guild, "members", []) if not m.bot and member_can(m, permission)]

    def list_manageable_guilds(self, user_id: int) -> list[Any]:
        out = []
        for guild in getattr(self.client, "guilds", []):
            if getattr(guild, "owner_id", None) == int(user_id):
                out.append(guild)
                continue
            member = guild.get_member(int(user_id))
            if member is not None and member_can(member, "manage_guild"):
                out.append(guild)
        return out

    def pick_online_members(self, guild: Any, count: int, *, exclude_ids: set[int] | None = None) -> list[Any]:
        exclude = exclude_ids or set()
        candidates = [
            m
            for m in getattr(guild, "members", [])
            if not m.bot
            and int(m.id) not in exclude
            and getattr(m, "status", None) == discord.Status.online
        ]
        if len(candidates) <= count:
            return candidates
        return random.sample(candidates, int(count))
