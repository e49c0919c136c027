from __future__ import annotations

from typing import Any

import discord


def member_can(member: Any, permission: str) -> bool:
    perms = getattr(member, "guild_permissions", None)
    if perms is None:
        return False
    if getattr(perms, "administrator", False):
        return True
    return bool(getattr(perms, permission, False))


def user_manages_guild(member: Any, guild: Any) -> bool:
    if guild is None:
        return False
    if getattr(guild, "owner_id", None) == getattr(member, "id", None):
        return True
    return member_can(member, "manage_guild")


def message_in_bot_thread(message: discord.Message, bot_user_id: int) -> bool:
    # Follow-ups only count in threads the bot itself opened.
    channel = getattr(message, "channel", None)
    if not isinstance(channel, discord.Thread):
        return False
    return int(getattr(channel, "owner_id", 0) or 0) == int(bot_user_id)
