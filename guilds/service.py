from __future__ import annotations

from dataclasses import asdict

from config.settings import GuildLimits
from db.handle import DbHandle
from guilds.store import ensure_guild_sync
from guilds.store import get_active_guild_sync
from guilds.store import get_guild_sync
from guilds.store import list_owner_guilds_sync
from guilds.store import provision_limits_sync
from guilds.store import set_active_guild_sync
from research.models import Guild


class GuildContextStore:
    """Which guild each manager is configuring, and each guild's quotas."""

    def __init__(self, *, db: DbHandle, default_limits: GuildLimits | None = None) -> None:
        self.db = db
        self.default_limits = default_limits or GuildLimits()

    async def set_active(self, guild_id: int, owner_id: int) -> Guild:
        guild = await self.db.run(
            set_active_guild_sync,
            guild_id=int(guild_id),
            owner_id=int(owner_id),
            default_limits=asdict(self.default_limits),
        )
        print(f"[Guilds] active guild user={owner_id} guild={guild_id} owner={guild.owner_id}")
        return guild

    async def get_active(self, owner_id: int) -> Guild | None:
        return await self.db.run(get_active_guild_sync, int(owner_id))

    async def get(self, guild_id: int) -> Guild | None:
        return await self.db.run(get_guild_sync, int(guild_id))

    async def ensure(self, guild_id: int, owner_id: int) -> Guild:
        return await self.db.run(
            ensure_guild_sync,
            guild_id=int(guild_id),
            owner_id=int(owner_id),
            default_limits=asdict(self.default_limits),
        )

    async def list_for_owner(self, owner_id: int) -> list[Guild]:
        return await self.db.run(list_owner_guilds_sync, int(owner_id))

    async def provision_limits(self, guild_id: int, **limits: int) -> Guild | None:
        # Entry point for the provisioning/billing side; never exposed as a tool.
        return await self.db.run(provision_limits_sync, int(guild_id), limits)
