from __future__ import annotations

import asyncio

from sessions.service import ResearchSessionService


async def expire_stale_sessions_tick(*, sessions: ResearchSessionService, max_idle_days: int) -> list[str]:
    expired = await sessions.expire_stale_sessions(max_idle_days)
    if expired:
        print(f"[Jobs] expired {len(expired)} idle sessions (idle_days={max_idle_days})")
    return expired


async def maintenance_loop(
    *,
    sessions: ResearchSessionService,
    max_idle_days: int = 14,
    interval_seconds: int = 3600,
) -> None:
    if int(max_idle_days) <= 0:
        print("[Jobs] session expiry disabled (idle_days<=0)")
        return

    while True:
        try:
            await expire_stale_sessions_tick(sessions=sessions, max_idle_days=max_idle_days)
        except Exception as e:
            print(f"[Jobs] maintenance loop error: {e}")

        await asyncio.sleep(max(60, int(interval_seconds)))
