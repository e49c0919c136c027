from __future__ import annotations

import unittest

from jobs.service import expire_stale_sessions_tick
from jobs.service import maintenance_loop


class _FakeSessions:
    def __init__(self, expired=None):
        self.expired = expired or []
        self.calls: list[int] = []

    async def expire_stale_sessions(self, max_idle_days):
        self.calls.append(max_idle_days)
        return list(self.expired)


class MaintenanceJobTests(unittest.IsolatedAsyncioTestCase):
    async def test_tick_expires_idle_sessions(self):
        sessions = _FakeSessions(expired=["s1", "s2"])

        expired = await expire_stale_sessions_tick(sessions=sessions, max_idle_days=7)

        self.assertEqual(expired, ["s1", "s2"])
        self.assertEqual(sessions.calls, [7])

    async def test_disabled_loop_returns_immediately(self):
        sessions = _FakeSessions()

        await maintenance_loop(sessions=sessions, max_idle_days=0)

        self.assertEqual(sessions.calls, [])


if __name__ == "__main__":
    unittest.main()
