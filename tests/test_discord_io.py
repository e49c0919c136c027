from __future__ import annotations

import unittest
from types import SimpleNamespace

import discord

from config.defaults import DEFAULT_RATE_DIRECT_MESSAGE
from config.defaults import DEFAULT_RATE_GLOBAL
from config.defaults import DEFAULT_RATE_REPLY
from config.defaults import DEFAULT_RATE_THREAD_CREATE
from dispatch.discord_io import DiscordDispatcher
from dispatch.discord_io import chunk_text
from dispatch.scheduler import ScheduledDispatcher


class _FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class _Recorder:
    def __init__(self, channel_id: int = 500):
        self.id = channel_id
        self.sent: list[str] = []

    async def send(self, text: str):
        self.sent.append(text)
        return text


def _scheduler() -> ScheduledDispatcher:
    clock = _FakeClock()
    budgets = {
        "global": DEFAULT_RATE_GLOBAL,
        "direct_message": DEFAULT_RATE_DIRECT_MESSAGE,
        "reply": DEFAULT_RATE_REPLY,
        "thread_create": DEFAULT_RATE_THREAD_CREATE,
    }
    return ScheduledDispatcher(budgets, clock=clock, sleep=clock.sleep)


class ChunkTextTests(unittest.TestCase):
    def test_short_text_is_one_chunk(self):
        self.assertEqual(chunk_text("hello", 10), ["hello"])

    def test_prefers_paragraph_then_word_boundaries(self):
        text = "first paragraph\n\nsecond one here"
        self.assertEqual(chunk_text(text, 20), ["first paragraph", "second one here"])
        self.assertEqual(chunk_text("aaaa bbbb cccc", 9), ["aaaa", "bbbb cccc"])

    def test_hard_split_without_whitespace(self):
        self.assertEqual(chunk_text("x" * 25, 10), ["x" * 10, "x" * 10, "x" * 5])


class DiscordDispatcherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.scheduler = _scheduler()

    async def test_reply_threads_first_chunk_and_sends_the_rest(self):
        channel = _Recorder()
        replies: list[str] = []

        async def _reply(text):
            replies.append(text)
            return text

        message = SimpleNamespace(channel=channel, reply=_reply)
        io = DiscordDispatcher(SimpleNamespace(), self.scheduler, max_message_len=10)

        await io.reply(message, "aaaa bbbb cccc dddd")

        self.assertEqual(replies, ["aaaa bbbb"])
        self.assertEqual(channel.sent, ["cccc dddd"])
        self.assertEqual(self.scheduler.stats()["reply"]["started"], 2)

    async def test_send_direct_uses_direct_message_class(self):
        user = _Recorder()
        client = SimpleNamespace(get_user=lambda user_id: user)
        io = DiscordDispatcher(client, self.scheduler)

        await io.send_direct(42, "konnichiwa")

        self.assertEqual(user.sent, ["konnichiwa"])
        self.assertEqual(self.scheduler.stats()["direct_message"]["started"], 1)

    async def test_typing_failure_is_swallowed(self):
        async def _typing():
            raise RuntimeError("no typing for you")

        channel = SimpleNamespace(id=500, typing=_typing)
        io = DiscordDispatcher(SimpleNamespace(get_channel=lambda channel_id: channel), self.scheduler)

        self.assertFalse(await io.send_typing(500))
        self.assertEqual(self.scheduler.stats()["global"]["failed"], 1)

    async def test_pick_online_members_excludes_bots_offline_and_excluded(self):
        def member(member_id, *, bot=False, status=discord.Status.online):
            return SimpleNamespace(id=member_id, bot=bot, status=status)

        guild = SimpleNamespace(
            members=[
                member(1),
                member(2, bot=True),
                member(3, status=discord.Status.offline),
                member(4),
                member(5),
            ]
        )
        io = DiscordDispatcher(SimpleNamespace(), self.scheduler)

        everyone = io.pick_online_members(guild, 10, exclude_ids={5})
        some = io.pick_online_members(guild, 1)

        self.assertEqual([m.id for m in everyone], [1, 4])
        self.assertEqual(len(some), 1)
        self.assertIn(some[0].id, {1, 4, 5})

    async def test_manageable_guilds(self):
        def member(perms):
            return SimpleNamespace(guild_permissions=SimpleNamespace(administrator=False, **perms))

        owned = SimpleNamespace(id=1, owner_id=42, get_member=lambda uid: None)
        managed = SimpleNamespace(id=2, owner_id=7, get_member=lambda uid: member({"manage_guild": True}))
        visiting = SimpleNamespace(id=3, owner_id=7, get_member=lambda uid: member({"manage_guild": False}))
        io = DiscordDispatcher(SimpleNamespace(guilds=[owned, managed, visiting]), self.scheduler)

        self.assertEqual([g.id for g in io.list_manageable_guilds(42)], [1, 2])


if __name__ == "__main__":
    unittest.main()
