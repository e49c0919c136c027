from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union


@dataclass(frozen=True)
class ConfigurationMode:
    """A server owner (or manager) setting up surveys.

    `guild_id` is the guild the turn started in; tools always re-read the
    owner's active guild, since `set_active_guild` may move it mid-turn.
    """

    owner_id: int
    guild_id: int | None = None
    kind: Literal["configuration"] = "configuration"


@dataclass(frozen=True)
class InterviewMode:
    responder_id: int
    owner_id: int
    guild_id: int
    kind: Literal["interview"] = "interview"


ConversationMode = Union[ConfigurationMode, InterviewMode]
