from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class RuntimeDeps:
    # core
    db: Any
    discord_io: Any

    # components
    guilds: Any
    banks: Any
    sessions: Any
    orchestrator: Any

    # turn shaping
    history_limit: int
    history_line_chars: int
    apology_text: str


@dataclass(frozen=True)
class RuntimeBootDeps:
    maintenance_loop_func: Callable
    prompts_source: str = "built-in"
