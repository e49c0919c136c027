from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from typing import Callable


def _default_false(*args, **kwargs) -> bool:
    return False


@dataclass(frozen=True)
class CommandDeps:
    db: Any = None
    send_chunked: Callable | None = None
    guilds: Any = None
    banks: Any = None
    sessions: Any = None
    dispatcher_stats: Callable[[], dict] | None = None
    list_schema_migrations_sync: Callable | None = None


@dataclass(frozen=True)
class CommandGates:
    user_is_operator: Callable[[Any], bool] = _default_false
