from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping

from config.defaults import DEFAULT_COMPLETION_TIMEOUT_SECONDS
from config.defaults import DEFAULT_DB_PATH
from config.defaults import DEFAULT_DISPATCH_TIMEOUT_SECONDS
from config.defaults import DEFAULT_HISTORY_LIMIT
from config.defaults import DEFAULT_INVITE_MAX
from config.defaults import DEFAULT_MAINTENANCE_INTERVAL_SECONDS
from config.defaults import DEFAULT_MAX_TOOL_STEPS
from config.defaults import DEFAULT_OPENAI_MODEL
from config.defaults import DEFAULT_QUESTION_BANK_LIMIT
from config.defaults import DEFAULT_QUESTION_LIMIT
from config.defaults import DEFAULT_RATE_DIRECT_MESSAGE
from config.defaults import DEFAULT_RATE_GLOBAL
from config.defaults import DEFAULT_RATE_REPLY
from config.defaults import DEFAULT_RATE_THREAD_CREATE
from config.defaults import DEFAULT_RESEARCH_SESSIONS_LIMIT
from config.defaults import DEFAULT_RESPONSES_LIMIT
from config.defaults import DEFAULT_SESSION_IDLE_DAYS


@dataclass(frozen=True)
class GuildLimits:
    question_limit: int = DEFAULT_QUESTION_LIMIT
    question_bank_limit: int = DEFAULT_QUESTION_BANK_LIMIT
    research_sessions_limit: int = DEFAULT_RESEARCH_SESSIONS_LIMIT
    responses_limit: int = DEFAULT_RESPONSES_LIMIT


@dataclass(frozen=True)
class Settings:
    discord_token: str
    openai_api_key: str
    openai_model: str
    db_path: str
    prompts_path: str | None
    rate_budgets: dict[str, tuple[int, float]]
    dispatch_timeout_seconds: float
    max_tool_steps: int
    completion_timeout_seconds: float
    history_limit: int
    session_idle_days: int
    maintenance_interval_seconds: int
    invite_max: int
    default_limits: GuildLimits
    operator_user_ids: frozenset[int] = frozenset()


def parse_id_set(raw: str | None) -> set[int]:
    if not raw:
        return set()
    out: set[int] = set()
    for tok in re.split(r"[\s,;]+", raw.strip()):
        if not tok:
            continue
        if re.fullmatch(r"\d{8,22}", tok):
            out.add(int(tok))
    return out


def parse_rate(raw: str | None, fallback: tuple[int, float]) -> tuple[int, float]:
    """Parse "<calls>/<seconds>" (e.g. "5/60"); anything malformed keeps the fallback."""
    if raw is None or not raw.strip():
        return fallback
    m = re.fullmatch(r"\s*(\d+)\s*/\s*(\d+(?:\.\d+)?)\s*", raw)
    if not m:
        print(f"[CFG] invalid rate {raw!r}; falling back to {fallback[0]}/{fallback[1]:g}")
        return fallback
    calls, seconds = int(m.group(1)), float(m.group(2))
    if calls <= 0 or seconds <= 0:
        print(f"[CFG] non-positive rate {raw!r}; falling back to {fallback[0]}/{fallback[1]:g}")
        return fallback
    return calls, seconds


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"[CFG] invalid {key}={raw!r}; falling back to {default}")
        return default


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"[CFG] invalid {key}={raw!r}; falling back to {default}")
        return default


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env

    discord_token = (env.get("DISCORD_TOKEN") or "").strip()
    openai_api_key = (env.get("OPENAI_API_KEY") or "").strip()
    if not discord_token:
        raise RuntimeError("Missing DISCORD_TOKEN env var")
    if not openai_api_key:
        raise RuntimeError("Missing OPENAI_API_KEY env var")

    rate_budgets = {
        "global": parse_rate(env.get("MOCHI_RATE_GLOBAL"), DEFAULT_RATE_GLOBAL),
        "direct_message": parse_rate(env.get("MOCHI_RATE_DM"), DEFAULT_RATE_DIRECT_MESSAGE),
        "reply": parse_rate(env.get("MOCHI_RATE_REPLY"), DEFAULT_RATE_REPLY),
        "thread_create": parse_rate(env.get("MOCHI_RATE_THREAD"), DEFAULT_RATE_THREAD_CREATE),
    }

    return Settings(
        discord_token=discord_token,
        openai_api_key=openai_api_key,
        openai_model=(env.get("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL).strip() or DEFAULT_OPENAI_MODEL,
        db_path=(env.get("MOCHI_DB_PATH") or DEFAULT_DB_PATH).strip() or DEFAULT_DB_PATH,
        prompts_path=(env.get("MOCHI_PROMPTS_PATH") or "").strip() or None,
        rate_budgets=rate_budgets,
        dispatch_timeout_seconds=_float_env(env, "MOCHI_DISPATCH_TIMEOUT_SECONDS", DEFAULT_DISPATCH_TIMEOUT_SECONDS),
        max_tool_steps=max(1, _int_env(env, "MOCHI_MAX_TOOL_STEPS", DEFAULT_MAX_TOOL_STEPS)),
        completion_timeout_seconds=_float_env(
            env, "MOCHI_COMPLETION_TIMEOUT_SECONDS", DEFAULT_COMPLETION_TIMEOUT_SECONDS
        ),
        history_limit=max(1, min(_int_env(env, "MOCHI_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT), 100)),
        session_idle_days=_int_env(env, "MOCHI_SESSION_IDLE_DAYS", DEFAULT_SESSION_IDLE_DAYS),
        maintenance_interval_seconds=_int_env(
            env, "MOCHI_MAINTENANCE_INTERVAL_SECONDS", DEFAULT_MAINTENANCE_INTERVAL_SECONDS
        ),
        invite_max=max(1, _int_env(env, "MOCHI_INVITE_MAX", DEFAULT_INVITE_MAX)),
        default_limits=GuildLimits(
            question_limit=_int_env(env, "MOCHI_DEFAULT_QUESTION_LIMIT", DEFAULT_QUESTION_LIMIT),
            question_bank_limit=_int_env(env, "MOCHI_DEFAULT_QUESTION_BANK_LIMIT", DEFAULT_QUESTION_BANK_LIMIT),
            research_sessions_limit=_int_env(
                env, "MOCHI_DEFAULT_RESEARCH_SESSIONS_LIMIT", DEFAULT_RESEARCH_SESSIONS_LIMIT
            ),
            responses_limit=_int_env(env, "MOCHI_DEFAULT_RESPONSES_LIMIT", DEFAULT_RESPONSES_LIMIT),
        ),
        operator_user_ids=frozenset(parse_id_set(env.get("MOCHI_OPERATOR_USER_IDS"))),
    )
