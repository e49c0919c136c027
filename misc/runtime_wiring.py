from __future__ import annotations

from config.defaults import APOLOGY_TEXT
from config.defaults import DEFAULT_HISTORY_LINE_CHARS
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from misc.commands.commands_owner import register as register_owner
from misc.events_runtime import register_runtime_events
from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps


def wire_bot_runtime(
    bot,
    *,
    db,
    discord_io,
    guilds,
    banks,
    sessions,
    orchestrator,
    send_chunked,
    user_is_operator,
    list_schema_migrations_sync,
    maintenance_loop_func,
    history_limit: int,
    history_line_chars: int = DEFAULT_HISTORY_LINE_CHARS,
    apology_text: str = APOLOGY_TEXT,
    prompts_source: str = "built-in",
) -> None:
    command_deps = CommandDeps(
        db=db,
        send_chunked=send_chunked,
        guilds=guilds,
        banks=banks,
        sessions=sessions,
        dispatcher_stats=discord_io.scheduler.stats,
        list_schema_migrations_sync=list_schema_migrations_sync,
    )
    command_gates = CommandGates(
        user_is_operator=user_is_operator,
    )

    register_owner(
        bot,
        deps=command_deps,
        gates=command_gates,
    )

    register_runtime_events(
        bot,
        deps=RuntimeDeps(
            db=db,
            discord_io=discord_io,
            guilds=guilds,
            banks=banks,
            sessions=sessions,
            orchestrator=orchestrator,
            history_limit=int(history_limit),
            history_line_chars=int(history_line_chars),
            apology_text=apology_text,
        ),
        boot=RuntimeBootDeps(
            maintenance_loop_func=maintenance_loop_func,
            prompts_source=prompts_source,
        ),
    )
