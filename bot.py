import discord
from discord.ext import commands
from openai import OpenAI

from banks.service import QuestionBankRepository
from config.defaults import DEFAULT_HISTORY_LINE_CHARS
from config.settings import load_settings
from db.handle import open_db_handle
from db.migrate import list_schema_migrations_sync
from dispatch.discord_io import DiscordDispatcher
from dispatch.discord_io import chunk_text
from dispatch.scheduler import ScheduledDispatcher
from guilds.service import GuildContextStore
from jobs.service import maintenance_loop as maintenance_loop_service
from misc.runtime_wiring import wire_bot_runtime
from orchestrator.loop import ConversationOrchestrator
from orchestrator.prompts import load_prompts
from orchestrator.refs import ConversationRefs
from orchestrator.tools import SurveyTools
from sessions.service import ResearchSessionService


# =========================
# CONFIG
# =========================
SETTINGS = load_settings()

print(
    f"[CFG] model={SETTINGS.openai_model} db={SETTINGS.db_path} max_tool_steps={SETTINGS.max_tool_steps} "
    f"history={SETTINGS.history_limit} idle_days={SETTINGS.session_idle_days} "
    f"operators={len(SETTINGS.operator_user_ids)} "
    + " ".join(f"rate.{k}={v[0]}/{v[1]:g}s" for k, v in SETTINGS.rate_budgets.items())
)

PROMPTS, PROMPTS_WARNING = load_prompts(SETTINGS.prompts_path)
if PROMPTS_WARNING:
    print(f"[CFG] {PROMPTS_WARNING}")

client = OpenAI(api_key=SETTINGS.openai_api_key, timeout=SETTINGS.completion_timeout_seconds)

# =========================
# DISCORD CLIENT
# =========================
intents = discord.Intents.default()
intents.message_content = True
intents.members = True
intents.presences = True
intents.dm_messages = True

bot = commands.Bot(command_prefix="!", intents=intents)

# =========================
# COMPONENTS
# =========================
db = open_db_handle(SETTINGS.db_path)

scheduler = ScheduledDispatcher(
    SETTINGS.rate_budgets,
    timeout_seconds=SETTINGS.dispatch_timeout_seconds,
)
discord_io = DiscordDispatcher(bot, scheduler)

guilds = GuildContextStore(db=db, default_limits=SETTINGS.default_limits)
banks = QuestionBankRepository(db=db)
sessions = ResearchSessionService(db=db)
refs = ConversationRefs(db=db)

tools = SurveyTools(
    guilds=guilds,
    banks=banks,
    sessions=sessions,
    refs=refs,
    discord_io=discord_io,
    invite_max=SETTINGS.invite_max,
)
orchestrator = ConversationOrchestrator(
    client=client,
    model=SETTINGS.openai_model,
    tools=tools,
    prompts=PROMPTS,
    discord_io=discord_io,
    max_steps=SETTINGS.max_tool_steps,
    completion_timeout_seconds=SETTINGS.completion_timeout_seconds,
)


async def send_chunked(channel: discord.abc.Messageable, text: str) -> None:
    for part in chunk_text(text):
        await scheduler.schedule("reply", lambda part=part: channel.send(part))


def user_is_operator(user: discord.abc.User) -> bool:
    return int(getattr(user, "id", 0) or 0) in SETTINGS.operator_user_ids


async def maintenance_loop() -> None:
    return await maintenance_loop_service(
        sessions=sessions,
        max_idle_days=SETTINGS.session_idle_days,
        interval_seconds=SETTINGS.maintenance_interval_seconds,
    )


wire_bot_runtime(
    bot,
    db=db,
    discord_io=discord_io,
    guilds=guilds,
    banks=banks,
    sessions=sessions,
    orchestrator=orchestrator,
    send_chunked=send_chunked,
    user_is_operator=user_is_operator,
    list_schema_migrations_sync=list_schema_migrations_sync,
    maintenance_loop_func=maintenance_loop,
    history_limit=SETTINGS.history_limit,
    history_line_chars=DEFAULT_HISTORY_LINE_CHARS,
    prompts_source=PROMPTS.source,
)


try:
    bot.run(SETTINGS.discord_token)
finally:
    db.close()
