from __future__ import annotations

# Guild quotas applied when a guild is first configured. The provisioning side
# raises or lowers them per guild afterwards.
DEFAULT_QUESTION_LIMIT = 10
DEFAULT_QUESTION_BANK_LIMIT = 3
DEFAULT_RESEARCH_SESSIONS_LIMIT = 50
DEFAULT_RESPONSES_LIMIT = 500

# Outbound budgets: (calls, per_seconds)
DEFAULT_RATE_GLOBAL = (50, 1.0)
DEFAULT_RATE_DIRECT_MESSAGE = (5, 60.0)
DEFAULT_RATE_REPLY = (5, 2.0)
DEFAULT_RATE_THREAD_CREATE = (5, 600.0)
DEFAULT_DISPATCH_TIMEOUT_SECONDS = 30.0

DEFAULT_OPENAI_MODEL = "gpt-4.1"
DEFAULT_MAX_TOOL_STEPS = 10
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 60.0
DEFAULT_HISTORY_LIMIT = 20
DEFAULT_HISTORY_LINE_CHARS = 1500

DEFAULT_SESSION_IDLE_DAYS = 14
DEFAULT_MAINTENANCE_INTERVAL_SECONDS = 3600

DEFAULT_INVITE_MAX = 5
DEFAULT_THREAD_AUTO_ARCHIVE_MINUTES = 1440
DEFAULT_DB_PATH = "mochimochi.db"

DISCORD_MAX_MESSAGE_LEN = 1900  # keep under 2000 hard limit

APOLOGY_TEXT = "Sorry, I ran into a problem while handling that. Please try again in a moment."
WELCOME_TEXT = (
    "Hi! Thanks for adding mochimochi to **{guild}**. Mention me in the server or DM me "
    "whenever you want to set up a survey for your community."
)
