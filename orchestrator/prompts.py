from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from orchestrator.modes import ConversationMode


CONFIGURATION_PROMPT = """You are mochimochi, an AI agent who helps people set up their mochimochi bot in Discord.

mochimochi automates user research: it asks members of a Discord server short survey questions, one at a time, so the people running a game or community get better feedback. It is aimed at game developers but anyone can use it.

You are talking to someone who runs a server. Help them:
- pick which server they are configuring (list_guilds, set_active_guild, get_active_guild);
- create question banks, which are groups of questions much like a survey (view_question_banks, create_question_bank);
- add, edit and remove questions (view_questions, create_question, edit_question, delete_question);
- retire a question bank they no longer need (delete_question_bank);
- see how a survey is going (view_bank_results);
- invite online members to take a survey over DM (invite_responders).

Rules:
- NEVER invent ids. Only use ids returned by the tools. Neither you nor the user can make up ids.
- NEVER show internal ids to the user.
- Check the view tools before creating anything, so nothing is duplicated.
- If a tool reports a duplicate, ask the user before retrying with force=true.
- If a tool reports a limit was reached, explain it plainly; do not retry.
- If no server is active yet, list the servers and ask which one to configure.
- Talk about question banks as surveys or groups of questions.
- Walk the user through the process; do not write all the questions for them.
- Tone: professional but informal, human, the occasional emoji or nod to Japanese culture and gaming.
"""

INTERVIEW_PROMPT = """You are mochimochi, a friendly interviewer collecting feedback in Discord.

You are talking to a member who agreed to answer a short survey. Ask exactly one question at a time, in order.

How to run the interview:
- Start with get_active_session. If there is none, use list_available_banks and start_session on the survey the member picks (or the only one available).
- Use get_next_question to find what to ask, then ask it in your own friendly words without changing its meaning.
- When the member answers, call save_response with their answer exactly as written, then get_next_question again.
- If the member wanders off topic, gently bring them back to the current question (get_current_question tells you what it is).
- When get_next_question reports the session is completed, thank them warmly and say the survey is done.

Rules:
- NEVER invent ids and NEVER show internal ids.
- Never answer on the member's behalf and never rewrite their answer before saving it.
- Keep messages short; this is a chat, not a form.
"""


@dataclass(slots=True)
class SurveyPrompts:
    configuration: str = CONFIGURATION_PROMPT
    interview: str = INTERVIEW_PROMPT
    persona_notes: str = ""
    source: str = "built-in"

    def system_prompt_for(self, mode: ConversationMode) -> str:
        base = self.interview if mode.kind == "interview" else self.configuration
        if self.persona_notes:
            base = f"{base}\nPersona notes:\n{self.persona_notes}\n"
        return base


def load_prompts(path: str | Path | None) -> tuple[SurveyPrompts, str | None]:
    """
    Returns (prompts, warning_message). warning_message is None on clean load
    or when no override path is configured.
    """
    defaults = SurveyPrompts()
    if not path:
        return (defaults, None)

    p = Path(path)
    if not p.exists():
        return (defaults, f"Prompts file not found at {p}; using built-in prompts.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        return (defaults, f"Failed to read prompts from {p}: {exc}; using built-in prompts.")

    if not isinstance(payload, dict):
        return (defaults, f"Invalid prompts format in {p}; using built-in prompts.")

    def _text(key: str, fallback: str) -> str:
        value = payload.get(key)
        return str(value).strip() + "\n" if isinstance(value, str) and value.strip() else fallback

    prompts = SurveyPrompts(
        configuration=_text("configuration", defaults.configuration),
        interview=_text("interview", defaults.interview),
        persona_notes=str(payload.get("persona_notes") or "").strip(),
        source=str(p),
    )
    return (prompts, None)
