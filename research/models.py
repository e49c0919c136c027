from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


BANK_STATUSES = {"active", "archived"}
SESSION_STATUSES = {"active", "completed", "cancelled"}
SESSION_TERMINAL_STATES = {"completed", "cancelled"}


@dataclass(slots=True)
class Guild:
    id: int
    owner_id: int | None
    question_limit: int
    question_bank_limit: int
    research_sessions_limit: int
    responses_limit: int
    active: bool
    created_at_utc: str | None = None
    updated_at_utc: str | None = None

    def to_payload(self) -> dict[str, Any]:
        out = asdict(self)
        # Discord snowflakes exceed JS-safe ints; keep them as strings for the model.
        out["id"] = str(self.id)
        out["owner_id"] = str(self.owner_id) if self.owner_id is not None else None
        return out


@dataclass(slots=True)
class QuestionBank:
    id: str
    guild_id: int
    name: str
    status: str
    owner_id: int
    created_at_utc: str | None = None
    updated_at_utc: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "created_at_utc": self.created_at_utc,
        }


@dataclass(slots=True)
class Question:
    id: str
    bank_id: str
    guild_id: int
    content: str
    category: str | None = None
    created_at_utc: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bank_id": self.bank_id,
            "content": self.content,
            "category": self.category,
        }


@dataclass(slots=True)
class ResearchSession:
    id: str
    guild_id: int
    bank_id: str
    owner_id: int
    responder_id: int
    status: str
    current_question_id: str | None = None
    started_at_utc: str | None = None
    ended_at_utc: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in SESSION_TERMINAL_STATES

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bank_id": self.bank_id,
            "status": self.status,
            "started_at_utc": self.started_at_utc,
            "ended_at_utc": self.ended_at_utc,
        }


@dataclass(slots=True)
class Response:
    id: str
    session_id: str
    owner_id: int
    responder_id: int
    question_id: str
    response: str
    created_at_utc: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "response": self.response,
            "created_at_utc": self.created_at_utc,
        }


@dataclass(slots=True)
class NextQuestion:
    """Outcome of asking the state machine for the next prompt.

    `question` is None when nothing is left to ask; `completed_now` is True only
    on the call that moved the session from active to completed.
    """

    session_id: str
    session_status: str
    question: Question | None
    answered: int
    total: int
    completed_now: bool = False

    def to_payload(self) -> dict[str, Any]:
        if self.question is not None:
            return {
                "status": "question",
                "question": self.question.to_payload(),
                "position": self.answered + 1,
                "total": self.total,
            }
        return {
            "status": "session_completed" if self.session_status == "completed" else "no_next_question",
            "session_status": self.session_status,
            "answered": self.answered,
            "total": self.total,
        }
