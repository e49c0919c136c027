from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orchestrator.modes import ConversationMode


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoArgs(ToolArgs):
    pass


# ---- configuration ----

class SetActiveGuildArgs(ToolArgs):
    guild_id: str = Field(pattern=r"^\d{1,22}$", description="Server id exactly as returned by list_guilds.")


class CreateQuestionBankArgs(ToolArgs):
    name: str = Field(min_length=1, max_length=100)
    force: bool = Field(
        default=False,
        description="Create even if a question bank with this name exists. Only after the user confirms.",
    )


class BankArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1, description="Id returned by view_question_banks.")


class CreateQuestionArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1, description="Id returned by view_question_banks.")
    question: str = Field(min_length=1, max_length=1000)
    category: str | None = Field(default=None, max_length=100)


class EditQuestionArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1, description="Id returned by view_questions.")
    question: str = Field(min_length=1, max_length=1000)
    category: str | None = Field(default=None, max_length=100)


class DeleteQuestionArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)


class InviteRespondersArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1)
    count: int = Field(default=1, ge=1, le=25, description="How many online members to invite.")


# ---- interview ----

class StartSessionArgs(ToolArgs):
    question_bank_id: str = Field(min_length=1, description="Id returned by list_available_banks.")


class SaveResponseArgs(ToolArgs):
    response: str = Field(min_length=1, max_length=4000, description="The responder's answer, verbatim.")
    question_id: str | None = Field(
        default=None,
        description="Only when answering an earlier question; defaults to the question just asked.",
    )


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args: type[ToolArgs]
    # (argument field, ref kind) pairs that must name an id this conversation was shown
    refs: tuple[tuple[str, str], ...] = ()

    def openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args.model_json_schema(),
            },
        }


CONFIGURATION_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec("list_guilds", "List the Discord servers this user can configure surveys for.", NoArgs),
    ToolSpec("set_active_guild", "Choose which server the user is configuring.", SetActiveGuildArgs),
    ToolSpec("get_active_guild", "Show the server currently being configured and its limits.", NoArgs),
    ToolSpec("view_question_banks", "View the question banks (surveys) of the active server.", NoArgs),
    ToolSpec("create_question_bank", "Create a new question bank (a survey).", CreateQuestionBankArgs),
    ToolSpec(
        "view_questions",
        "View the questions in a question bank, in the order they will be asked.",
        BankArgs,
        refs=(("question_bank_id", "bank"),),
    ),
    ToolSpec(
        "create_question",
        "Add a survey question to the end of a question bank.",
        CreateQuestionArgs,
        refs=(("question_bank_id", "bank"),),
    ),
    ToolSpec(
        "edit_question",
        "Change the wording or category of an existing question.",
        EditQuestionArgs,
        refs=(("question_bank_id", "bank"), ("question_id", "question")),
    ),
    ToolSpec(
        "delete_question",
        "Delete a question from a question bank.",
        DeleteQuestionArgs,
        refs=(("question_bank_id", "bank"), ("question_id", "question")),
    ),
    ToolSpec(
        "delete_question_bank",
        "Delete (archive) a question bank.",
        BankArgs,
        refs=(("question_bank_id", "bank"),),
    ),
    ToolSpec(
        "view_bank_results",
        "See how a question bank is doing: session counts, completion rate and recent answers.",
        BankArgs,
        refs=(("question_bank_id", "bank"),),
    ),
    ToolSpec(
        "invite_responders",
        "Invite random online members of the active server to answer a question bank over DM.",
        InviteRespondersArgs,
        refs=(("question_bank_id", "bank"),),
    ),
)

INTERVIEW_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec("get_active_session", "Look up the responder's interview in progress, if any.", NoArgs),
    ToolSpec("list_available_banks", "List the surveys this responder can still take.", NoArgs),
    ToolSpec(
        "start_session",
        "Start an interview on one of the available surveys.",
        StartSessionArgs,
        refs=(("question_bank_id", "bank"),),
    ),
    ToolSpec(
        "get_next_question",
        "Get the next unanswered question. Completes the interview when none are left.",
        NoArgs,
    ),
    ToolSpec("get_current_question", "Get the question that was most recently asked.", NoArgs),
    ToolSpec(
        "save_response",
        "Save the responder's answer to the current question.",
        SaveResponseArgs,
        refs=(("question_id", "question"),),
    ),
)

CATALOGS: dict[str, tuple[ToolSpec, ...]] = {
    "configuration": CONFIGURATION_TOOLS,
    "interview": INTERVIEW_TOOLS,
}


def catalog_for(mode: ConversationMode) -> dict[str, ToolSpec]:
    return {spec.name: spec for spec in CATALOGS[mode.kind]}


def tool_schemas(mode: ConversationMode) -> list[dict[str, Any]]:
    return [spec.openai_schema() for spec in CATALOGS[mode.kind]]
