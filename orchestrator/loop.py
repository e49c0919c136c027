from __future__ import annotations

import asyncio
import json
from typing import Any

import openai

from config.defaults import DEFAULT_COMPLETION_TIMEOUT_SECONDS
from config.defaults import DEFAULT_MAX_TOOL_STEPS
from orchestrator.catalog import tool_schemas
from orchestrator.modes import ConversationMode
from orchestrator.prompts import SurveyPrompts
from orchestrator.tools import SurveyTools
from research.errors import CompletionUnavailable
from research.errors import LoopExhausted


def _tool_call_to_message(call: Any) -> dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.function.name, "arguments": call.function.arguments or "{}"},
    }


class ConversationOrchestrator:
    """One inbound turn in, one reply out.

    Each step sends the conversation so far to the completion service. A plain
    message ends the turn; requested tool calls run in the order given and
    their results are appended as `tool` messages for the next step.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        tools: SurveyTools,
        prompts: SurveyPrompts | None = None,
        discord_io: Any = None,
        max_steps: int = DEFAULT_MAX_TOOL_STEPS,
        completion_timeout_seconds: float = DEFAULT_COMPLETION_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.model = model
        self.tools = tools
        self.prompts = prompts or SurveyPrompts()
        self.discord_io = discord_io
        self.max_steps = max(1, int(max_steps))
        self.completion_timeout_seconds = float(completion_timeout_seconds)

    async def _complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.chat.completions.create,
                    model=self.model,
                    messages=list(messages),
                    tools=tools,
                    tool_choice="auto",
                ),
                timeout=self.completion_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise CompletionUnavailable(
                f"completion timed out after {self.completion_timeout_seconds:.1f}s"
            ) from e
        except openai.OpenAIError as e:
            raise CompletionUnavailable(f"completion failed: {e}") from e

    async def run_turn(
        self,
        *,
        mode: ConversationMode,
        conversation_key: str,
        history: list[dict[str, Any]],
        channel_id: int | None = None,
    ) -> str:
        if self.discord_io is not None and channel_id is not None:
            await self.discord_io.send_typing(channel_id)

        tools = tool_schemas(mode)
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.prompts.system_prompt_for(mode)}]
        messages.extend(history)

        for step in range(self.max_steps):
            resp = await self._complete(messages, tools)
            msg = resp.choices[0].message
            calls = list(getattr(msg, "tool_calls", None) or [])
            if not calls:
                return (msg.content or "").strip() or "(no output)"

            messages.append(
                {
                    "role": "assistant",
                    "content": msg.content or "",
                    "tool_calls": [_tool_call_to_message(c) for c in calls],
                }
            )
            for call in calls:
                result = await self.tools.invoke(mode, conversation_key, call.function.name, call.function.arguments)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(result, ensure_ascii=False, default=str),
                    }
                )
            print(f"[Orchestrator] step={step + 1} mode={mode.kind} tool_calls={len(calls)}")

        raise LoopExhausted(self.max_steps)
