"""OpenAI SDK wrapper exposing the step-wise generation capability."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Sequence

from openai import AsyncOpenAI

from ..config import AIConfig
from ..errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedToolCall:
    id: str
    tool_name: str
    args: dict[str, Any]
    # Set when the model sent arguments that are not a JSON object
    args_error: str | None = None


@dataclass(frozen=True)
class GenerationStep:
    index: int
    text: str
    tool_calls: tuple[GeneratedToolCall, ...] = ()
    finish_reason: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    text: str
    tool_calls: tuple[GeneratedToolCall, ...] = ()
    steps: int = 1


# Returns one result per tool call of the step to keep generating, or None to stop there.
StepCallback = Callable[[GenerationStep], Awaitable[list[Any] | None]]


class GenerationCapability(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        context: Sequence[dict[str, str]] = (),
        on_step_finish: StepCallback | None = None,
        max_steps: int = 5,
        use_tools: bool = True,
    ) -> GenerationResult: ...


def _parse_tool_calls(raw_calls: Any) -> tuple[GeneratedToolCall, ...]:
    calls: list[GeneratedToolCall] = []
    for tc in raw_calls or []:
        name = tc.function.name or ""
        error = None
        try:
            args = json.loads(tc.function.arguments or "{}")
        except json.JSONDecodeError as e:
            args, error = {}, f"arguments are not valid JSON ({e.msg} at position {e.pos})"
        else:
            if not isinstance(args, dict):
                args, error = {}, f"arguments must be a JSON object, got {type(args).__name__}"
        if error:
            logger.warning("Malformed arguments for tool %s: %s", name, error)
            error = f"Invalid arguments for tool '{name}': {error}"
        calls.append(GeneratedToolCall(id=tc.id or "", tool_name=name, args=args, args_error=error))
    return tuple(calls)


class AIService:
    def __init__(self, config: AIConfig, tools: list[dict[str, Any]] | None = None) -> None:
        self.config = config
        self.tools = tools or []
        self.client = AsyncOpenAI(
            base_url=config.base_url or None,
            api_key=config.api_key,
        )

    async def generate(
        self,
        prompt: str,
        *,
        context: Sequence[dict[str, str]] = (),
        on_step_finish: StepCallback | None = None,
        max_steps: int = 5,
        use_tools: bool = True,
    ) -> GenerationResult:
        """Run up to ``max_steps`` model calls.

        Tool calls are never executed here. Each step is handed to ``on_step_finish``;
        when it returns results they are sent back as tool messages and the next step
        runs, otherwise the step's tool calls are returned to the caller.
        """
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.config.system_prompt}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in context)
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {"model": self.config.model}
        if use_tools and self.tools:
            kwargs["tools"] = self.tools

        step = GenerationStep(index=0, text="")
        for index in range(max(1, max_steps)):
            try:
                response = await self.client.chat.completions.create(messages=messages, **kwargs)
            except Exception as e:
                logger.error("AI request failed: %s", e)
                raise GenerationError(str(e) or "AI request failed") from e
            if not response.choices:
                raise GenerationError("AI response contained no choices")

            choice = response.choices[0]
            step = GenerationStep(
                index=index,
                text=choice.message.content or "",
                tool_calls=_parse_tool_calls(choice.message.tool_calls),
                finish_reason=choice.finish_reason,
            )
            results = await on_step_finish(step) if on_step_finish else None
            if not step.tool_calls or results is None:
                return GenerationResult(text=step.text, tool_calls=step.tool_calls, steps=index + 1)

            messages.append(
                {
                    "role": "assistant",
                    "content": step.text or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.tool_name, "arguments": json.dumps(tc.args)},
                        }
                        for tc in step.tool_calls
                    ],
                }
            )
            for tc, result in zip(step.tool_calls, results):
                messages.append(
                    {"role": "tool", "tool_call_id": tc.id, "content": json.dumps(result, default=str)}
                )

        logger.info("Step budget of %d exhausted", max_steps)
        return GenerationResult(text=step.text, tool_calls=step.tool_calls, steps=max(1, max_steps))
