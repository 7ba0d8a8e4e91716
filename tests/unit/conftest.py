from __future__ import annotations

import itertools
from typing import Any, Iterable, Sequence

import pytest
from pydantic import BaseModel

from clementine.errors import ToolExecutionError
from clementine.services.ai_service import GeneratedToolCall, GenerationResult, GenerationStep
from clementine.services.approvals import ApprovalGate, ApprovalPolicy
from clementine.services.generation import GenerationLoop
from clementine.services.session import ConversationSession
from clementine.tools import Tool, ToolRegistry

_ids = itertools.count(1)


def call(tool_name: str, **args: Any) -> GeneratedToolCall:
    return GeneratedToolCall(id=f"call_{next(_ids)}", tool_name=tool_name, args=args)


class ScriptedGenerator:
    """Replays scripted steps through ``on_step_finish`` the way AIService does.

    Each script is either an exception to raise or a list of ``(text, [tool calls])`` steps.
    """

    def __init__(self, *scripts: Any) -> None:
        self.scripts = list(scripts)
        self.calls: list[dict[str, Any]] = []
        self.tool_results: list[list[Any]] = []

    async def generate(
        self,
        prompt: str,
        *,
        context: Sequence[dict[str, str]] = (),
        on_step_finish: Any = None,
        max_steps: int = 5,
        use_tools: bool = True,
    ) -> GenerationResult:
        self.calls.append(
            {
                "prompt": prompt,
                "context": tuple(context),
                "max_steps": max_steps,
                "use_tools": use_tools,
            }
        )
        script = self.scripts.pop(0)
        if isinstance(script, BaseException):
            raise script

        step = GenerationStep(index=0, text="")
        for index, (text, calls) in enumerate(script[: max(1, max_steps)]):
            step = GenerationStep(index=index, text=text, tool_calls=tuple(calls))
            results = await on_step_finish(step) if on_step_finish else None
            if not step.tool_calls or results is None:
                return GenerationResult(text=text, tool_calls=step.tool_calls, steps=index + 1)
            self.tool_results.append(results)
        return GenerationResult(text=step.text, tool_calls=step.tool_calls, steps=max_steps)


class EchoArgs(BaseModel):
    text: str


class SpyTools:
    """Registry of fake tools that record every invocation."""

    def __init__(self) -> None:
        self.invocations: list[tuple[str, dict[str, Any]]] = []
        self.registry = ToolRegistry()
        self.registry.register(Tool("echo", "Echo text back", EchoArgs, self._echo))
        self.registry.register(Tool("boom", "Always fails", EchoArgs, self._boom))
        self.registry.register(Tool("crash", "Raises a plain exception", EchoArgs, self._crash))

    async def _echo(self, args: EchoArgs) -> dict[str, Any]:
        self.invocations.append(("echo", args.model_dump()))
        return {"echo": args.text}

    async def _boom(self, args: EchoArgs) -> dict[str, Any]:
        self.invocations.append(("boom", args.model_dump()))
        raise ToolExecutionError("boom", "exploded")

    async def _crash(self, args: EchoArgs) -> dict[str, Any]:
        self.invocations.append(("crash", args.model_dump()))
        raise RuntimeError("kaput")


@pytest.fixture()
def spy() -> SpyTools:
    return SpyTools()


def make_loop(spy: SpyTools, generator: ScriptedGenerator, exempt: Iterable[str] = ()) -> GenerationLoop:
    gate = ApprovalGate(ApprovalPolicy(exempt))
    return GenerationLoop(generator, spy.registry, gate)


def make_session(
    spy: SpyTools,
    generator: ScriptedGenerator,
    exempt: Iterable[str] = (),
    max_steps: int = 5,
) -> ConversationSession:
    return ConversationSession(make_loop(spy, generator, exempt), max_steps=max_steps)
