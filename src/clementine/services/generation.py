"""Drives one conversation turn from user input to a final message.

A turn makes one step-bounded generation call. The first step that requests tools
which need approval opens a batch in the approval gate and stops generating; the turn
then waits for the human decision. Approval runs the batch and makes exactly one
follow-up call with the results; rejection answers with a canned reply.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Sequence

from ..errors import GenerationError, ToolError, ToolValidationError
from ..models import ConversationTurn, Message, SessionState, ToolCallRequest, new_call_id
from ..tools import ToolRegistry
from .ai_service import GenerationCapability, GenerationResult, GenerationStep
from .approvals import (
    REJECTION_MESSAGE,
    ApprovalBatch,
    ApprovalGate,
    BatchOutcome,
    ToolCallback,
    describe_tool_call,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]

EMPTY_RESPONSE = "I'm sorry, I couldn't generate a response."
EMPTY_FOLLOW_UP = "I've processed your request."
EMPTY_CORRECTION = "Let me correct that and try again."
CORRECTION_FAILED = "I encountered an error. Please try rephrasing your request."


def render_transcript(history: Sequence[dict[str, str]], user_input: str) -> str:
    """Prior turns as ``role: content`` lines, then the new input as the last user line."""
    lines = [f"{entry['role']}: {entry['content']}" for entry in history]
    lines.append(f"user: {user_input}")
    return "\n".join(lines)


def build_follow_up_prompt(user_input: str, outcome: BatchOutcome) -> str:
    results = "\n".join(
        f"Tool {r.request.tool_name} result: {json.dumps(r.result, indent=2, default=str)}"
        for r in outcome.results
    )
    return (
        f'The user asked: "{user_input.strip()}"\n\n'
        f"Tool results:\n{results}\n\n"
        "Please provide a helpful response based on these results."
    )


def build_correction_prompt(user_input: str, error: str) -> str:
    return (
        f"Your previous tool call failed with this error: {error}\n\n"
        f'Please retry the user\'s original request: "{user_input}" by calling the tool again '
        "with corrected parameters."
    )


class GenerationLoop:
    def __init__(
        self,
        generator: GenerationCapability,
        registry: ToolRegistry,
        gate: ApprovalGate,
    ) -> None:
        self.generator = generator
        self.registry = registry
        self.gate = gate

    async def run(self, turn: ConversationTurn, on_state: StateListener | None = None) -> Message:
        """Return the turn's final message. Model and tool failures become error messages."""
        notify = on_state or (lambda _state: None)
        try:
            return await self._run(turn, notify)
        finally:
            turn.pending_tool_calls.clear()

    async def _run(self, turn: ConversationTurn, notify: StateListener) -> Message:
        prompt = render_transcript(turn.history_snapshot, turn.user_input)
        try:
            batch, result = await self._generate(turn, prompt, context=())
        except ToolValidationError as e:
            logger.info("Tool call failed validation: %s", e)
            return await self._correct(turn, notify, e)
        except GenerationError as e:
            logger.warning("Generation failed: %s", e)
            return Message.error(str(e))

        if batch is None:
            logger.info("Agent response received (%d step(s))", result.steps)
            return Message.assistant(result.text or EMPTY_RESPONSE)
        return await self._await_decision(turn, batch, notify)

    async def _correct(
        self, turn: ConversationTurn, notify: StateListener, error: ToolValidationError
    ) -> Message:
        prompt = build_correction_prompt(turn.user_input, error.message)
        try:
            batch, result = await self._generate(turn, prompt, context=turn.history_snapshot)
        except (ToolValidationError, GenerationError) as e:
            logger.warning("Failed to handle validation error: %s", e)
            return Message.error(CORRECTION_FAILED)

        if batch is None:
            return Message.assistant(result.text or EMPTY_CORRECTION)
        return await self._await_decision(turn, batch, notify)

    async def _generate(
        self,
        turn: ConversationTurn,
        prompt: str,
        context: Sequence[dict[str, str]],
    ) -> tuple[ApprovalBatch | None, GenerationResult]:
        opened: list[ApprovalBatch] = []

        async def on_step_finish(step: GenerationStep) -> list[Any] | None:
            turn.step_count += 1
            if not step.tool_calls or opened:
                return None
            logger.info(
                "Agent requested %d tool call(s): %s",
                len(step.tool_calls),
                ", ".join(tc.tool_name for tc in step.tool_calls),
            )
            for call in step.tool_calls:
                if call.args_error:
                    raise ToolValidationError(call.tool_name, call.args_error)
                if self.registry.has_tool(call.tool_name):
                    self.registry.validate(call.tool_name, call.args)
            if not any(self.gate.requires_approval(tc.tool_name) for tc in step.tool_calls):
                return await self._run_exempt(step)
            opened.append(self._open_batch(turn, step))
            return None

        try:
            result = await self.generator.generate(
                prompt,
                context=context,
                on_step_finish=on_step_finish,
                max_steps=max(1, turn.max_steps - turn.step_count),
            )
        except BaseException:
            for batch in opened:
                self.gate.release(batch)
            turn.pending_tool_calls.clear()
            raise
        return (opened[0] if opened else None), result

    async def _run_exempt(self, step: GenerationStep) -> list[Any]:
        async def run_one(tool_name: str, args: dict[str, Any]) -> Any:
            try:
                return await self.registry.execute(tool_name, args)
            except ToolError as e:
                return {"error": str(e)}

        logger.debug("Running %d approval-exempt tool call(s)", len(step.tool_calls))
        return list(await asyncio.gather(*(run_one(tc.tool_name, tc.args) for tc in step.tool_calls)))

    def _make_callback(self, request: ToolCallRequest) -> ToolCallback:
        async def callback() -> Any:
            # Resolved at execution time: the tool may have gone away since the request.
            return await self.registry.execute(request.tool_name, request.args)

        return callback

    def _open_batch(self, turn: ConversationTurn, step: GenerationStep) -> ApprovalBatch:
        requests: list[ToolCallRequest] = []
        for call in step.tool_calls:
            request = ToolCallRequest(
                tool_name=call.tool_name,
                args=dict(call.args),
                call_id=new_call_id(call.tool_name),
                message=describe_tool_call(call.tool_name, call.args),
            )
            self.gate.calls.register(request.call_id, self._make_callback(request))
            requests.append(request)
        batch = self.gate.open_batch(requests)
        turn.pending_tool_calls[:] = requests
        return batch

    async def _await_decision(
        self, turn: ConversationTurn, batch: ApprovalBatch, notify: StateListener
    ) -> Message:
        notify(SessionState.AWAITING_APPROVAL)
        try:
            decision = await self.gate.wait(batch)
            turn.pending_tool_calls.clear()
            notify(SessionState.GENERATING)
            if not decision.approved:
                return Message.assistant(REJECTION_MESSAGE)
            outcome = await self.gate.execute(batch)
        finally:
            self.gate.release(batch)

        if not outcome.ok:
            summary = outcome.failure_summary()
            logger.info("%s", summary)
            return Message.error(summary)

        prompt = build_follow_up_prompt(turn.user_input, outcome)
        try:
            result = await self.generator.generate(
                prompt, context=turn.history_snapshot, max_steps=1, use_tools=False
            )
        except GenerationError as e:
            logger.warning("Follow-up generation failed: %s", e)
            return Message.error(str(e))
        if result.tool_calls:
            logger.info("Ignoring %d tool call(s) requested after approval", len(result.tool_calls))
        return Message.assistant(result.text or EMPTY_FOLLOW_UP)
