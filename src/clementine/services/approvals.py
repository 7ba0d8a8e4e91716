"""Human approval of tool-call batches.

The generation loop registers one callback per requested tool call in the gate's
``PendingCallTable`` and then opens a batch. The batch's future is resolved exactly once
by ``resolve()``; the waiting turn then executes every member concurrently (approve) or
drops them uninvoked (reject). Every exit path releases the batch's call ids.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ..errors import ClementineError
from ..models import ApprovalDecision, ToolCallRequest

logger = logging.getLogger(__name__)

ToolCallback = Callable[[], Awaitable[Any]]

REJECTION_MESSAGE = "I understand. Let me know if there's another way I can help."


class GateState(str, Enum):
    IDLE = "idle"
    AWAITING_APPROVAL = "awaiting_approval"


def describe_tool_call(tool_name: str, args: dict[str, Any]) -> str:
    """One-line summary shown in the approval prompt."""
    if tool_name == "readFileTool":
        return f"Read file: {args.get('absolutePath', '')}"
    if tool_name == "shellTool":
        directory = args.get("directory")
        suffix = f" (in {directory})" if directory else ""
        return f"Execute command: {args.get('command', '')}{suffix}"
    if tool_name == "editTool":
        if args.get("old_string") == "":
            return f"Create new file: {args.get('file_path', '')}"
        return f"Edit file: {args.get('file_path', '')}"
    return f"Execute {tool_name} with args: {json.dumps(args, default=str)}"


class ApprovalPolicy:
    """Static per-tool policy. Everything needs approval unless listed as exempt."""

    def __init__(self, exempt: Iterable[str] = ()) -> None:
        self.exempt = frozenset(exempt)

    def requires_approval(self, tool_name: str) -> bool:
        return tool_name not in self.exempt


class PendingCallTable:
    """``call_id -> callback`` entries. Write-once, read-at-most-once."""

    def __init__(self) -> None:
        self._callbacks: dict[str, ToolCallback] = {}

    def register(self, call_id: str, callback: ToolCallback) -> None:
        if call_id in self._callbacks:
            raise KeyError(f"Call id already registered: {call_id}")
        self._callbacks[call_id] = callback

    def take(self, call_id: str) -> ToolCallback | None:
        return self._callbacks.pop(call_id, None)

    def discard(self, call_ids: Iterable[str]) -> None:
        for call_id in call_ids:
            self._callbacks.pop(call_id, None)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)


@dataclass
class ApprovalBatch:
    requests: tuple[ToolCallRequest, ...]
    fut: asyncio.Future[ApprovalDecision]

    @property
    def call_ids(self) -> list[str]:
        return [r.call_id for r in self.requests]

    @property
    def tool_names(self) -> list[str]:
        return [r.tool_name for r in self.requests]


@dataclass(frozen=True)
class ToolCallResult:
    request: ToolCallRequest
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchOutcome:
    results: tuple[ToolCallResult, ...]

    @property
    def failed(self) -> tuple[ToolCallResult, ...]:
        return tuple(r for r in self.results if not r.ok)

    @property
    def ok(self) -> bool:
        return not self.failed

    def failure_summary(self) -> str:
        failed = ", ".join(f"{r.request.tool_name} ({r.error})" for r in self.failed)
        batch = ", ".join(r.request.tool_name for r in self.results)
        return f"Tools failed: {failed} [batch: {batch}]"


class ApprovalGate:
    """Owns the pending-call table and at most one batch awaiting a decision."""

    def __init__(self, policy: ApprovalPolicy | None = None) -> None:
        self.policy = policy or ApprovalPolicy()
        self._calls = PendingCallTable()
        self._batch: ApprovalBatch | None = None

    @property
    def calls(self) -> PendingCallTable:
        return self._calls

    @property
    def state(self) -> GateState:
        return GateState.AWAITING_APPROVAL if self._batch is not None else GateState.IDLE

    @property
    def pending(self) -> tuple[ToolCallRequest, ...]:
        return self._batch.requests if self._batch is not None else ()

    def requires_approval(self, tool_name: str) -> bool:
        return self.policy.requires_approval(tool_name)

    def open_batch(self, requests: Sequence[ToolCallRequest]) -> ApprovalBatch:
        if self._batch is not None:
            raise RuntimeError("An approval batch is already pending")
        if not requests:
            raise ValueError("An approval batch needs at least one tool call")
        missing = [r.call_id for r in requests if r.call_id not in self._calls]
        if missing:
            raise KeyError(f"No callback registered for: {', '.join(missing)}")

        fut: asyncio.Future[ApprovalDecision] = asyncio.get_running_loop().create_future()
        batch = ApprovalBatch(requests=tuple(requests), fut=fut)
        self._batch = batch
        logger.info(
            "Waiting for user approval for %d tool call(s): %s",
            len(batch.requests),
            ", ".join(batch.tool_names),
        )
        return batch

    async def wait(self, batch: ApprovalBatch) -> ApprovalDecision:
        # No timeout: the decision is bounded only by the human.
        return await batch.fut

    def resolve(self, approved: bool) -> bool:
        """Deliver the human decision. Returns False when nothing was awaiting one."""
        batch = self._batch
        if batch is None or batch.fut.done():
            return False
        self._batch = None
        batch.fut.set_result(ApprovalDecision(approved=bool(approved)))
        logger.info(
            "User %s %d tool call(s)", "approved" if approved else "rejected", len(batch.requests)
        )
        return True

    async def execute(self, batch: ApprovalBatch) -> BatchOutcome:
        """Run every member concurrently and join. Call ids are released afterwards."""
        try:
            results = await asyncio.gather(*(self._run_member(r) for r in batch.requests))
        finally:
            self.release(batch)
        return BatchOutcome(results=tuple(results))

    async def _run_member(self, request: ToolCallRequest) -> ToolCallResult:
        callback = self._calls.take(request.call_id)
        if callback is None:
            return ToolCallResult(request=request, error="No callback found")
        logger.debug("Executing tool: %s", request.tool_name)
        try:
            result = await callback()
        except ClementineError as e:
            logger.info("Tool %s failed: %s", request.tool_name, e)
            return ToolCallResult(request=request, error=str(e))
        except Exception as e:
            logger.exception("Tool %s raised unexpectedly", request.tool_name)
            return ToolCallResult(request=request, error=str(e) or type(e).__name__)
        logger.info("Tool %s completed successfully", request.tool_name)
        return ToolCallResult(request=request, result=result)

    def release(self, batch: ApprovalBatch) -> None:
        """Drop every remaining callback of ``batch``. Safe to call more than once."""
        self._calls.discard(batch.call_ids)
        if self._batch is batch:
            self._batch = None
        if not batch.fut.done():
            batch.fut.cancel()
