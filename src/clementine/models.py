"""Conversation data model shared by the session, the generation loop and the CLI."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(MessageRole.ASSISTANT, content)

    @classmethod
    def error(cls, content: str) -> Message:
        return cls(MessageRole.ERROR, f"Error: {content}")

    def as_context(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


def new_call_id(tool_name: str) -> str:
    return f"{tool_name}-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


@dataclass(frozen=True)
class ToolCallRequest:
    tool_name: str
    args: dict[str, Any]
    call_id: str
    message: str = ""


@dataclass(frozen=True)
class ApprovalDecision:
    approved: bool


@dataclass
class ConversationTurn:
    """One user submission. Lives from ``submit`` until its final message is appended."""

    user_input: str
    history_snapshot: tuple[dict[str, str], ...] = ()
    max_steps: int = 5
    step_count: int = 0
    pending_tool_calls: list[ToolCallRequest] = field(default_factory=list)


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    AWAITING_APPROVAL = "awaiting_approval"


@dataclass(frozen=True)
class SessionSnapshot:
    messages: tuple[Message, ...]
    is_loading: bool
    pending_tool_calls: tuple[ToolCallRequest, ...]
    state: SessionState

    @property
    def awaiting_approval(self) -> bool:
        return self.state is SessionState.AWAITING_APPROVAL
