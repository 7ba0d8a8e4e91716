"""Conversation session: the one mutable object the terminal UI talks to."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..models import (
    ConversationTurn,
    Message,
    MessageRole,
    SessionSnapshot,
    SessionState,
)
from .generation import GenerationLoop

logger = logging.getLogger(__name__)

Listener = Callable[[SessionSnapshot], None]


def welcome_message(name: str) -> str:
    return f"Hello {name}! I'm Clementine, your AI assistant. How can I help you today?"


class ConversationSession:
    """Append-only message history plus at most one in-flight turn.

    ``submit`` schedules the turn on the running event loop and returns immediately;
    ``wait_settled`` returns once the turn has finished or is waiting for approval.
    """

    def __init__(
        self,
        loop: GenerationLoop,
        *,
        max_steps: int = 5,
        welcome: str | None = None,
    ) -> None:
        self._loop = loop
        self._max_steps = max_steps
        self._messages: list[Message] = []
        self._history: list[dict[str, str]] = []
        self._state = SessionState.IDLE
        self._turn: ConversationTurn | None = None
        self._task: asyncio.Task[None] | None = None
        self._settled = asyncio.Event()
        self._settled.set()
        self._listeners: list[Listener] = []
        if welcome:
            self._messages.append(Message.assistant(welcome))

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tool_names(self) -> list[str]:
        return self._loop.registry.list_tools()

    @property
    def history(self) -> tuple[dict[str, str], ...]:
        """User/assistant exchanges used as model context. Error messages are excluded."""
        return tuple(dict(entry) for entry in self._history)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            messages=tuple(self._messages),
            is_loading=self._state is not SessionState.IDLE,
            pending_tool_calls=self._loop.gate.pending,
            state=self._state,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def submit(self, text: str) -> bool:
        if self._state is not SessionState.IDLE:
            logger.debug("Ignoring submit while a turn is in flight")
            return False
        user_input = text.strip()
        if not user_input:
            return False

        logger.info('User submitted: "%s"', user_input)
        turn = ConversationTurn(
            user_input=user_input,
            history_snapshot=self.history,
            max_steps=self._max_steps,
        )
        self._messages.append(Message.user(user_input))
        self._history.append({"role": MessageRole.USER.value, "content": user_input})
        self._turn = turn
        self._settled.clear()
        self._set_state(SessionState.GENERATING)
        self._task = asyncio.get_running_loop().create_task(self._run_turn(turn))
        return True

    def approve(self) -> bool:
        return self._resolve(True)

    def reject(self) -> bool:
        return self._resolve(False)

    async def wait_settled(self) -> None:
        await self._settled.wait()

    def _resolve(self, approved: bool) -> bool:
        if self._state is not SessionState.AWAITING_APPROVAL:
            return False
        if not self._loop.gate.resolve(approved):
            return False
        if self._turn is not None:
            self._turn.pending_tool_calls.clear()
        self._settled.clear()
        self._set_state(SessionState.GENERATING)
        return True

    async def _run_turn(self, turn: ConversationTurn) -> None:
        try:
            try:
                message = await self._loop.run(turn, on_state=self._on_turn_state)
            except Exception as e:
                logger.exception("Turn failed unexpectedly")
                message = Message.error(str(e) or "Unknown error")
            self._messages.append(message)
            if message.role is MessageRole.ASSISTANT:
                self._history.append(message.as_context())
        finally:
            self._turn = None
            self._set_state(SessionState.IDLE)
            self._settled.set()

    def _on_turn_state(self, state: SessionState) -> None:
        self._set_state(state)
        if state is SessionState.AWAITING_APPROVAL:
            self._settled.set()

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
