"""Interactive REPL for the Clementine CLI."""

from __future__ import annotations

import asyncio
import getpass
import logging
import os
import platform
import signal
from typing import Any

from ..config import AppConfig
from ..models import SessionSnapshot, SessionState
from ..services.ai_service import AIService
from ..services.approvals import ApprovalGate, ApprovalPolicy
from ..services.generation import GenerationLoop
from ..services.session import ConversationSession, welcome_message
from ..tools import ToolRegistry, register_default_tools
from . import renderer
from .debug_log import RollingLogHandler
from .keys import Command, translate_key

logger = logging.getLogger(__name__)

_IS_WINDOWS = platform.system() == "Windows"

# How long a lone Escape waits before it is treated as a key of its own
_ESCAPE_FLUSH_DELAY = 0.05


def _add_signal_handler(loop: asyncio.AbstractEventLoop, sig: int, callback: Any) -> bool:
    """Add a signal handler, returning False on Windows where it's unsupported."""
    if _IS_WINDOWS:
        return False
    try:
        loop.add_signal_handler(sig, callback)
        return True
    except NotImplementedError:
        return False


def _remove_signal_handler(loop: asyncio.AbstractEventLoop, sig: int) -> None:
    """Remove a signal handler, no-op on Windows."""
    if _IS_WINDOWS:
        return
    try:
        loop.remove_signal_handler(sig)
    except NotImplementedError:
        pass


def _user_name() -> str:
    try:
        return getpass.getuser() or "User"
    except (KeyError, OSError):
        return "User"


def build_session(config: AppConfig) -> ConversationSession:
    """Wire the registry, approval gate, model client and generation loop into a session."""
    registry = ToolRegistry()
    register_default_tools(registry)
    gate = ApprovalGate(ApprovalPolicy(config.cli.approval_exempt))
    ai_service = AIService(config.ai, tools=registry.get_openai_tools())
    loop = GenerationLoop(ai_service, registry, gate)
    return ConversationSession(
        loop,
        max_steps=config.cli.max_steps,
        welcome=welcome_message(_user_name()),
    )


async def run_cli(config: AppConfig, debug_handler: RollingLogHandler | None = None) -> None:
    """Main entry point for CLI mode."""
    working_dir = os.getcwd()
    session = build_session(config)
    logger.info("Session ready with model %s", config.ai.model)

    renderer.render_welcome(
        model=config.ai.model,
        tool_count=len(session.tool_names),
        working_dir=working_dir,
        verbose=debug_handler is not None,
    )
    unsubscribe = session.subscribe(_follow_state)
    try:
        await _run_repl(session, debug_handler)
    finally:
        unsubscribe()
        renderer.stop_thinking()


def _discard_typeahead(inp: Any) -> int:
    """Drop keys typed before the approval prompt was shown. Returns how many were dropped."""
    dropped = 0
    while True:
        presses = inp.read_keys()
        if not presses:
            break
        dropped += len(presses)
    dropped += len(inp.flush_keys())
    return dropped


async def _read_approval_key(inp: Any = None) -> Command:
    """Read raw key presses until one of them approves, rejects or exits.

    Only keys pressed after the prompt opens count: anything already buffered on the
    terminal was typed before the user could see the batch.
    """
    from prompt_toolkit.input import create_input

    owned = inp is None
    if owned:
        inp = create_input()
    loop = asyncio.get_running_loop()
    decided: asyncio.Future[Command] = loop.create_future()
    flush_handle: list[asyncio.TimerHandle | None] = [None]

    def _dispatch(presses: list[Any]) -> None:
        for press in presses:
            command = translate_key(press.key, press.data, awaiting_approval=True)
            if command is not None and not decided.done():
                decided.set_result(command)
                return

    def _flush() -> None:
        _dispatch(inp.flush_keys())

    def _keys_ready() -> None:
        _dispatch(inp.read_keys())
        if flush_handle[0] is not None:
            flush_handle[0].cancel()
        flush_handle[0] = loop.call_later(_ESCAPE_FLUSH_DELAY, _flush)

    try:
        with inp.raw_mode():
            dropped = _discard_typeahead(inp)
            if dropped:
                logger.debug("Ignored %d key(s) typed before the approval prompt", dropped)
            with inp.attach(_keys_ready):
                return await decided
    finally:
        if flush_handle[0] is not None:
            flush_handle[0].cancel()
        if owned:
            inp.close()


async def _wait_settled(session: ConversationSession, interrupted: asyncio.Event) -> bool:
    """Wait for the turn to settle. Returns False when Ctrl+C arrived first."""
    settled = asyncio.ensure_future(session.wait_settled())
    stop = asyncio.ensure_future(interrupted.wait())
    try:
        await asyncio.wait({settled, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        settled.cancel()
        stop.cancel()
    return not interrupted.is_set()


def _follow_state(snapshot: SessionSnapshot) -> None:
    # Spinner runs while the model generates or approved tools execute
    if snapshot.state is SessionState.GENERATING:
        renderer.start_thinking()
    else:
        renderer.stop_thinking()


def _show(snapshot: SessionSnapshot, printed: int, debug_handler: RollingLogHandler | None) -> int:
    printed = renderer.render_messages(snapshot.messages, printed)
    if debug_handler is not None:
        renderer.render_debug_panel(debug_handler.lines())
    return printed


async def _drive_turn(
    session: ConversationSession,
    printed: int,
    debug_handler: RollingLogHandler | None,
) -> int:
    """Follow one submitted turn through any approval prompts until it is idle again."""
    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    _add_signal_handler(loop, signal.SIGINT, interrupted.set)
    try:
        while True:
            if not await _wait_settled(session, interrupted):
                renderer.stop_thinking()
                raise SystemExit(0)
            snapshot = session.snapshot()
            printed = _show(snapshot, printed, debug_handler)
            if not snapshot.awaiting_approval:
                return printed

            renderer.render_approval_request(snapshot.pending_tool_calls)
            renderer.console.print(f"[dim]{renderer.help_text(True)}[/dim]")
            command = await _read_approval_key()
            if command is Command.EXIT:
                raise SystemExit(0)
            approved = command is Command.APPROVE
            accepted = session.approve() if approved else session.reject()
            if accepted:
                renderer.render_approval_decision(approved, len(snapshot.pending_tool_calls))
    finally:
        _remove_signal_handler(loop, signal.SIGINT)


async def _run_repl(session: ConversationSession, debug_handler: RollingLogHandler | None = None) -> None:
    """Run the interactive REPL."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.key_binding import KeyBindings

    kb = KeyBindings()
    _exit_flag: list[bool] = [False]

    @kb.add("enter")
    def _submit(event: Any) -> None:
        command = translate_key(
            event.key_sequence[0].key,
            awaiting_approval=False,
            is_loading=session.snapshot().is_loading,
        )
        if command is Command.SUBMIT:
            event.current_buffer.validate_and_handle()

    # Ctrl+C exits from the prompt regardless of buffer contents
    @kb.add("c-c")
    def _handle_ctrl_c(event: Any) -> None:
        _exit_flag[0] = True
        event.current_buffer.validate_and_handle()

    prompt: PromptSession[str] = PromptSession(key_bindings=kb, multiline=False)

    printed = _show(session.snapshot(), 0, debug_handler)
    renderer.console.print(f"[dim]{renderer.help_text(False)}[/dim]\n")

    while True:
        _exit_flag[0] = False
        try:
            user_input = await prompt.prompt_async("> ")
        except (EOFError, KeyboardInterrupt):
            break

        if _exit_flag[0]:
            break
        if not session.submit(user_input):
            continue

        # The prompt line already shows what the user typed
        printed += 1
        printed = await _drive_turn(session, printed, debug_handler)
