"""End-to-end turns through ConversationSession with a scripted model and spy tools."""

from __future__ import annotations

import pytest
from conftest import ScriptedGenerator, SpyTools, call, make_loop, make_session

from clementine.errors import GenerationError
from clementine.models import Message, MessageRole, SessionState
from clementine.services.ai_service import GeneratedToolCall
from clementine.services.approvals import REJECTION_MESSAGE, ApprovalGate, GateState
from clementine.services.generation import GenerationLoop
from clementine.services.session import ConversationSession, welcome_message
from clementine.tools import ToolRegistry, register_default_tools


def _states(session: ConversationSession) -> list[SessionState]:
    seen: list[SessionState] = []
    session.subscribe(lambda snap: seen.append(snap.state))
    return seen


@pytest.mark.asyncio
async def test_plain_answer_without_tools(spy) -> None:
    generator = ScriptedGenerator([("4", [])])
    session = make_session(spy, generator)
    states = _states(session)

    assert session.submit("What is 2+2?") is True
    await session.wait_settled()

    snap = session.snapshot()
    assert [(m.role, m.content) for m in snap.messages] == [
        (MessageRole.USER, "What is 2+2?"),
        (MessageRole.ASSISTANT, "4"),
    ]
    assert snap.is_loading is False
    assert snap.pending_tool_calls == ()
    assert states == [SessionState.GENERATING, SessionState.IDLE]
    assert spy.invocations == []


@pytest.mark.asyncio
async def test_empty_model_text_gets_fallback(spy) -> None:
    session = make_session(spy, ScriptedGenerator([("", [])]))

    session.submit("hi")
    await session.wait_settled()

    assert session.snapshot().messages[-1].content == "I'm sorry, I couldn't generate a response."


@pytest.mark.asyncio
async def test_approved_tool_call_runs_once_then_follows_up(spy) -> None:
    generator = ScriptedGenerator(
        [("", [call("echo", text="a")])],
        [("The echo said a.", [])],
    )
    session = make_session(spy, generator)
    states = _states(session)

    session.submit("please echo a")
    await session.wait_settled()

    snap = session.snapshot()
    assert snap.awaiting_approval is True
    assert snap.is_loading is True
    assert [r.tool_name for r in snap.pending_tool_calls] == ["echo"]
    assert spy.invocations == []

    assert session.approve() is True
    await session.wait_settled()

    assert spy.invocations == [("echo", {"text": "a"})]
    snap = session.snapshot()
    assert snap.messages[-1] == Message.assistant("The echo said a.")
    assert snap.pending_tool_calls == ()
    assert session.state is SessionState.IDLE
    assert states == [
        SessionState.GENERATING,
        SessionState.AWAITING_APPROVAL,
        SessionState.GENERATING,
        SessionState.IDLE,
    ]

    follow_up = generator.calls[1]
    assert follow_up["use_tools"] is False
    assert follow_up["max_steps"] == 1
    assert 'The user asked: "please echo a"' in follow_up["prompt"]
    assert "Tool echo result" in follow_up["prompt"]


@pytest.mark.asyncio
async def test_rejected_tool_call_never_runs(spy) -> None:
    generator = ScriptedGenerator([("", [call("echo", text="a")])])
    session = make_session(spy, generator)

    session.submit("please echo a")
    await session.wait_settled()
    assert session.reject() is True
    await session.wait_settled()

    assert spy.invocations == []
    assert session.snapshot().messages[-1].content == REJECTION_MESSAGE
    assert len(generator.calls) == 1
    gate = session._loop.gate
    assert len(gate.calls) == 0
    assert gate.state is GateState.IDLE


@pytest.mark.asyncio
async def test_one_failing_member_fails_the_whole_batch(spy) -> None:
    generator = ScriptedGenerator([("", [call("echo", text="a"), call("boom", text="b")])])
    session = make_session(spy, generator)

    session.submit("do both")
    await session.wait_settled()
    assert len(session.snapshot().pending_tool_calls) == 2
    session.approve()
    await session.wait_settled()

    last = session.snapshot().messages[-1]
    assert last.role is MessageRole.ERROR
    assert last.content == "Error: Tools failed: boom (exploded) [batch: echo, boom]"
    # No follow-up call after a failed batch
    assert len(generator.calls) == 1
    # Errors are shown but never fed back as context
    assert [entry["role"] for entry in session.history] == ["user"]


@pytest.mark.asyncio
async def test_unknown_tool_fails_at_execution(spy) -> None:
    generator = ScriptedGenerator([("", [call("nope", text="a")])])
    session = make_session(spy, generator)

    session.submit("use a missing tool")
    await session.wait_settled()
    session.approve()
    await session.wait_settled()

    last = session.snapshot().messages[-1]
    assert last.role is MessageRole.ERROR
    assert "Tool 'nope' not found" in last.content


@pytest.mark.asyncio
async def test_decisions_are_idempotent(spy) -> None:
    generator = ScriptedGenerator(
        [("", [call("echo", text="a")])],
        [("done", [])],
    )
    session = make_session(spy, generator)

    assert session.approve() is False
    assert session.reject() is False

    session.submit("echo")
    await session.wait_settled()
    assert session.approve() is True
    assert session.approve() is False
    assert session.reject() is False
    await session.wait_settled()

    assert spy.invocations == [("echo", {"text": "a"})]
    assert session.approve() is False


@pytest.mark.asyncio
async def test_submit_is_ignored_while_a_turn_is_in_flight(spy) -> None:
    generator = ScriptedGenerator([("", [call("echo", text="a")])])
    session = make_session(spy, generator)

    assert session.submit("   ") is False
    assert session.snapshot().messages == ()

    session.submit("first")
    assert session.submit("second") is False
    await session.wait_settled()
    assert session.submit("third") is False

    session.reject()
    await session.wait_settled()
    assert [m.content for m in session.snapshot().messages if m.role is MessageRole.USER] == ["first"]


@pytest.mark.asyncio
async def test_generation_error_becomes_error_message(spy) -> None:
    session = make_session(spy, ScriptedGenerator(GenerationError("network down")))

    session.submit("hi")
    await session.wait_settled()

    last = session.snapshot().messages[-1]
    assert last.role is MessageRole.ERROR
    assert last.content == "Error: network down"
    assert session.state is SessionState.IDLE
    assert session.history == ({"role": "user", "content": "hi"},)


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_error_message(spy) -> None:
    session = make_session(spy, ScriptedGenerator(RuntimeError("bad state")))

    session.submit("hi")
    await session.wait_settled()

    assert session.snapshot().messages[-1].content == "Error: bad state"
    assert session.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_history_feeds_the_next_transcript(spy) -> None:
    generator = ScriptedGenerator([("Hello!", [])], [("Still here.", [])])
    session = make_session(spy, generator)

    session.submit("hi")
    await session.wait_settled()
    session.submit("are you there?")
    await session.wait_settled()

    assert generator.calls[0]["prompt"] == "user: hi"
    assert generator.calls[1]["prompt"] == "user: hi\nassistant: Hello!\nuser: are you there?"
    assert generator.calls[1]["context"] == ()
    assert session.history[-1] == {"role": "assistant", "content": "Still here."}


@pytest.mark.asyncio
async def test_exempt_tools_run_without_prompting(spy) -> None:
    generator = ScriptedGenerator([("", [call("echo", text="a")]), ("Echoed a.", [])])
    session = make_session(spy, generator, exempt=["echo"])
    states = _states(session)

    session.submit("echo a")
    await session.wait_settled()

    assert SessionState.AWAITING_APPROVAL not in states
    assert spy.invocations == [("echo", {"text": "a"})]
    assert generator.tool_results == [[{"echo": "a"}]]
    assert session.snapshot().messages[-1].content == "Echoed a."


@pytest.mark.asyncio
async def test_mixed_batch_is_prompted_as_a_whole(spy) -> None:
    generator = ScriptedGenerator(
        [("", [call("echo", text="a"), call("boom", text="b")])],
    )
    session = make_session(spy, generator, exempt=["echo"])

    session.submit("mixed")
    await session.wait_settled()

    assert [r.tool_name for r in session.snapshot().pending_tool_calls] == ["echo", "boom"]
    assert spy.invocations == []
    session.reject()
    await session.wait_settled()
    assert spy.invocations == []


@pytest.mark.asyncio
async def test_invalid_arguments_trigger_one_correction(spy) -> None:
    generator = ScriptedGenerator(
        [("", [call("echo")])],
        [("Let me fix that.", [])],
    )
    session = make_session(spy, generator)

    session.submit("echo something")
    await session.wait_settled()

    assert spy.invocations == []
    assert len(generator.calls) == 2
    correction = generator.calls[1]
    assert correction["prompt"].startswith("Your previous tool call failed with this error:")
    assert "Invalid arguments for tool 'echo'" in correction["prompt"]
    assert correction["context"] == ()
    assert session.snapshot().messages[-1].content == "Let me fix that."


@pytest.mark.asyncio
async def test_unparseable_arguments_are_named_in_the_correction(spy) -> None:
    error = "Invalid arguments for tool 'echo': arguments are not valid JSON (Expecting value at position 0)"
    generator = ScriptedGenerator(
        [("", [GeneratedToolCall(id="c1", tool_name="echo", args={}, args_error=error)])],
        [("Retrying with proper JSON.", [])],
    )
    session = make_session(spy, generator)

    session.submit("echo something")
    await session.wait_settled()

    assert spy.invocations == []
    assert session._loop.gate.state is GateState.IDLE
    assert len(generator.calls) == 2
    assert error in generator.calls[1]["prompt"]
    assert session.snapshot().messages[-1].content == "Retrying with proper JSON."


@pytest.mark.asyncio
async def test_correction_that_fails_again_gives_up(spy) -> None:
    generator = ScriptedGenerator([("", [call("echo")])], [("", [call("echo")])])
    session = make_session(spy, generator)

    session.submit("echo something")
    await session.wait_settled()

    last = session.snapshot().messages[-1]
    assert last.role is MessageRole.ERROR
    assert last.content == "Error: I encountered an error. Please try rephrasing your request."


@pytest.mark.asyncio
async def test_corrected_call_still_needs_approval(spy) -> None:
    generator = ScriptedGenerator(
        [("", [call("echo")])],
        [("", [call("echo", text="fixed")])],
        [("Echoed fixed.", [])],
    )
    session = make_session(spy, generator)

    session.submit("echo something")
    await session.wait_settled()
    assert session.snapshot().awaiting_approval is True
    assert spy.invocations == []

    session.approve()
    await session.wait_settled()
    assert spy.invocations == [("echo", {"text": "fixed"})]
    assert session.snapshot().messages[-1].content == "Echoed fixed."


def test_welcome_message_is_first() -> None:
    session = ConversationSession(
        make_loop(SpyTools(), ScriptedGenerator()), welcome=welcome_message("ada")
    )
    messages = session.snapshot().messages
    assert len(messages) == 1
    assert messages[0].content == (
        "Hello ada! I'm Clementine, your AI assistant. How can I help you today?"
    )
    # The greeting is display-only
    assert session.history == ()


@pytest.mark.asyncio
async def test_read_file_request_is_approved_and_answered(tmp_path) -> None:
    target = tmp_path / "x.txt"
    target.write_text("the secret is 42\n")
    registry = ToolRegistry()
    register_default_tools(registry)
    generator = ScriptedGenerator(
        [("", [call("readFileTool", absolutePath=str(target))])],
        [("The file says the secret is 42.", [])],
    )
    loop = GenerationLoop(generator, registry, ApprovalGate())
    session = ConversationSession(loop)

    session.submit(f"read {target}")
    await session.wait_settled()

    pending = session.snapshot().pending_tool_calls
    assert [(r.tool_name, r.message) for r in pending] == [("readFileTool", f"Read file: {target}")]

    session.approve()
    await session.wait_settled()

    snap = session.snapshot()
    assert [m.role for m in snap.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert snap.messages[-1].content == "The file says the secret is 42."
    assert snap.pending_tool_calls == ()
    assert "the secret is 42" in generator.calls[1]["prompt"]
    assert generator.calls[1]["context"] == ()
