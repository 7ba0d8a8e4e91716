"""Rich-based terminal output for the CLI chat."""

from __future__ import annotations

import os
from typing import Sequence

from rich.console import Console, Group
from rich.markdown import Markdown
from rich.markup import escape
from rich.padding import Padding
from rich.panel import Panel
from rich.status import Status
from rich.text import Text

from ..models import Message, MessageRole, ToolCallRequest

console = Console(stderr=True)
# Separate console for stdout markdown rendering (not stderr)
_stdout_console = Console()

# Spinner state
_spinner: Status | None = None

IDLE_HELP = "Type your message and press Enter to send. Press Ctrl+C to exit."
APPROVAL_HELP = "Waiting for approval decision..."


def _short_path(path: str) -> str:
    """Shorten absolute path using ~ for home."""
    if not path:
        return path
    home = os.path.expanduser("~")
    if path.startswith(home):
        return "~" + path[len(home) :]
    return path


# ---------------------------------------------------------------------------
# Thinking spinner
# ---------------------------------------------------------------------------


def start_thinking() -> None:
    """Show a spinner while the model is generating or tools are running."""
    global _spinner
    if _spinner:
        return
    _spinner = Status("[dim]Thinking...[/dim]", console=console, spinner="dots")
    _spinner.start()


def stop_thinking() -> None:
    global _spinner
    if _spinner:
        _spinner.stop()
        _spinner = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def render_message(message: Message) -> None:
    if message.role is MessageRole.USER:
        console.print(f"[grey62]> {escape(message.content)}[/grey62]")
    elif message.role is MessageRole.ERROR:
        console.print(f"\n[red bold]❌[/red bold] [red]{escape(message.content)}[/red]\n")
    else:
        _stdout_console.print(Padding(Markdown(f"⏺ {message.content}"), (0, 2, 1, 0)))


def render_messages(messages: Sequence[Message], start: int = 0) -> int:
    """Print messages from ``start`` onwards and return the new count of printed messages."""
    for message in messages[start:]:
        render_message(message)
    return len(messages)


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------


def render_approval_request(pending: Sequence[ToolCallRequest]) -> None:
    if not pending:
        return
    body = Text()
    body.append("Tools to execute:\n", style="bold cyan")
    for request in pending:
        body.append(f"  • {request.message or request.tool_name}\n", style="cyan")
    body.append("\n")
    body.append("Press Y/Enter to approve, ", style="green")
    body.append("N/Esc to reject", style="red")
    console.print(
        Panel(
            body,
            title="[yellow bold]🔐 Tool Execution Approval Required[/yellow bold]",
            title_align="left",
            border_style="yellow",
            padding=(1, 1),
        )
    )


def render_approval_decision(approved: bool, count: int) -> None:
    if approved:
        console.print(f"[green]  ✓ Approved {count} tool call(s)[/green]")
    else:
        console.print(f"[red]  ✗ Rejected {count} tool call(s)[/red]")


def help_text(awaiting_approval: bool) -> str:
    return APPROVAL_HELP if awaiting_approval else IDLE_HELP


# ---------------------------------------------------------------------------
# Debug panel (--verbose)
# ---------------------------------------------------------------------------


def render_debug_panel(lines: Sequence[str]) -> None:
    if not lines:
        return
    console.print(
        Panel(
            Group(*(Text(line, style="grey50") for line in lines)),
            title="[grey62 bold]DEBUG LOGS[/grey62 bold]",
            title_align="left",
            border_style="grey42",
        )
    )


# ---------------------------------------------------------------------------
# Welcome
# ---------------------------------------------------------------------------


def render_welcome(model: str, tool_count: int, working_dir: str, verbose: bool = False) -> None:
    console.print(f"\n [bold]clementine[/bold] [dim]─[/dim] {escape(_short_path(working_dir))}")
    parts = [escape(model), f"{tool_count} tools"]
    if verbose:
        parts.append("verbose")
    console.print(f" [dim]{' · '.join(parts)}[/dim]\n")
