"""shellTool: run a shell command with a bounded timeout."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, Field

from ..errors import ToolExecutionError

logger = logging.getLogger(__name__)

NAME = "shellTool"
DESCRIPTION = (
    "Executes shell commands and returns the output. Use this tool to run terminal commands, "
    "scripts, or system operations."
)

DEFAULT_TIMEOUT_MS = 10_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 60_000


class Args(BaseModel):
    command: str = Field(min_length=1, description="The shell command to execute")
    directory: str | None = Field(
        default=None, description="Optional: Working directory to execute the command in"
    )
    timeout: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Optional: Timeout in milliseconds (1000-60000, default 10000)",
    )


async def handle(args: Args) -> dict[str, Any]:
    try:
        proc = await asyncio.create_subprocess_shell(
            args.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=args.directory,
        )
    except OSError as e:
        raise ToolExecutionError(NAME, f"Failed to start command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=args.timeout / 1000)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolExecutionError(NAME, f"Command timed out after {args.timeout}ms: {args.command}")

    logger.debug("shell exit=%s command=%s", proc.returncode, args.command)
    return {
        "stdout": stdout.decode("utf-8", errors="replace"),
        "stderr": stderr.decode("utf-8", errors="replace"),
        "exitCode": proc.returncode,
        "command": args.command,
        "directory": args.directory,
    }
