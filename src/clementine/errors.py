"""Error types raised by tools and the generation capability."""

from __future__ import annotations


class ClementineError(Exception):
    """Base class for errors the session turns into error messages."""


class ToolError(ClementineError):
    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message


class ToolValidationError(ToolError):
    """Arguments did not match the tool's schema. The model is asked to correct them."""


class ToolExecutionError(ToolError):
    """The tool ran and failed."""


class ToolLookupError(ToolExecutionError):
    """No tool is registered under the requested name."""

    def __init__(self, tool_name: str, available: list[str] | None = None) -> None:
        message = f"Tool '{tool_name}' not found"
        if available:
            message += f" in available tools: {', '.join(available)}"
        super().__init__(tool_name, message)


class GenerationError(ClementineError):
    """The model call failed (network, auth, malformed response)."""
