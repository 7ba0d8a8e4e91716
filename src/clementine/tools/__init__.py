"""Built-in tool registry for the coding assistant."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from pydantic import BaseModel, ValidationError

from ..errors import ToolError, ToolExecutionError, ToolLookupError, ToolValidationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Coroutine[Any, Any, dict[str, Any]]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    schema: type[BaseModel]
    handler: ToolHandler


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


class ToolRegistry:
    """Registry of tools with OpenAI function-call format.

    Lookups and validation have no side effects; only ``execute`` runs a handler.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def lookup(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolLookupError(name, self.list_tools())
        return tool

    def get_openai_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.schema.model_json_schema(),
                },
            }
            for tool in self._tools.values()
        ]

    def validate(self, name: str, arguments: dict[str, Any]) -> BaseModel:
        tool = self.lookup(name)
        try:
            return tool.schema.model_validate(arguments)
        except ValidationError as e:
            raise ToolValidationError(
                name, f"Invalid arguments for tool '{name}': {_format_validation_error(e)}"
            ) from e

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        tool = self.lookup(name)
        validated = self.validate(name, arguments)
        try:
            return await tool.handler(validated)
        except ToolError:
            raise
        except Exception as e:
            logger.debug("Tool %s raised", name, exc_info=True)
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e


def register_default_tools(registry: ToolRegistry) -> None:
    """Register all built-in tools."""
    from . import edit, read_file, shell

    for module in [read_file, shell, edit]:
        registry.register(
            Tool(
                name=module.NAME,
                description=module.DESCRIPTION,
                schema=module.Args,
                handler=module.handle,
            )
        )
