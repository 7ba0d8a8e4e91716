"""editTool: exact string replacement in a file, or creation of a new file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..errors import ToolExecutionError
from .read_file import is_absolute_path

NAME = "editTool"
DESCRIPTION = """\
Replaces text within a file or creates a new file. By default, replaces a single occurrence, \
but can replace all occurrences when replaceAll is true. Always examine the file's current content \
before attempting a text replacement.

Important requirements:
1. file_path MUST be an absolute path
2. old_string MUST be the exact literal text to replace (including whitespace, indentation, etc.)
3. new_string MUST be the exact literal text to replace old_string with
4. For single replacements, include sufficient context to uniquely identify the target text
5. Use empty old_string to create a new file"""


class Args(BaseModel):
    file_path: str = Field(min_length=1, description="The absolute path to the file to modify")
    old_string: str = Field(
        description="The exact literal text to replace. Use empty string to create new file"
    )
    new_string: str = Field(description="The exact literal text to replace old_string with")
    replaceAll: bool = Field(
        default=False,
        description="Whether to replace all occurrences (default: false, replace only first)",
    )

    @field_validator("file_path")
    @classmethod
    def _absolute_only(cls, value: str) -> str:
        if not is_absolute_path(value):
            raise ValueError("File path must be absolute, not relative")
        return value


def _edit(args: Args) -> dict[str, Any]:
    path = Path(args.file_path)
    try:
        current = path.read_text(encoding="utf-8").replace("\r\n", "\n")
    except FileNotFoundError:
        current = None

    if current is None:
        if args.old_string != "":
            raise ToolExecutionError(
                NAME, f"File not found: {path}. Use empty old_string to create a new file"
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(args.new_string, encoding="utf-8")
        return {
            "success": True,
            "message": f"Successfully created new file: {path}",
            "file_path": str(path),
            "replacements_made": 0,
            "is_new_file": True,
        }

    if args.old_string == "":
        raise ToolExecutionError(NAME, f"File already exists: {path}")

    occurrences = current.count(args.old_string)
    if occurrences == 0:
        raise ToolExecutionError(NAME, f"Failed to find old_string in file: {path}")

    if args.replaceAll:
        updated = current.replace(args.old_string, args.new_string)
        replacements = occurrences
    else:
        updated = current.replace(args.old_string, args.new_string, 1)
        replacements = 1

    if updated == current:
        raise ToolExecutionError(
            NAME, f"No changes to apply in file: {path} (old_string and new_string are identical)"
        )

    path.write_text(updated, encoding="utf-8")
    return {
        "success": True,
        "message": f"Successfully modified file: {path} ({replacements} replacements)",
        "file_path": str(path),
        "replacements_made": replacements,
        "is_new_file": False,
    }


async def handle(args: Args) -> dict[str, Any]:
    return await asyncio.to_thread(_edit, args)
