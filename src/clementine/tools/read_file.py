"""readFileTool: read text files with pagination, summarise binary and media files."""

from __future__ import annotations

import asyncio
import base64
import mimetypes
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from ..errors import ToolExecutionError

NAME = "readFileTool"
DESCRIPTION = (
    "Reads and returns the content of a specified file. If the file is large, the content will be "
    "truncated. The tool's response will clearly indicate if truncation has occurred and will provide "
    "details on how to read more of the file using the 'offset' and 'limit' parameters. Handles text, "
    "images (PNG, JPG, GIF, WEBP, SVG, BMP), and PDF files. For text files, it can read specific line ranges."
)

MB = 1024 * 1024
FILE_SIZE_LIMIT_MB = 20
SVG_MAX_SIZE_MB = 1
DEFAULT_MAX_LINES = 2000
MAX_LINE_LENGTH = 2000
BASE64_PREVIEW_CHARS = 100

_WINDOWS_ABSOLUTE_RE = re.compile(r"^[A-Za-z]:\\")
_LINE_TRUNCATED = "... [line truncated]"
_SNIFF_BYTES = 8192


def is_absolute_path(path: str) -> bool:
    return path.startswith("/") or _WINDOWS_ABSOLUTE_RE.match(path) is not None


class Args(BaseModel):
    absolutePath: str = Field(
        min_length=1,
        description=(
            "The absolute path to the file to read (e.g., '/home/user/project/file.txt'). "
            "Relative paths are not supported. You must provide an absolute path."
        ),
    )
    offset: int | None = Field(
        default=None,
        ge=0,
        description=(
            "Optional: For text files, the 0-based line number to start reading from. "
            "Requires 'limit' to be set. Use for paginating through large files."
        ),
    )
    limit: int | None = Field(
        default=None,
        ge=1,
        description=(
            "Optional: For text files, maximum number of lines to read. Use with 'offset' to paginate "
            "through large files. If omitted, reads the entire file (if feasible, up to a default limit)."
        ),
    )

    @field_validator("absolutePath")
    @classmethod
    def _absolute_only(cls, value: str) -> str:
        if not is_absolute_path(value):
            raise ValueError("File path must be absolute, not relative. You must provide an absolute path.")
        return value

    @model_validator(mode="after")
    def _offset_requires_limit(self) -> Args:
        if self.offset is not None and self.limit is None:
            raise ValueError("When 'offset' is provided, 'limit' must also be specified.")
        return self


def detect_file_type(path: Path) -> str:
    """Classify as text, svg, image, pdf, audio, video or binary."""
    ext = path.suffix.lower()
    # mimetypes maps .ts to MPEG transport streams
    if ext in (".ts", ".mts", ".cts"):
        return "text"
    if ext == ".svg":
        return "svg"

    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type:
        if mime_type.startswith("image/"):
            return "image"
        if mime_type.startswith("audio/"):
            return "audio"
        if mime_type.startswith("video/"):
            return "video"
        if mime_type == "application/pdf":
            return "pdf"

    with open(path, "rb") as f:
        if b"\x00" in f.read(_SNIFF_BYTES):
            return "binary"
    return "text"


def _truncate_line(line: str) -> tuple[str, bool]:
    if len(line) > MAX_LINE_LENGTH:
        return line[:MAX_LINE_LENGTH] + _LINE_TRUNCATED, True
    return line, False


def paginate(
    content: str, offset: int | None, limit: int | None, *, truncate_long_lines: bool
) -> dict[str, Any]:
    lines = content.split("\n")
    total = len(lines)
    start = offset or 0
    end = min(start + (limit if limit is not None else DEFAULT_MAX_LINES), total)

    if start >= total:
        raise ToolExecutionError(NAME, f"Offset {start} is beyond the end of the file ({total} lines)")

    selected: list[str] = []
    lines_cut = False
    for line in lines[start:end]:
        if truncate_long_lines:
            line, cut = _truncate_line(line)
            lines_cut = lines_cut or cut
        selected.append(line)

    return {
        "content": "\n".join(selected),
        "isTruncated": start > 0 or end < total or lines_cut,
        "linesShown": [start + 1, end],
        "totalLines": total,
        "nextOffset": end if end < total else None,
    }


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig", errors="replace")


def _read(path: Path, offset: int | None, limit: int | None) -> dict[str, Any]:
    if path.is_dir():
        raise ToolExecutionError(NAME, f"Path is a directory, not a file: {path}")

    file_size = path.stat().st_size
    if file_size / MB > FILE_SIZE_LIMIT_MB:
        raise ToolExecutionError(
            NAME,
            f"File size exceeds the {FILE_SIZE_LIMIT_MB}MB limit: {path} ({file_size / MB:.2f}MB)",
        )

    file_type = detect_file_type(path)
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    meta = {"mimeType": mime_type, "fileType": file_type, "fileSize": file_size}

    if file_type == "binary":
        return {
            "content": (
                f"Cannot display content of binary file: {path.name}\n"
                f"File size: {file_size} bytes\n"
                f"MIME type: {mime_type}\n\n"
                "This appears to be a binary file that cannot be displayed as plain text."
            ),
            **meta,
        }

    if file_type in ("image", "pdf", "audio", "video"):
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        preview = encoded[:BASE64_PREVIEW_CHARS] + ("..." if len(encoded) > BASE64_PREVIEW_CHARS else "")
        return {
            "content": (
                f"[{file_type.upper()} File: {path.name}]\n"
                f"File size: {file_size} bytes\n"
                f"MIME type: {mime_type}\n\n"
                f"This is a {file_type} file. The binary content has been encoded as base64 for processing.\n"
                f"Base64 data: {preview}"
            ),
            **meta,
        }

    if file_type == "svg":
        if file_size / MB > SVG_MAX_SIZE_MB:
            raise ToolExecutionError(
                NAME, f"SVG file too large ({file_size / MB:.2f}MB > {SVG_MAX_SIZE_MB}MB): {path.name}"
            )
        content = _read_text(path)
        if offset is not None or limit is not None:
            return {**paginate(content, offset, limit, truncate_long_lines=False), **meta}
        return {"content": content, **meta}

    content = _read_text(path)
    if offset is not None or limit is not None:
        return {**paginate(content, offset, limit, truncate_long_lines=True), **meta}

    lines = content.split("\n")
    total = len(lines)
    if total > DEFAULT_MAX_LINES:
        shown = "\n".join(_truncate_line(line)[0] for line in lines[:DEFAULT_MAX_LINES])
        return {
            "content": (
                "IMPORTANT: The file content has been truncated.\n"
                f"Status: Showing lines 1-{DEFAULT_MAX_LINES} of {total} total lines.\n"
                "Action: To read more of the file, you can use the 'offset' and 'limit' parameters. "
                f"For example, use offset: {DEFAULT_MAX_LINES}.\n\n"
                "--- FILE CONTENT (truncated) ---\n"
                f"{shown}"
            ),
            "isTruncated": True,
            "linesShown": [1, DEFAULT_MAX_LINES],
            "totalLines": total,
            "nextOffset": DEFAULT_MAX_LINES,
            **meta,
        }

    formatted: list[str] = []
    lines_cut = False
    for line in lines:
        line, cut = _truncate_line(line)
        lines_cut = lines_cut or cut
        formatted.append(line)
    return {"content": "\n".join(formatted), "isTruncated": lines_cut, "totalLines": total, **meta}


async def handle(args: Args) -> dict[str, Any]:
    path = Path(args.absolutePath)
    try:
        return await asyncio.to_thread(_read, path, args.offset, args.limit)
    except FileNotFoundError:
        raise ToolExecutionError(NAME, f"File not found: {path}")
    except PermissionError:
        raise ToolExecutionError(NAME, f"Permission denied: {path}")
    except IsADirectoryError:
        raise ToolExecutionError(NAME, f"Path is a directory, not a file: {path}")
