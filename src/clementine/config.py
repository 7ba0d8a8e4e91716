"""Configuration loader: optional YAML file with environment variable fallbacks."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_STEPS = 5
MAX_STEPS_LIMIT = 20

_SYSTEM_PROMPT_TEMPLATE = """\
You are Clementine, an expert terminal-based coding assistant and pair programmer. You work directly \
with users through a command-line interface to help them build, debug, and maintain software projects.

## Context Information
Current working directory: {working_dir}
Current date and time: {now}

## Your Capabilities
You have access to tools that allow you to:
- Read and analyze files in the project
- Create, edit, and modify code files
- Execute shell commands to run builds, tests, and other development tasks
- Navigate and understand project structure

Every tool call is shown to the user, who approves or rejects the whole batch before it runs.

## Core Principles
1. **Always use absolute paths** for file operations. Convert relative paths using the current working \
directory provided above.
2. **Be proactive and efficient** - when you encounter errors, retry with corrected parameters rather \
than asking the user for clarification.
3. **Understand context** - read relevant files to understand the project structure, dependencies, and \
coding patterns before making changes.
4. **Follow existing patterns** - match the coding style, naming conventions, and architecture patterns \
already established in the project.
5. **Test your changes** - when possible, run tests or builds to verify that your changes work correctly.

## Working Style
- Take initiative to solve problems completely rather than providing partial solutions
- Ask clarifying questions only when the user's intent is genuinely ambiguous
- Explain your reasoning when making significant architectural decisions
- Responses should be formatted in markdown"""


def build_system_prompt(working_dir: str | None = None, now: datetime | None = None) -> str:
    return _SYSTEM_PROMPT_TEMPLATE.format(
        working_dir=working_dir or os.getcwd(),
        now=(now or datetime.now()).isoformat(timespec="seconds"),
    )


@dataclass
class AIConfig:
    api_key: str
    base_url: str = ""
    model: str = DEFAULT_MODEL
    system_prompt: str = field(default_factory=build_system_prompt)


@dataclass
class CliConfig:
    max_steps: int = DEFAULT_MAX_STEPS
    approval_exempt: list[str] = field(default_factory=list)
    debug_log_lines: int = 10


@dataclass
class AppConfig:
    ai: AIConfig
    cli: CliConfig = field(default_factory=CliConfig)
    data_dir: Path = field(default_factory=lambda: Path.home() / ".clementine")


def _get_config_path(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir / "config.yaml"
    return Path.home() / ".clementine" / "config.yaml"


def _split_names(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, list):
        return [str(part).strip() for part in raw if str(part).strip()]
    return []


def load_config(config_path: Path | None = None, working_dir: str | None = None) -> AppConfig:
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    ai_raw = raw.get("ai", {})
    api_key = ai_raw.get("api_key") or os.environ.get("OPENAI_API_KEY", "")
    base_url = ai_raw.get("base_url") or os.environ.get("CLEMENTINE_BASE_URL", "")
    model = ai_raw.get("model") or os.environ.get("CLEMENTINE_MODEL", DEFAULT_MODEL)

    if not api_key:
        raise ValueError(
            f"An API key is required. Set the OPENAI_API_KEY environment variable or 'ai.api_key' in {path}."
        )

    ai = AIConfig(
        api_key=api_key,
        base_url=base_url,
        model=model,
        system_prompt=build_system_prompt(working_dir),
    )

    cli_raw = raw.get("cli", {})
    max_steps_raw = cli_raw.get("max_steps") or os.environ.get("CLEMENTINE_MAX_STEPS", DEFAULT_MAX_STEPS)
    try:
        max_steps = int(max_steps_raw)
    except (TypeError, ValueError):
        raise ValueError(f"max_steps must be an integer, got {max_steps_raw!r}")
    max_steps = max(1, min(max_steps, MAX_STEPS_LIMIT))

    exempt_raw = cli_raw.get("approval_exempt") or os.environ.get("CLEMENTINE_APPROVAL_EXEMPT", "")

    cli = CliConfig(
        max_steps=max_steps,
        approval_exempt=_split_names(exempt_raw),
        debug_log_lines=int(cli_raw.get("debug_log_lines", 10)),
    )

    if path.exists() and stat.S_IMODE(path.stat().st_mode) & 0o077:
        # The file may hold an API key
        try:
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
            logger.info("Restricted permissions of %s to 0600", path)
        except OSError as e:
            logger.warning("Could not restrict permissions of %s: %s", path, e)

    return AppConfig(ai=ai, cli=cli, data_dir=path.parent)
