"""CLI entry point for the clementine command."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from .cli.debug_log import configure_logging
from .config import AppConfig, _get_config_path, load_config

_EXAMPLES = """\
examples:
  clementine              start a chat session
  clementine --verbose    show the debug log panel below the conversation
"""


def _print_setup_guide(config_path: Path) -> None:
    print(
        "\nTo get started, set your API key:\n\n"
        "  export OPENAI_API_KEY=your-api-key\n"
        "\nOptional environment variables:\n"
        "  CLEMENTINE_MODEL=gpt-4o-mini\n"
        "  CLEMENTINE_BASE_URL=https://your-ai-endpoint/v1\n"
        "  CLEMENTINE_MAX_STEPS=5\n"
        "  CLEMENTINE_APPROVAL_EXEMPT=readFileTool\n"
        f"\nOr create {config_path} with:\n\n"
        "ai:\n"
        '  api_key: "your-api-key"\n'
        '  model: "gpt-4o-mini"\n'
        "cli:\n"
        "  max_steps: 5\n",
        file=sys.stderr,
    )


def _load_config_or_exit() -> AppConfig:
    config_path = _get_config_path()
    try:
        return load_config(config_path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        _print_setup_guide(config_path)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clementine",
        description="Clementine - a terminal coding assistant that asks before it acts",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show a rolling panel of debug logs",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    config = _load_config_or_exit()
    debug_handler = configure_logging(args.verbose, config.cli.debug_log_lines)

    from .cli.repl import run_cli

    try:
        asyncio.run(run_cli(config, debug_handler=debug_handler))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
