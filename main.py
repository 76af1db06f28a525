"""
main.py — Signal Analyst Entry Point

Usage:
    python main.py                              # interactive REPL
    python main.py --ask "are any lights on?"   # one question, then exit
    python main.py --log-level DEBUG            # verbose logging
    python main.py --config path/to/config.yaml
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# .env must be loaded before Settings is first constructed
ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="signal-analyst",
        description="Signal Analyst — ask questions about your Home Assistant in plain language",
    )
    parser.add_argument(
        "--ask",
        default=None,
        metavar="QUESTION",
        help="Answer a single question and exit instead of starting the REPL",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $SIGNAL_ANALYST_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 after printing a clear message if config.yaml has
    invalid values or validate_all() finds cross-field problems.
    """
    from pydantic import ValidationError

    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_from_settings

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_from_settings(settings, level_override=args.log_level)
    Path(settings.log_dir).expanduser().mkdir(parents=True, exist_ok=True)

    return settings, get_logger("signal_analyst.main")


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "signal_analyst.starting",
        version=settings.agent.version,
        llm_provider=settings.llm.provider,
        llm_model=settings.llm.model,
        ha_url=settings.home_assistant.url,
        one_shot=args.ask is not None,
    )

    from brain import LLMError
    from interfaces.cli import run_cli, run_once

    try:
        if args.ask is not None:
            return await run_once(settings, args.ask, log)
        await run_cli(settings, log)
    except (ValueError, LLMError) as e:
        # provider construction problems surface here (unknown provider, missing key)
        log.error("signal_analyst.init_failed", error=str(e), error_type=type(e).__name__)
        print(f"\n❌  Failed to initialise Signal Analyst: {e}\n", file=sys.stderr)
        return 1
    return 0


def cli_entry() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli_entry()
