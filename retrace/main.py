"""
retrace - natural-language end-to-end testing.
Main entry point for the application.
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Tuple

from rich.console import Console

from retrace import __version__
from retrace.config.settings import LOG_LEVELS, Settings, get_settings
from retrace.error_handling import RetraceError, get_error_details
from retrace.monitoring.logger import get_logger, setup_logging
from retrace.runner.repository import clean_up_cache
from retrace.runner.runner import TestRunner

console = Console()
logger = get_logger("retrace.main")


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="retrace",
        description=f"retrace - AI-powered end-to-end testing v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every test matching the configured pattern
  retrace

  # Run one file, or only the test declared at line 12
  retrace tests/login.test.py
  retrace tests/login.test.py:12

  # Ignore cached runs and ask the AI again
  retrace --no-cache

  # Prune the cache, or delete it entirely
  retrace cache clear
  retrace cache clear --force-purge

Environment:
  OPENAI_API_KEY        API key used by the action decider (.env or .env.local)
        """,
    )
    parser.add_argument(
        "test_pattern",
        nargs="?",
        help="Glob pattern of test files, optionally suffixed with :LINE",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run tests in headless browser mode",
    )
    parser.add_argument(
        "--target",
        metavar="URL",
        help="Set target URL for tests",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable test action caching",
    )
    _add_log_level(parser)
    parser.add_argument(
        "--version",
        action="version",
        version=f"retrace {__version__}",
    )
    return parser


def create_cache_parser() -> argparse.ArgumentParser:
    """Create the parser of the ``retrace cache`` commands."""
    parser = argparse.ArgumentParser(
        prog="retrace cache", description="Cache management commands"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    clear = subparsers.add_parser("clear", help="Clear test cache")
    clear.add_argument(
        "--force-purge",
        action="store_true",
        help="Force purge of all cache files",
    )
    _add_log_level(clear)
    return parser


def _add_log_level(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Set logging level",
    )


def split_test_pattern(test_pattern: str) -> Tuple[str, Optional[int]]:
    """Split ``path:line`` into the pattern and the line number."""
    if ":" in test_pattern:
        pattern, _, line = test_pattern.rpartition(":")
        if line.isdigit():
            return pattern, int(line)
    return test_pattern, None


def _configure(settings: Settings) -> None:
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )


async def run_tests(parsed_args: argparse.Namespace) -> int:
    """Run the test suite and return the exit code."""
    settings = get_settings()
    pattern, line_number = split_test_pattern(
        parsed_args.test_pattern or settings.test_pattern
    )
    settings = settings.apply_cli_overrides(
        headless=parsed_args.headless,
        base_url=parsed_args.target,
        test_pattern=pattern,
        no_cache=parsed_args.no_cache,
        log_level=parsed_args.log_level,
    )
    _configure(settings)
    logger.debug(
        "Starting retrace",
        extra={"pattern": pattern, "line_number": line_number},
    )

    try:
        runner = TestRunner(settings=settings)
        success = await runner.execute(settings.test_pattern, line_number)
        return 0 if success else 1
    except RetraceError as e:
        logger.error(e.message, extra=get_error_details(e))
        console.print(f"[red]Error: {e.message}[/red]")
        return 1
    finally:
        clean_up_cache(settings.cache_dir)


def run_cache_command(argv: List[str]) -> int:
    """Handle ``retrace cache ...``."""
    parsed_args = create_cache_parser().parse_args(argv)
    settings = get_settings().apply_cli_overrides(log_level=parsed_args.log_level)
    _configure(settings)

    if parsed_args.command == "clear":
        clean_up_cache(settings.cache_dir, force_purge=parsed_args.force_purge)
        action = "purged" if parsed_args.force_purge else "cleaned up"
        console.print(f"[green]Cache {action}:[/green] {settings.cache_dir}")
    return 0


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for retrace.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    argv = list(sys.argv[1:] if args is None else args)
    try:
        if argv and argv[0] == "cache":
            return run_cache_command(argv[1:])
        parsed_args = create_parser().parse_args(argv)
        return asyncio.run(run_tests(parsed_args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Test execution interrupted by user[/yellow]")
        return 130
    except RetraceError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
