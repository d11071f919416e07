"""Command-line entry point for the lite reader."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import ReaderConfig
from .navigator import Navigator, run_reader
from .utils import normalize_url

logger = logging.getLogger("lite_reader.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("read", *argv)


def _configure_logging(verbose: bool, quiet_level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else quiet_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def _add_read_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("urls", nargs="+", help="One or more URLs to read")
    parser.add_argument(
        "--output",
        default=None,
        type=Path,
        help="Directory where Markdown and images should be written; prints to STDOUT when omitted",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request timeout in seconds (default: LITE_READER_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--no-images",
        action="store_true",
        help="Skip fetching images and hero backgrounds",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_script_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("script", help="Script text containing a fetch() or XMLHttpRequest GET")
    parser.add_argument(
        "--base",
        default=None,
        help="URL that relative request targets resolve against",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch web pages over plain HTTP and print their readable content as Markdown.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    read_parser = subparsers.add_parser("read", help="Read pages and render them as Markdown")
    _add_read_arguments(read_parser)

    script_parser = subparsers.add_parser(
        "script", help="Run the request hook for a snippet of page script"
    )
    _add_script_arguments(script_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ReaderConfig:
    overrides = {}
    if getattr(args, "timeout", None) is not None:
        overrides["timeout"] = args.timeout
    config = ReaderConfig.from_env(**overrides)
    if getattr(args, "no_images", False):
        config.fetch_images = False
    if getattr(args, "output", None) is not None:
        config.output_root = Path(args.output).resolve()
    return config


def _run_read(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    config = build_config(args)

    overall_start = time.perf_counter()
    results = asyncio.run(run_reader(args.urls, config))
    total_elapsed = time.perf_counter() - overall_start

    successes = len(results)
    total_urls = len(args.urls)
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed)",
        total_elapsed,
        successes,
        total_urls,
        total_urls - successes,
    )

    if args.verbose:
        for result in results:
            logger.debug(
                "Timing for %s -> %.2fs (strategy: %s)",
                result.url,
                result.total_seconds,
                result.view.content.strategy if result.view.content else "snippet",
            )

    if config.output_root is None:
        for idx, result in enumerate(results):
            markdown = result.markdown
            if idx and not markdown.startswith("\n"):
                sys.stdout.write("\n")
            sys.stdout.write(markdown if markdown.endswith("\n") else markdown + "\n")
        sys.stdout.flush()
    return 0 if successes == total_urls else 1


async def _execute_script(script: str, base: Optional[str], config: ReaderConfig) -> str:
    async with Navigator(config) as navigator:
        if base:
            navigator.current_url = normalize_url(base)
        return await navigator.execute_script(script)


def _run_script(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose, quiet_level=logging.WARNING)
    body = asyncio.run(_execute_script(args.script, args.base, build_config(args)))
    if not body:
        logger.warning("Script did not produce a response")
        return 1
    sys.stdout.write(body if body.endswith("\n") else body + "\n")
    sys.stdout.flush()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "read":
        return _run_read(args)
    return _run_script(args)


if __name__ == "__main__":
    sys.exit(main())
