#!/usr/bin/env python3
"""
Mirror CLI Interface

Command-line interface for one mirror run.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import get_args

from .errors import (
    ConfigurationError,
    CorruptStateError,
    MirrorError,
    SerializationError,
    StorageError,
    TransportError,
)
from .logging_config import setup_logging
from .models import EnumerationMode
from .run_config import FAILURE_POLICIES, load_run_config
from .sync.pipeline import SyncPipeline

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_FAILED_PROJECTS = TransportError.exit_code
EXIT_INTERRUPTED = 130

# Step named in the one-line diagnostic for each error type
FAILED_STEPS: list[tuple[type[MirrorError], str]] = [
    (ConfigurationError, "configuration"),
    (CorruptStateError, "loading index"),
    (TransportError, "talking to GitHub"),
    (StorageError, "storage"),
    (SerializationError, "writing index"),
]


def failed_step(error: BaseException) -> str:
    for error_type, step in FAILED_STEPS:
        if isinstance(error, error_type):
            return step
    return "unexpected error"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-mirror",
        description="Mirror GitHub release assets into object storage and update the download index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mirror every release of the default projects
  release-mirror

  # Only the latest release of two projects
  release-mirror --latest-only --project qsctl --project snapshots

  # Preview what would be mirrored
  release-mirror --dry-run --log-level DEBUG

Credentials are read from GITHUB_TOKEN, QINGSTOR_ACCESS_KEY and QINGSTOR_SECRET_KEY.
        """,
    )

    parser.add_argument("--config", type=Path, help="JSON config file (environment variables take precedence)")
    parser.add_argument(
        "--latest-only", action="store_true", help="Mirror only the latest release of each project"
    )
    parser.add_argument(
        "--project",
        action="append",
        dest="projects",
        help="Project to mirror. Multiple options allowed (e.g., --project qsctl --project qscamel)",
    )
    parser.add_argument("--data-file", type=Path, help="Index document to read and update")
    parser.add_argument("--concurrency", type=int, help="Maximum number of assets mirrored at once")
    parser.add_argument(
        "--failure-policy",
        choices=list(get_args(FAILURE_POLICIES)),
        help="What a GitHub failure stops: the whole run, the project, or only the asset",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Check storage but do not download, upload or write the index"
    )

    # Logging
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    parser.add_argument("--log-file", type=Path, help="Also write log output to this file")
    return parser


async def run(args: argparse.Namespace) -> int:
    """Run the mirror with parsed arguments and return the process exit code."""
    config = load_run_config(args.config).with_overrides(
        projects=tuple(args.projects) if args.projects else None,
        mode=EnumerationMode.LATEST if args.latest_only else None,
        data_file=args.data_file,
        concurrency=args.concurrency,
        failure_policy=args.failure_policy,
        dry_run=True if args.dry_run else None,
    )

    async with SyncPipeline.from_run_config(config) as pipeline:
        stats = await pipeline.run()

    if stats.failed_projects or stats.failed:
        failed = ", ".join(stats.failed_projects) or f"{stats.failed} assets"
        print(f"Mirror incomplete (talking to GitHub): failed {failed}", file=sys.stderr)
        return EXIT_FAILED_PROJECTS
    return EXIT_OK


async def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        return await run(args)
    except MirrorError as e:
        logger.debug("Mirror run failed", exc_info=True)
        print(f"Mirror failed ({failed_step(e)}): {e}", file=sys.stderr)
        return e.exit_code
    except Exception as e:
        logger.exception("Unexpected error during mirror run")
        print(f"Mirror failed (unexpected error): {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_UNEXPECTED


def entry_point() -> None:
    """Console script entry point."""
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":
    entry_point()
