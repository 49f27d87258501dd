"""
Command line entry point.

    knownsift [DATABASE] [FILELIST] [-e EXT ...] [-w N] [--chunk-size N]

Exit status: 0 on success, 1 on a fatal error, 2 when the run finished with
errored chunks (partial output), 130 when interrupted.
"""
from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .core.app_version import get_app_version
from .core.config import AppConfig, load_app_config
from .core.exceptions import KnownSiftError
from .core.logging import configure_logging, get_logger
from .pipeline import run_classification

LOGGER = get_logger("cli")

DEFAULT_DATABASE = "nsrl.db"
DEFAULT_FILELIST = "filelist.csv"

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knownsift",
        description="Separate known software from unknown files using an NSRL-style hash database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  knownsift
  knownsift RDS_modern.db export.csv
  knownsift RDS_modern.db export.csv --ext exe dll sys
""",
    )
    parser.add_argument("database", nargs="?", default=DEFAULT_DATABASE,
                        help=f"Reference SQLite database (default: {DEFAULT_DATABASE})")
    parser.add_argument("filelist", nargs="?", default=DEFAULT_FILELIST,
                        help=f"Candidate file list CSV (default: {DEFAULT_FILELIST})")
    parser.add_argument("-e", "--ext", nargs="+", metavar="EXT", dest="extensions",
                        help="Only classify files with these extensions")
    parser.add_argument("-w", "--workers", type=int,
                        help="Worker threads (0 = one per CPU)")
    parser.add_argument("--chunk-size", type=int, help="Records per lookup chunk")
    parser.add_argument("--known-out", type=Path, help="Known output file")
    parser.add_argument("--unknown-out", type=Path, help="Unknown output file")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--log-dir", type=Path, help="Also write a rotating log file here")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("-V", "--version", action="version",
                        version=f"KnownSift {get_app_version()}")
    return parser


def _apply_arguments(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.extensions:
        config.input.extensions = list(args.extensions)
    if args.workers is not None:
        config.parallel.max_workers = args.workers
    if args.chunk_size is not None:
        if args.chunk_size <= 0:
            raise KnownSiftError("--chunk-size must be positive")
        config.parallel.chunk_size = args.chunk_size
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_app_config(args.config)
    except KnownSiftError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    level = logging.DEBUG if args.verbose else config.logging.level
    configure_logging(
        level,
        log_dir=args.log_dir,
        max_bytes=config.logging.log_max_mb * 1024 * 1024,
        backup_count=config.logging.log_backup_count,
    )

    progress: Optional[tqdm] = None
    show_progress = not args.no_progress and sys.stderr.isatty()

    def _on_total(total: int) -> None:
        nonlocal progress
        progress = tqdm(total=total, desc="Classifying", unit="rec", file=sys.stderr)

    def _on_progress(handled: int) -> None:
        if progress is not None:
            progress.update(handled - progress.n)

    try:
        config = _apply_arguments(config, args)
        result = run_classification(
            Path(args.database),
            Path(args.filelist),
            config,
            known_path=args.known_out,
            unknown_path=args.unknown_out,
            total_callback=_on_total if show_progress else None,
            progress_callback=_on_progress if show_progress else None,
        )
    except KeyboardInterrupt:
        print("\nInterrupted; output files were left with a .partial suffix", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (KnownSiftError, sqlite3.Error) as e:
        LOGGER.debug("Fatal error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        if progress is not None:
            progress.close()

    print()
    print(result.summary.format_report())
    print(f"  Known output: {result.known_path}")
    print(f"  Unknown output: {result.unknown_path}")

    if not result.complete:
        print("WARNING: the run did not complete; output files are partial.", file=sys.stderr)
        return EXIT_PARTIAL
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
