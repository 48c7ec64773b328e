#!/usr/bin/env python3
"""
sumtree - per-directory checksum files and incremental bit-rot checks.

Writes <algorithm>sum.txt into a directory (or into each subdirectory of a
root) and later re-hashes the listed files to find silent corruption.

Commands:
  update  Hash every file and append the lines to the directory's checksum file.
  verify  Re-hash the listed files. In --subdirs mode, directories already
          checked this month (known_good_<m>_<y>.txt / to_check_<m>_<y>.txt)
          are skipped, so an interrupted run can be resumed.

Use --help for full options and examples.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from common import (
    DEFAULT_HASH_ALGO,
    DEFAULT_WORKERS,
    HASH_ALGORITHMS,
    Options,
    Verbosity,
    parse_exclude_extensions,
    setup_logging,
    write_report,
)
from update_cmd import update_directories
from verify_cmd import verify_directories


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--root',
        type=Path,
        required=True,
        help='Directory to process (the parent of the directories with --subdirs)',
    )
    parser.add_argument(
        '--subdirs',
        action='store_true',
        help='Treat every immediate subdirectory of --root as its own unit',
    )
    parser.add_argument(
        '--algorithm',
        choices=sorted(HASH_ALGORITHMS),
        default=DEFAULT_HASH_ALGO,
        help=f'Hash algorithm; names the checksum file <algorithm>sum.txt (default: {DEFAULT_HASH_ALGO})',
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=DEFAULT_WORKERS,
        help='Directories processed in parallel; 0 starts one thread per directory '
             f'(default: {DEFAULT_WORKERS})',
    )
    parser.add_argument(
        '--exclude-ext',
        action='append',
        default=[],
        help='Extensions to exclude (e.g. .tmp,.db). Comma-separated or repeatable.',
    )
    parser.add_argument(
        '--ignore-deleted',
        action='store_true',
        help='Ignore ._* files < 4500 bytes',
    )
    parser.add_argument(
        '--report',
        type=Path,
        help='Write a JSON report of the run to this path',
    )
    parser.add_argument(
        '--log',
        type=Path,
        help='Write log output to this file',
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        '--quiet',
        dest='verbosity',
        action='store_const',
        const=Verbosity.QUIET,
        help='Only log warnings and errors',
    )
    verbosity.add_argument(
        '--verbose',
        dest='verbosity',
        action='store_const',
        const=Verbosity.DEBUG,
        help='Enable verbose (debug) logging',
    )
    verbosity.add_argument(
        '--progress',
        dest='verbosity',
        action='store_const',
        const=Verbosity.PROGRESS,
        help='Draw one progress bar per directory (verify only)',
    )
    parser.set_defaults(verbosity=Verbosity.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Write per-directory checksum files (update) or check them (verify).',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  update:
    python sumtree.py update --root /path/to/photos
    python sumtree.py update --root /path/to/archive --subdirs --workers 4
    python sumtree.py update --root /path/to/archive --subdirs --algorithm b2

  verify:
    python sumtree.py verify --root /path/to/photos
    python sumtree.py verify --root /path/to/archive --subdirs --progress
    python sumtree.py verify --root /path/to/archive --subdirs --external-tool
        """,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    update_parser = subparsers.add_parser(
        'update',
        help='Hash files and append them to each directory\'s checksum file',
    )
    _add_common_arguments(update_parser)

    verify_parser = subparsers.add_parser(
        'verify',
        help='Re-hash files and compare them to the checksum file',
    )
    _add_common_arguments(verify_parser)
    verify_parser.add_argument(
        '--external-tool',
        action='store_true',
        help='Check with the system <algorithm>sum -c instead of the built-in hashing',
    )
    verify_parser.add_argument(
        '--checkpoint-dir',
        type=Path,
        default=Path('.'),
        help='Where known_good_*/to_check_* files are kept (default: current directory)',
    )
    return parser


def options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        folder=args.root.resolve(),
        subdir_mode=args.subdirs,
        algorithm=args.algorithm,
        workers=args.workers,
        verbosity=args.verbosity,
        exclude_exts=frozenset(parse_exclude_extensions(args.exclude_ext)),
        ignore_deleted=args.ignore_deleted,
        external_tool=getattr(args, 'external_tool', False),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.workers < 0:
        parser.error('--workers must be 0 or a positive number')

    setup_logging(args.log, args.verbosity)

    root = args.root.resolve()
    if not root.exists():
        logging.error(f"Root directory does not exist: {root}")
        return 1
    if not root.is_dir():
        logging.error(f"Root path is not a directory: {root}")
        return 1

    options = options_from_args(args)

    if args.command == 'update':
        report = update_directories(options)
        if args.report:
            write_report(report, args.report)
        return 0

    report = verify_directories(options, checkpoint_dir=args.checkpoint_dir)
    if args.report:
        write_report(report, args.report)
    stats = report.get("stats", {})
    if stats.get("failed", 0) or stats.get("indeterminate", 0):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
