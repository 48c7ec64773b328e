"""
Per-directory checksum files: <hash>, two spaces, <relative path>, one entry per line.

The layout is the one coreutils `<algorithm>sum -c` reads, so a directory can
also be checked with the system tools.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Pattern, TextIO

from common import HASH_ALGORITHMS, ChecksumFileUnavailable, checksum_filename


@dataclass(frozen=True)
class ChecksumEntry:
    """One line of a checksum file."""
    digest: str
    path: str


def checksum_path(directory: Path, algorithm: str) -> Path:
    return directory / checksum_filename(algorithm)


def digest_length(algorithm: str) -> int:
    """Number of hex characters in a digest of this algorithm."""
    return hashlib.new(HASH_ALGORITHMS[algorithm]).digest_size * 2


def line_pattern(algorithm: str) -> Pattern[str]:
    """Two-capture pattern for one checksum line: digest and relative path."""
    return re.compile(rf"^([0-9a-fA-F]{{{digest_length(algorithm)}}})  (.+)$")


def format_entry(entry: ChecksumEntry) -> str:
    return f"{entry.digest}  {entry.path}\n"


def parse_line(line: str, pattern: Pattern[str]) -> Optional[ChecksumEntry]:
    """Parse one line; None when it does not match the grammar."""
    match = pattern.match(line.rstrip("\r\n"))
    if not match:
        return None
    return ChecksumEntry(digest=match.group(1).lower(), path=match.group(2))


def read_entries(directory: Path, algorithm: str) -> Iterator[ChecksumEntry]:
    """Yield the parseable entries of a directory's checksum file in file order.

    Raises ChecksumFileUnavailable if the file cannot be opened. Malformed
    lines are skipped.
    """
    path = checksum_path(directory, algorithm)
    try:
        handle = path.open('r', encoding='utf-8', errors='surrogateescape', newline='')
    except OSError as exc:
        raise ChecksumFileUnavailable(f"Cannot open {path}: {exc}") from exc
    return _read_lines(handle, path, line_pattern(algorithm))


def _read_lines(handle: TextIO, path: Path, pattern: Pattern[str]) -> Iterator[ChecksumEntry]:
    with handle:
        for number, line in enumerate(handle, start=1):
            entry = parse_line(line, pattern)
            if entry is None:
                logging.debug(f"{path}:{number}: skipping malformed line")
                continue
            yield entry


def open_for_append(directory: Path, algorithm: str) -> TextIO:
    """Open a directory's checksum file in create-or-append mode."""
    path = checksum_path(directory, algorithm)
    try:
        return path.open('a', encoding='utf-8', errors='surrogateescape', newline='\n')
    except OSError as exc:
        raise ChecksumFileUnavailable(f"Cannot open {path}: {exc}") from exc


def append_entries(directory: Path, algorithm: str, entries: Iterable[ChecksumEntry]) -> int:
    """Append entries to a directory's checksum file. Returns the number written."""
    written = 0
    with open_for_append(directory, algorithm) as handle:
        for entry in entries:
            handle.write(format_entry(entry))
            written += 1
    return written
