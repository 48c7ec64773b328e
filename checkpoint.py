"""
Checkpoint store: directories already judged good or bad in the current month.

Two append-only text files per period, one directory path per line:
known_good_<month>_<year>.txt and to_check_<month>_<year>.txt. A new month
starts a new, empty pair; older periods are left untouched.
"""

import logging
import threading
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Set, TextIO, Tuple


Period = Tuple[int, int]


def current_period(today: Optional[date] = None) -> Period:
    """(month, year) of the given day, default today."""
    today = today or date.today()
    return today.month, today.year


def read_paths(file_path: Path) -> List[Path]:
    """Read directory paths, one per line. A missing file reads as empty."""
    try:
        with file_path.open('r', encoding='utf-8', errors='surrogateescape') as handle:
            return [Path(line.rstrip('\n')) for line in handle if line.rstrip('\n')]
    except (FileNotFoundError, NotADirectoryError):
        return []


class _AppendLog:
    """One shared append handle guarded by a lock."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._handle: Optional[TextIO] = None

    def append(self, line: str) -> None:
        with self._lock:
            if self._handle is None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._handle = self.path.open('a', encoding='utf-8', errors='surrogateescape')
            self._handle.write(f"{line}\n")
            self._handle.flush()

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


class CheckpointStore:
    """KnownGood and ToCheck sets for one month/year period."""

    def __init__(self, base_dir: Path = Path('.'), period: Optional[Period] = None):
        self.base_dir = base_dir
        self.period = period or current_period()
        month, year = self.period
        self.known_good_path = base_dir / f"known_good_{month}_{year}.txt"
        self.to_check_path = base_dir / f"to_check_{month}_{year}.txt"
        self.known_good: Set[Path] = set()
        self.to_check: Set[Path] = set()
        self._known_good_log = _AppendLog(self.known_good_path)
        self._to_check_log = _AppendLog(self.to_check_path)

    def load(self) -> Set[Path]:
        """Read both sets from disk; returns every already resolved directory."""
        self.known_good = set(read_paths(self.known_good_path))
        self.to_check = set(read_paths(self.to_check_path))
        overlap = self.known_good & self.to_check
        if overlap:
            logging.warning(
                f"{len(overlap)} directories are listed as both good and to check "
                f"for {self.period[0]}/{self.period[1]}"
            )
        return self.already_checked

    @property
    def already_checked(self) -> Set[Path]:
        return self.known_good | self.to_check

    def filter(self, tasks: Iterable[Path]) -> List[Path]:
        """Drop directories that were already resolved in this period."""
        resolved = self.already_checked
        return [task for task in tasks if task not in resolved]

    def record_good(self, directory: Path) -> None:
        self._known_good_log.append(str(directory))

    def record_bad(self, directory: Path) -> None:
        self._to_check_log.append(str(directory))

    def close(self) -> None:
        self._known_good_log.close()
        self._to_check_log.close()

    def __enter__(self) -> "CheckpointStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def failure_log_path(directory: Path, base_dir: Path = Path('.')) -> Path:
    """to_check_<directory>.txt with path separators flattened to underscores.

    '%', '_', ':' and '\\' are percent-escaped first, so distinct directories
    never share a log.
    """
    name = str(directory)
    if name.startswith('./'):
        name = name[2:]
    for char in ('%', '_', ':', '\\'):
        name = name.replace(char, f"%{ord(char):02X}")
    name = name.replace('/', '_')
    return base_dir / f"to_check_{name or '_'}.txt"


def write_failure_log(directory: Path, failed_paths: Iterable[str], base_dir: Path = Path('.')) -> Path:
    """Append the failing relative paths of a directory to its failure log."""
    log_path = failure_log_path(directory, base_dir)
    logging.debug(f"Failure log for {directory}: {log_path}")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open('a', encoding='utf-8', errors='surrogateescape') as handle:
        for path in failed_paths:
            handle.write(f"{path}\n")
    return log_path
