"""
Shared code for sumtree update and verify: constants, options, errors, file walking, hashing, reporting.
"""

import enum
import hashlib
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Set


DEFAULT_HASH_ALGO = "sha256"
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024
DEFAULT_WORKERS = 0

# Algorithm identifier -> hashlib constructor name. Identifiers follow the
# coreutils tool names (<algorithm>sum).
HASH_ALGORITHMS: Dict[str, str] = {
    "md5": "md5",
    "sha1": "sha1",
    "sha224": "sha224",
    "sha256": "sha256",
    "sha384": "sha384",
    "sha512": "sha512",
    "b2": "blake2b",
}


class SumtreeError(Exception):
    """Base class for errors recovered at the directory-task boundary."""


class InaccessibleDirectory(SumtreeError):
    """The directory of a task could not be enumerated."""


class ChecksumFileUnavailable(SumtreeError):
    """The checksum file of a directory could not be opened."""


class VerificationToolUnavailable(SumtreeError):
    """The external check executable could not be launched."""


class Verbosity(enum.Enum):
    QUIET = "quiet"
    INFO = "info"
    DEBUG = "debug"
    PROGRESS = "progress"


@dataclass(frozen=True)
class Options:
    """Run configuration shared read-only by every task."""
    folder: Path
    subdir_mode: bool = False
    algorithm: str = DEFAULT_HASH_ALGO
    workers: int = DEFAULT_WORKERS
    verbosity: Verbosity = Verbosity.INFO
    exclude_exts: FrozenSet[str] = field(default_factory=frozenset)
    ignore_deleted: bool = False
    external_tool: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.algorithm not in HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.algorithm}")
        if self.workers < 0:
            raise ValueError(f"Worker count must not be negative: {self.workers}")

    @property
    def checksum_filename(self) -> str:
        return checksum_filename(self.algorithm)

    # Verbosities are modes, not thresholds: PROGRESS draws bars and logs no info lines.
    def loglevel_info(self) -> bool:
        return self.verbosity in (Verbosity.INFO, Verbosity.DEBUG)

    def loglevel_debug(self) -> bool:
        return self.verbosity is Verbosity.DEBUG

    def loglevel_progress(self) -> bool:
        return self.verbosity is Verbosity.PROGRESS


def checksum_filename(algorithm: str) -> str:
    """Name of the per-directory checksum file for an algorithm."""
    return f"{algorithm}sum.txt"


CHECKSUM_FILENAMES = frozenset(checksum_filename(name) for name in HASH_ALGORITHMS)


def logging_level(verbosity: Verbosity) -> int:
    """Map a verbosity to a logging level; progress mode keeps the console for the bars."""
    if verbosity is Verbosity.DEBUG:
        return logging.DEBUG
    if verbosity is Verbosity.INFO:
        return logging.INFO
    return logging.WARNING


def setup_logging(log_file: Optional[Path] = None, verbosity: Verbosity = Verbosity.INFO) -> None:
    """Configure logging to file and console."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    logging.basicConfig(
        level=logging_level(verbosity),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def parse_exclude_extensions(exclude_args: List[str]) -> Set[str]:
    """Normalize exclude extensions into a set of lowercase suffixes."""
    extensions: Set[str] = set()
    for item in exclude_args:
        for part in item.split(','):
            ext = part.strip().lower()
            if not ext:
                continue
            if not ext.startswith('.'):
                ext = f".{ext}"
            extensions.add(ext)
    return extensions


def should_ignore_file(file_path: Path, size: Optional[int] = None) -> bool:
    """Ignore AppleDouble companions: ._ prefix and smaller than 4500 bytes."""
    try:
        if not file_path.name.startswith("._"):
            return False
        s = size if size is not None else file_path.stat().st_size
        return s < 4500
    except (OSError, AttributeError):
        return False


def is_candidate(file_path: Path, options: Options) -> bool:
    """Return True if a file should get a checksum entry."""
    if file_path.name in CHECKSUM_FILENAMES:
        return False
    if file_path.suffix.lower() in options.exclude_exts:
        return False
    if options.ignore_deleted and should_ignore_file(file_path):
        return False
    return True


def _sorted_entries(directory: Path) -> List[os.DirEntry]:
    with os.scandir(directory) as entries:
        return sorted(entries, key=lambda entry: entry.name)


def iter_files(directory: Path, options: Options) -> Iterator[str]:
    """Return the candidate files under directory as relative POSIX paths.

    The top level is read eagerly so an unreadable directory raises
    InaccessibleDirectory here; nested directories that cannot be read are
    logged and skipped. Symlinks are not followed. Each call starts a new walk.
    """
    try:
        top = _sorted_entries(directory)
    except OSError as exc:
        raise InaccessibleDirectory(f"Cannot read directory {directory}: {exc}") from exc
    return _walk(directory, top, options)


def _walk(directory: Path, top: List[os.DirEntry], options: Options) -> Iterator[str]:
    stack = [list(reversed(top))]
    while stack:
        entries = stack[-1]
        if not entries:
            stack.pop()
            continue
        entry = entries.pop()
        try:
            if entry.is_dir(follow_symlinks=False):
                try:
                    stack.append(list(reversed(_sorted_entries(Path(entry.path)))))
                except OSError as exc:
                    logging.warning(f"Skipping directory {entry.path}: {exc}")
            elif entry.is_file(follow_symlinks=False):
                file_path = Path(entry.path)
                if is_candidate(file_path, options):
                    yield file_path.relative_to(directory).as_posix()
        except OSError as exc:
            logging.warning(f"Skipping entry {entry.path}: {exc}")


def compute_hash(file_path: Path, algorithm: str = DEFAULT_HASH_ALGO,
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the hex digest of a file."""
    hasher = hashlib.new(HASH_ALGORITHMS[algorithm])
    with file_path.open('rb') as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_file(relative_path: str, directory: Path, options: Options) -> str:
    """Hash one file of a directory with the configured algorithm."""
    return compute_hash(directory / relative_path, options.algorithm, options.chunk_size)


def file_size(file_path: Path) -> Optional[int]:
    """Size of a file, or None when it does not exist or cannot be read."""
    try:
        return file_path.stat().st_size
    except OSError:
        return None


def build_report(
    options: Options,
    stats: Dict[str, int],
    run_started: int,
    run_finished: int,
    mode: str,
    details: Optional[Dict[str, object]],
) -> Dict[str, object]:
    """Build JSON-compatible report."""
    report: Dict[str, object] = {
        "run_started": datetime.fromtimestamp(run_started).isoformat(),
        "run_finished": datetime.fromtimestamp(run_finished).isoformat(),
        "duration_seconds": run_finished - run_started,
        "root": str(options.folder),
        "subdir_mode": options.subdir_mode,
        "hash_algo": options.algorithm,
        "workers": options.workers,
        "mode": mode,
        "exclude_exts": sorted(options.exclude_exts),
        "stats": stats,
    }
    if details:
        report.update(details)
    return report


def write_report(report: Dict[str, object], report_path: Path) -> None:
    """Write report to file."""
    report_json = json.dumps(report, indent=2, sort_keys=True)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report_json, encoding='utf-8')
    logging.info(f"Report written to {report_path}")


STATUS_UPDATED = "updated"
STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_INDETERMINATE = "indeterminate"
STATUS_SKIPPED = "skipped"


@dataclass
class DirectoryResult:
    """Outcome of one directory task."""
    directory: Path
    status: str
    files_hashed: int = 0
    errors: int = 0
    failed_paths: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (STATUS_UPDATED, STATUS_OK)


def summarize_results(
    tasks: List[Path],
    results: List[Optional[DirectoryResult]],
) -> Dict[str, object]:
    """Stats and per-directory details for a run report."""
    stats = {
        "directories": len(tasks),
        "succeeded": 0,
        "failed": 0,
        "indeterminate": 0,
        "skipped": 0,
        "files_hashed": 0,
        "errors": 0,
    }
    directories: List[Dict[str, object]] = []
    for task, result in zip(tasks, results):
        if result is None:
            result = DirectoryResult(directory=task, status=STATUS_SKIPPED, error="task aborted")
        if result.succeeded:
            stats["succeeded"] += 1
        elif result.status == STATUS_FAILED:
            stats["failed"] += 1
        elif result.status == STATUS_INDETERMINATE:
            stats["indeterminate"] += 1
        else:
            stats["skipped"] += 1
        stats["files_hashed"] += result.files_hashed
        stats["errors"] += result.errors
        item: Dict[str, object] = {"path": str(result.directory), "status": result.status}
        if result.failed_paths:
            item["failed_paths"] = list(result.failed_paths)
        if result.error:
            item["error"] = result.error
        directories.append(item)
    return {"stats": stats, "directories": directories}
