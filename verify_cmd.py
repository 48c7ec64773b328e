"""
Verify command: re-hash files listed in each directory's checksum file and record the outcome.

A directory is checked in one of two ways. The oneshot check runs a check
procedure over the whole directory and collects the names it reports; the
progress check walks the checksum file twice (sizes, then hashes) and draws a
progress row per directory. Outcomes go to the month's checkpoint files and,
for failures, to a per-directory failure log.
"""

import logging
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from checkpoint import CheckpointStore, Period, write_failure_log
from checksums import ChecksumEntry, read_entries
from common import (
    STATUS_FAILED,
    STATUS_INDETERMINATE,
    STATUS_OK,
    STATUS_SKIPPED,
    ChecksumFileUnavailable,
    DirectoryResult,
    Options,
    VerificationToolUnavailable,
    build_report,
    file_size,
    hash_file,
    summarize_results,
)
from dispatch import gather_directories, run_tasks
from progress import ProgressPresenter, ProgressState


CheckOutcome = Tuple[bool, List[str]]


def entry_matches(entry: ChecksumEntry, directory: Path, options: Options) -> bool:
    """Re-hash one entry; a file that cannot be read does not match."""
    try:
        digest = hash_file(entry.path, directory, options)
    except OSError as exc:
        logging.debug(f"Failed to hash {directory / entry.path}: {exc}")
        return False
    return digest == entry.digest


class CheckRun(ABC):
    """A check procedure running over one directory.

    lines() yields the names of files that failed; wait() drains what is left
    and returns True when the procedure ended successfully.
    """

    def __init__(self, directory: Path, options: Options):
        self.directory = directory
        self.options = options
        self._lines: Iterator[str] = iter(())

    def lines(self) -> Iterator[str]:
        return self._lines

    @abstractmethod
    def wait(self) -> bool:
        raise NotImplementedError


class InternalCheck(CheckRun):
    """Checks the checksum file with the in-process hash routine."""

    def __init__(self, directory: Path, options: Options):
        super().__init__(directory, options)
        self._failures = 0
        self._lines = self._check(read_entries(directory, options.algorithm))

    def _check(self, entries: Iterator[ChecksumEntry]) -> Iterator[str]:
        for entry in entries:
            if not entry_matches(entry, self.directory, self.options):
                self._failures += 1
                yield entry.path

    def wait(self) -> bool:
        for _ in self._lines:
            pass
        return self._failures == 0


def parse_tool_line(line: str) -> str:
    """'<path>: FAILED' or '<path>: FAILED open or read' -> '<path>'."""
    path, sep, _ = line.rpartition(": FAILED")
    return path if sep else line


class ExternalCheck(CheckRun):
    """Runs `<algorithm>sum -c --quiet` inside the directory.

    Success is the tool's exit status; the listed names are not
    cross-checked against it.
    """

    def __init__(self, directory: Path, options: Options):
        super().__init__(directory, options)
        command = [f"{options.algorithm}sum", "-c", "--quiet", options.checksum_filename]
        try:
            self._process = subprocess.Popen(
                command,
                cwd=directory,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                errors='surrogateescape',
            )
        except OSError as exc:
            raise VerificationToolUnavailable(f"Cannot run {command[0]}: {exc}") from exc
        self._lines = self._read()

    def _read(self) -> Iterator[str]:
        with self._process.stdout as stdout:
            for line in stdout:
                line = line.rstrip("\n")
                if line:
                    yield parse_tool_line(line)

    def wait(self) -> bool:
        for _ in self._lines:
            pass
        return self._process.wait() == 0


def start_check(directory: Path, options: Options) -> CheckRun:
    if options.external_tool:
        return ExternalCheck(directory, options)
    return InternalCheck(directory, options)


def check_oneshot(directory: Path, options: Options) -> CheckOutcome:
    """Run a check procedure and collect every name it reports."""
    check = start_check(directory, options)
    failed_paths: List[str] = []
    for line in check.lines():
        logging.info(f"{directory}: {line}")
        failed_paths.append(line)
    return check.wait(), failed_paths


def check_with_progress(
    directory: Path,
    options: Options,
    presenter: ProgressPresenter,
    line: int,
) -> CheckOutcome:
    """Size pass, then hash pass, pushing a progress row update per entry."""
    state = ProgressState(line=line)
    label = str(directory)

    for entry in read_entries(directory, options.algorithm):
        size = file_size(directory / entry.path)
        if size is not None:
            state.total += size

    presenter.render(state.line, state.percent, label)

    failed_paths: List[str] = []
    for entry in read_entries(directory, options.algorithm):
        if not entry_matches(entry, directory, options):
            failed_paths.append(entry.path)
        size = file_size(directory / entry.path)
        if size is not None:
            state.processed += size
        presenter.render(state.line, state.percent, label)

    if failed_paths:
        presenter.message(state.line, "checked: FAILED", label)
    else:
        presenter.message(state.line, "checked: OK", label)
    return not failed_paths, failed_paths


def record_outcome(
    directory: Path,
    options: Options,
    store: CheckpointStore,
    succeeded: bool,
    failed_paths: List[str],
) -> None:
    """Checkpoint membership in subdirectory mode; failure log on any failure.

    The failure log is written before the directory joins ToCheck, so a
    directory listed there always has its log.
    """
    if succeeded:
        if options.subdir_mode:
            store.record_good(directory)
        logging.info(f"{directory}: checked: OK")
        return

    logging.info(f"Directory {directory} checked: FAILED")
    write_failure_log(directory, failed_paths, store.base_dir)
    if options.subdir_mode:
        store.record_bad(directory)


def verify_directory(
    directory: Path,
    options: Options,
    store: CheckpointStore,
    presenter: Optional[ProgressPresenter] = None,
    line: int = 1,
) -> DirectoryResult:
    """Check one directory and record the outcome."""
    logging.info(f"Verifying directory {directory}")
    status = None
    try:
        if options.loglevel_progress() and presenter is not None:
            succeeded, failed_paths = check_with_progress(directory, options, presenter, line)
        else:
            succeeded, failed_paths = check_oneshot(directory, options)
    except ChecksumFileUnavailable as exc:
        logging.info(f"Skipping directory {directory}: {exc}")
        if options.loglevel_progress() and presenter is not None:
            presenter.message(line, "checksum file unavailable", str(directory))
        return DirectoryResult(directory=directory, status=STATUS_SKIPPED, error=str(exc))
    except VerificationToolUnavailable as exc:
        logging.info(f"Directory {directory}: {exc}")
        succeeded, failed_paths = False, []
        status = STATUS_INDETERMINATE

    try:
        record_outcome(directory, options, store, succeeded, failed_paths)
    except OSError as exc:
        logging.error(f"Cannot record result of {directory}: {exc}")
        return DirectoryResult(
            directory=directory,
            status=STATUS_FAILED,
            failed_paths=failed_paths,
            error=str(exc),
        )

    if status is None:
        status = STATUS_OK if succeeded else STATUS_FAILED
    return DirectoryResult(directory=directory, status=status, failed_paths=failed_paths)


def verify_directories(
    options: Options,
    checkpoint_dir: Path = Path('.'),
    period: Optional[Period] = None,
    presenter: Optional[ProgressPresenter] = None,
) -> Dict[str, object]:
    """Verify the root folder, or each not yet resolved subdirectory in subdirectory mode."""
    run_started = int(time.time())
    presenter = presenter or ProgressPresenter()
    already_checked = 0

    with CheckpointStore(checkpoint_dir, period) as store:
        if options.subdir_mode:
            resolved = store.load()
            logging.debug(f"Already checked subdirs: {sorted(str(path) for path in resolved)}")
            candidates = gather_directories(options)
            tasks = store.filter(candidates)
            already_checked = len(candidates) - len(tasks)
            if already_checked:
                logging.info(f"Skipping {already_checked} directories already checked this month")
        else:
            tasks = [options.folder]

        if options.loglevel_progress():
            presenter.reserve(len(tasks))
        lines = [presenter.assign_line() for _ in tasks]

        if options.subdir_mode:
            line_of = dict(zip(tasks, lines))

            def operation(task: Path) -> DirectoryResult:
                return verify_directory(task, options, store, presenter, line_of[task])

            results: List[Optional[DirectoryResult]] = run_tasks(operation, tasks, options.workers)
        else:
            results = [verify_directory(options.folder, options, store, presenter, lines[0])]

    run_finished = int(time.time())
    details = summarize_results(tasks, results)
    stats = details.pop("stats")
    stats["already_checked"] = already_checked
    logging.info(
        f"Completed: directories={stats['directories']}, ok={stats['succeeded']}, "
        f"failed={stats['failed']}, indeterminate={stats['indeterminate']}, "
        f"skipped={stats['skipped']}, already checked={already_checked}"
    )
    details["checkpoint"] = {
        "known_good": str(store.known_good_path),
        "to_check": str(store.to_check_path),
    }
    return build_report(
        options=options,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode="verify",
        details=details,
    )
