"""
Update command: hash the files of each directory and append them to its checksum file.
"""

import logging
import time
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from checksums import ChecksumEntry, append_entries
from common import (
    STATUS_SKIPPED,
    STATUS_UPDATED,
    ChecksumFileUnavailable,
    DirectoryResult,
    InaccessibleDirectory,
    Options,
    build_report,
    hash_file,
    iter_files,
    summarize_results,
)
from dispatch import gather_directories, run_tasks


def update_directory(directory: Path, options: Options) -> DirectoryResult:
    """Append one checksum line per candidate file of directory.

    Existing lines are never inspected, so updating an unchanged directory
    twice leaves every entry in the file twice.
    """
    try:
        files = iter_files(directory, options)
    except InaccessibleDirectory as exc:
        logging.warning(f"Skipping directory {directory}: {exc}")
        return DirectoryResult(directory=directory, status=STATUS_SKIPPED, error=str(exc))

    result = DirectoryResult(directory=directory, status=STATUS_UPDATED)

    def hashed_entries() -> Iterator[ChecksumEntry]:
        for relative_path in files:
            try:
                digest = hash_file(relative_path, directory, options)
            except OSError as exc:
                result.errors += 1
                logging.warning(f"Failed to hash {directory / relative_path}: {exc}")
                continue
            logging.info(f"{directory}: {digest}  {relative_path}")
            yield ChecksumEntry(digest=digest, path=relative_path)

    try:
        result.files_hashed = append_entries(directory, options.algorithm, hashed_entries())
    except ChecksumFileUnavailable as exc:
        logging.info(f"Skipping directory {directory}: {exc}")
        return DirectoryResult(directory=directory, status=STATUS_SKIPPED, error=str(exc))

    logging.info(f"Directory {directory} updated ({result.files_hashed} files)")
    return result


def update_directories(options: Options) -> Dict[str, object]:
    """Update the root folder, or each of its subdirectories in subdirectory mode."""
    run_started = int(time.time())

    if options.subdir_mode:
        tasks = gather_directories(options)
        for task in tasks:
            logging.info(f"Updating directory {task}")

        def operation(task: Path) -> DirectoryResult:
            return update_directory(task, options)

        results: List[Optional[DirectoryResult]] = run_tasks(operation, tasks, options.workers)
    else:
        tasks = [options.folder]
        results = [update_directory(options.folder, options)]

    run_finished = int(time.time())
    details = summarize_results(tasks, results)
    stats = details.pop("stats")
    logging.info(
        f"Completed: directories={stats['directories']}, updated={stats['succeeded']}, "
        f"skipped={stats['skipped']}, files hashed={stats['files_hashed']}, errors={stats['errors']}"
    )
    return build_report(
        options=options,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode="update",
        details=details,
    )
