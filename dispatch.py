"""
Task dispatch: run one operation per directory, unbounded or on a fixed pool.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from common import Options


T = TypeVar("T")


def gather_directories(options: Options) -> List[Path]:
    """Immediate child directories of the root folder, sorted by name."""
    try:
        with os.scandir(options.folder) as entries:
            dirs = [
                Path(entry.path)
                for entry in entries
                if entry.is_dir(follow_symlinks=False)
            ]
    except OSError as exc:
        logging.error(f"Cannot read root folder {options.folder}: {exc}")
        return []
    return sorted(dirs)


def run_isolated(operation: Callable[[Path], T], task: Path) -> Optional[T]:
    """Run one task; an exception ends only this task."""
    try:
        return operation(task)
    except Exception as exc:
        logging.error(f"Directory {task} aborted: {exc!r}")
        return None


def _run_unbounded(operation: Callable[[Path], T], tasks: Sequence[Path]) -> List[Optional[T]]:
    results: List[Optional[T]] = [None] * len(tasks)

    def work(index: int, task: Path) -> None:
        results[index] = run_isolated(operation, task)

    threads = [
        threading.Thread(target=work, args=(index, task), name=f"sumtree-{index}")
        for index, task in enumerate(tasks)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


def _run_pooled(operation: Callable[[Path], T], tasks: Sequence[Path], workers: int) -> List[Optional[T]]:
    logging.info(f"Using {workers} worker threads for {len(tasks)} directories")
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sumtree") as executor:
        futures = [executor.submit(run_isolated, operation, task) for task in tasks]
        return [future.result() for future in futures]


def run_tasks(operation: Callable[[Path], T], tasks: Sequence[Path], workers: int) -> List[Optional[T]]:
    """Run operation on every task and wait for all of them.

    workers == 0 starts one thread per task at once; workers > 0 runs a pool
    of exactly that many threads. Results come back in task order, None for
    a task that raised.
    """
    if workers < 0:
        raise ValueError(f"Worker count must not be negative: {workers}")
    if not tasks:
        return []
    if workers == 0:
        return _run_unbounded(operation, tasks)
    return _run_pooled(operation, tasks, workers)
