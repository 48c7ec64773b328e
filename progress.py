"""
Multi-row terminal progress for concurrent directory checks.

Every task owns one row, counted upward from the cursor's home position (the
line below the last reserved row). Renders save the cursor, move up to the
row, clear it, draw and restore the cursor, all under one lock.
"""

import sys
import threading
from dataclasses import dataclass
from typing import Optional, TextIO


BAR_WIDTH = 60
BASELINE_BYTES = 5

SAVE_CURSOR = "\x1b[s"
RESTORE_CURSOR = "\x1b[u"
CLEAR_LINE = "\x1b[2K"


def render_bar(percent: float) -> str:
    """Fixed-width bar: cell i is filled while i < BAR_WIDTH * fraction."""
    filled = BAR_WIDTH * percent / 100.0
    return "".join("#" if i < filled else "_" for i in range(BAR_WIDTH))


@dataclass
class ProgressState:
    """Byte counters of one directory check and its display row."""
    line: int
    total: int = BASELINE_BYTES
    processed: int = 0

    @property
    def percent(self) -> float:
        return self.processed / self.total * 100.0


class ProgressPresenter:
    """Serializes row updates from concurrent tasks onto one terminal stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()
        self._next_line = 1

    def assign_line(self) -> int:
        """Next display row; call once per task in enumeration order."""
        with self._lock:
            line = self._next_line
            self._next_line += 1
            return line

    def reserve(self, count: int) -> None:
        """Print blank rows for count tasks so every row exists on screen."""
        with self._lock:
            self.stream.write("\n" * count)
            self.stream.flush()

    def render(self, line: int, percent: float, label: str) -> None:
        self._draw(line, f"{label}: {percent:03.2f}% {render_bar(percent)}")

    def message(self, line: int, text: str, label: str) -> None:
        self._draw(line, f"{label}: {text}")

    def _draw(self, line: int, text: str) -> None:
        with self._lock:
            self.stream.write(f"{SAVE_CURSOR}\x1b[{line}A{CLEAR_LINE}{text}{RESTORE_CURSOR}")
            self.stream.flush()
