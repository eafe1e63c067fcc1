"""
Log tail synchronization.

The server only ever hands out "the last N lines". Each fetch is compared
against the window we already hold so the renderer can append a small delta
instead of redrawing everything:

    old:  a b c          new:  a b c d e    -> incremental, delta [d, e]
    old:  a b c          new:  a b c        -> unchanged
    old:  a b c          new:  b c d        -> replace (rotation / eviction)

The prefix test works on the newline-joined text. It is linear in the window
size, which is bounded by the capacity.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import tzinfo
from enum import Enum

from ..core.log import get_logger
from .lines import LineKind, classify_line

SEP = "\n"


class SyncMode(str, Enum):
    initial = "initial"
    unchanged = "unchanged"
    incremental = "incremental"
    replace = "replace"


@dataclass(frozen=True)
class SyncResult:
    mode: SyncMode
    lines: list[str]
    delta: list[str] = field(default_factory=list)
    # A completion marker showed up in the new data; completed-run facts
    # should be re-extracted.
    completion_seen: bool = False

    @property
    def full_render(self) -> bool:
        return self.mode in (SyncMode.initial, SyncMode.replace)


class LogWindow:
    """Bounded, oldest-first sequence of lines; the oldest lines are evicted on append."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._lines: deque[str] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(self._lines)

    def lines(self) -> list[str]:
        return list(self._lines)

    def joined(self) -> str:
        return SEP.join(self._lines)

    def extend(self, lines: list[str]) -> None:
        self._lines.extend(lines)

    def replace(self, lines: list[str]) -> None:
        self._lines.clear()
        self._lines.extend(lines[-self.capacity :])

    def clear(self) -> None:
        self._lines.clear()


class LogTailSynchronizer:
    """Owns the `LogWindow`; decides incremental append vs. full replace per fetch."""

    def __init__(self, capacity: int = 1000, *, tz: tzinfo | None = None) -> None:
        self.window = LogWindow(capacity)
        self.tz = tz
        self.log = get_logger("logs.sync")

    def _has_completion(self, lines: list[str]) -> bool:
        return any(classify_line(line, self.tz).kind is LineKind.COMPLETION for line in lines)

    def sync(self, fetched: list[str]) -> SyncResult:
        # A single payload item may itself contain newlines.
        flat = [part for item in fetched for part in item.split(SEP)]
        tail = flat[-self.window.capacity :]

        if not len(self.window):
            self.window.replace(tail)
            return SyncResult(SyncMode.initial, self.window.lines(), completion_seen=self._has_completion(tail))

        old = self.window.joined()
        new = SEP.join(tail)

        if new == old:
            return SyncResult(SyncMode.unchanged, self.window.lines())

        if len(new) > len(old) and new.startswith(old) and new[len(old)] == SEP:
            added = [s for s in new[len(old) + 1 :].split(SEP) if s != ""]
            # tail == old lines + new lines here; blank lines stay in the window
            # but are not worth appending to a view.
            self.window.extend(tail[len(self.window) :])
            return SyncResult(
                SyncMode.incremental,
                self.window.lines(),
                delta=added,
                completion_seen=self._has_completion(added),
            )

        self.log.debug(
            "logs.sync.replace", event="logs.sync.replace", old_lines=len(self.window), new_lines=len(tail)
        )
        self.window.replace(tail)
        return SyncResult(SyncMode.replace, self.window.lines(), completion_seen=self._has_completion(tail))

    def reset(self) -> None:
        self.window.clear()
