from __future__ import annotations

"""
sweepwatch.logs.facts
=====================

Backward (newest-first) scans over a classified log window.

- `extract_completed_run`: facts of the most recently *completed* run.
  All-or-nothing: either every field is known or the result is None.
- `extract_subscription_stats`: subscription counts of the run in progress,
  used while the job is still preparing.
- `find_active_start_time`: when node probing of the current run began.

A run in the server log reads, oldest to newest:

    TRIGGER -> TASK_START -> SUBSCRIPTION_TOTALS -> TOTAL_COUNT
            -> PROBE_START -> AVAILABLE_COUNT -> COMPLETION
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo

from ..core.types import Millis, TimestampMs
from .lines import LineKind, LogLine, SubscriptionStats, classify_lines


@dataclass(frozen=True)
class RunFacts:
    """A completed run, recovered from the log."""

    start_ms: TimestampMs
    end_ms: TimestampMs
    end_text: str
    total_nodes: int
    available_nodes: int

    @property
    def duration_seconds(self) -> int:
        return max(0, round((self.end_ms - self.start_ms) / 1000))


def _classified(lines: Sequence[str] | Sequence[LogLine], tz: tzinfo | None) -> list[LogLine]:
    if lines and isinstance(lines[0], LogLine):
        return list(lines)  # type: ignore[arg-type]
    return classify_lines(list(lines), tz)  # type: ignore[arg-type]


def extract_completed_run(lines: Sequence[str] | Sequence[LogLine], *, tz: tzinfo | None = None) -> RunFacts | None:
    """
    Walk back from the newest line:
      1. the first timestamped COMPLETION fixes the end;
      2. then the next AVAILABLE_COUNT;
      3. then the next TOTAL_COUNT;
      4. then a timestamped TRIGGER/TASK_START fixes the start and ends the scan.

    Meeting another COMPLETION, or a start marker before step 4, means the
    markers would come from two different runs: no facts.
    """
    end_ms: TimestampMs | None = None
    end_text = ""
    available: int | None = None
    total: int | None = None

    for ln in reversed(_classified(lines, tz)):
        if end_ms is None:
            if ln.kind is LineKind.COMPLETION and ln.timestamp_ms is not None:
                end_ms = ln.timestamp_ms
                end_text = ln.timestamp_text or ""
            continue

        if ln.kind is LineKind.COMPLETION:
            return None

        if available is None:
            if ln.kind is LineKind.AVAILABLE_COUNT:
                available = ln.count
            elif ln.kind.is_run_start:
                return None
            continue

        if total is None:
            if ln.kind is LineKind.TOTAL_COUNT:
                total = ln.count
            elif ln.kind.is_run_start:
                return None
            continue

        if ln.kind.is_run_start and ln.timestamp_ms is not None:
            return RunFacts(
                start_ms=ln.timestamp_ms,
                end_ms=end_ms,
                end_text=end_text,
                total_nodes=total,
                available_nodes=available,
            )

    return None


def extract_subscription_stats(
    lines: Sequence[str] | Sequence[LogLine],
    *,
    now_ms: TimestampMs,
    freshness_ms: Millis = 5000,
    tz: tzinfo | None = None,
) -> SubscriptionStats | None:
    """
    Subscription counts of the current run, or None.

    A totals line belongs to the current run when either
      (a) further back, a start marker comes before any completion, or
      (b) its own timestamp is at most `freshness_ms` old (covers windows
          where the start marker was already evicted).
    Meeting a start marker before any totals line means the run has not
    reported its counts yet.
    """
    classified = _classified(lines, tz)
    for i in range(len(classified) - 1, -1, -1):
        ln = classified[i]
        if ln.kind is LineKind.SUBSCRIPTION_TOTALS:
            if _opened_by_start(classified, i) or _is_fresh(ln, now_ms, freshness_ms):
                return ln.stats
            return None
        if ln.kind.is_any_start:
            return None
    return None


def _opened_by_start(classified: list[LogLine], idx: int) -> bool:
    for j in range(idx - 1, -1, -1):
        kind = classified[j].kind
        if kind.is_any_start:
            return True
        if kind is LineKind.COMPLETION:
            return False
    return False


def _is_fresh(ln: LogLine, now_ms: TimestampMs, freshness_ms: Millis) -> bool:
    return ln.timestamp_ms is not None and now_ms - ln.timestamp_ms <= freshness_ms


def find_active_start_time(lines: Sequence[str] | Sequence[LogLine], *, tz: tzinfo | None = None) -> TimestampMs | None:
    """
    Start of node probing for the run in progress. None when the newest
    relevant marker is a completion (nothing running) or a task start
    (probing has not begun).
    """
    for ln in reversed(_classified(lines, tz)):
        if ln.kind in (LineKind.COMPLETION, LineKind.TASK_START):
            return None
        if ln.kind is LineKind.PROBE_START and ln.timestamp_ms is not None:
            return ln.timestamp_ms
    return None
