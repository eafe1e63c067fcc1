from __future__ import annotations

"""
sweepwatch.logs.lines
=====================

Classification of raw server log lines into a closed set of kinds.

The server writes free text; the extractors in `logs.facts` only ever look
at `LogLine.kind` and the values parsed here, never at raw text. Both the
server's native (Chinese) markers and English equivalents are recognised.

Example lines:
    2025-01-02 10:00:00 INFO 手动触发检测
    2025-01-02 10:00:01 INFO 订阅链接数量 本地=66 远程=24 历史=2 总计=90
    2025-01-02 10:00:04 INFO 去重后节点数量: 1200
    2025-01-02 10:00:04 INFO 开始检测节点
    2025-01-02 10:09:30 INFO 可用节点数量: 315
    2025-01-02 10:09:31 INFO 检测完成
"""

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum
from functools import lru_cache

from ..core.types import TimestampMs


class LineKind(str, Enum):
    TRIGGER = "trigger"  # manual trigger of a run
    TASK_START = "task_start"  # check task started
    PROBE_START = "probe_start"  # node probing started (progress counts from here)
    COMPLETION = "completion"
    AVAILABLE_COUNT = "available_count"
    TOTAL_COUNT = "total_count"  # nodes after deduplication
    SUBSCRIPTION_TOTALS = "subscription_totals"
    OTHER = "other"

    @property
    def is_run_start(self) -> bool:
        """Markers that open a run (used for completed-run facts)."""
        return self in (LineKind.TRIGGER, LineKind.TASK_START)

    @property
    def is_any_start(self) -> bool:
        return self in (LineKind.TRIGGER, LineKind.TASK_START, LineKind.PROBE_START)


@dataclass(frozen=True)
class SubscriptionStats:
    local: int | None = None
    remote: int | None = None
    history: int | None = None
    total: int | None = None

    @property
    def duplicates(self) -> int:
        """How many subscription URLs were dropped as duplicates (0 if unknown)."""
        if self.total is None:
            return 0
        parts = sum(x or 0 for x in (self.local, self.remote, self.history))
        return max(0, parts - self.total)


@dataclass(frozen=True)
class LogLine:
    kind: LineKind
    text: str
    timestamp_ms: TimestampMs | None = None
    timestamp_text: str | None = None
    count: int | None = None
    stats: SubscriptionStats | None = None


_ANSI = re.compile(r"\x1b\[[\d;]*m")
_TS = re.compile(r"^(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2})")

# Order matters: the first matching pattern wins.
_COMPLETION = re.compile(r"检测完成|check completed?\b", re.IGNORECASE)
_TASK_START = re.compile(r"启动检测任务|starting check task", re.IGNORECASE)
_TRIGGER = re.compile(r"手动触发检测|manual[- ]trigger", re.IGNORECASE)
_PROBE_START = re.compile(r"开始检测|starting node checks", re.IGNORECASE)
_AVAILABLE = re.compile(r"(?:可用节点数量|available nodes):\s*(\d+)", re.IGNORECASE)
_TOTAL = re.compile(r"(?:去重后节点数量|deduplicated nodes):\s*(\d+)", re.IGNORECASE)
_SUBS = re.compile(r"(?:订阅链接数量|订阅数量|subscription totals)", re.IGNORECASE)
_SUBS_TOTAL_KEY = re.compile(r"总计|total", re.IGNORECASE)

_SUB_LOCAL = re.compile(r"(?:本地|local)=(\d+)", re.IGNORECASE)
_SUB_REMOTE = re.compile(r"(?:远程|remote)=(\d+)", re.IGNORECASE)
_SUB_HISTORY = re.compile(r"(?:历史|history)=(\d+)", re.IGNORECASE)
_SUB_TOTAL = re.compile(r"(?:总计|total)[^=\s]*=(\d+)", re.IGNORECASE)
_SUB_DEDUP = re.compile(r"(?:去重|dedup)=(\d+)", re.IGNORECASE)


def strip_ansi(line: str) -> str:
    return _ANSI.sub("", line)


def parse_log_time(text: str, tz: tzinfo | None = None) -> TimestampMs | None:
    """Parse a `YYYY-MM-DD HH:MM:SS` stamp; `tz=None` means host local time."""
    try:
        dt = datetime.strptime(text.replace("T", " "), "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    if tz is not None:
        dt = dt.replace(tzinfo=tz)
    return int(dt.timestamp() * 1000)


def _int(rx: re.Pattern[str], s: str) -> int | None:
    m = rx.search(s)
    return int(m.group(1)) if m else None


def _subscription_stats(s: str) -> SubscriptionStats:
    total = _int(_SUB_TOTAL, s)
    if total is None:
        total = _int(_SUB_DEDUP, s)
    return SubscriptionStats(
        local=_int(_SUB_LOCAL, s),
        remote=_int(_SUB_REMOTE, s),
        history=_int(_SUB_HISTORY, s),
        total=total,
    )


def _kind_of(s: str) -> tuple[LineKind, int | None, SubscriptionStats | None]:
    if _COMPLETION.search(s):
        return LineKind.COMPLETION, None, None
    if _TASK_START.search(s):
        return LineKind.TASK_START, None, None
    if _TRIGGER.search(s):
        return LineKind.TRIGGER, None, None
    m = _AVAILABLE.search(s)
    if m:
        return LineKind.AVAILABLE_COUNT, int(m.group(1)), None
    m = _TOTAL.search(s)
    if m:
        return LineKind.TOTAL_COUNT, int(m.group(1)), None
    if _SUBS.search(s) and _SUBS_TOTAL_KEY.search(s):
        return LineKind.SUBSCRIPTION_TOTALS, None, _subscription_stats(s)
    if _PROBE_START.search(s):
        return LineKind.PROBE_START, None, None
    return LineKind.OTHER, None, None


@lru_cache(maxsize=4096)
def classify_line(line: str, tz: tzinfo | None = None) -> LogLine:
    """Classify one raw log line. Pure; cached because windows are re-scanned often."""
    s = strip_ansi(line)
    kind, count, stats = _kind_of(s)
    ts_text = ts_ms = None
    m = _TS.match(s.lstrip())
    if m:
        ts_text = m.group(1).replace("T", " ")
        ts_ms = parse_log_time(ts_text, tz)
    return LogLine(kind=kind, text=s, timestamp_ms=ts_ms, timestamp_text=ts_text, count=count, stats=stats)


def classify_lines(lines: list[str], tz: tzinfo | None = None) -> list[LogLine]:
    return [classify_line(line, tz) for line in lines]
