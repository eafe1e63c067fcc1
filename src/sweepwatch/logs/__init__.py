from .facts import RunFacts, extract_completed_run, extract_subscription_stats, find_active_start_time
from .lines import LineKind, LogLine, SubscriptionStats, classify_line, classify_lines
from .window import LogTailSynchronizer, LogWindow, SyncMode, SyncResult

__all__ = [
    "LineKind",
    "LogLine",
    "LogTailSynchronizer",
    "LogWindow",
    "RunFacts",
    "SubscriptionStats",
    "SyncMode",
    "SyncResult",
    "classify_line",
    "classify_lines",
    "extract_completed_run",
    "extract_subscription_stats",
    "find_active_start_time",
]
