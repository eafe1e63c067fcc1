# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Progress state reconciliation.

Merges the authoritative status snapshot with facts extracted from the log
window into one of five phases, and decides which surface is authoritative:

    idle / done  -> historical summary shown, progress hidden
    preparing    -> preparing line (subscription counts) shown, both others hidden
    running      -> progress shown, summary hidden
    finishing    -> progress shown with a fixed message, summary hidden

`ProgressReconciler` keeps the little state that must outlive a poll
(the cached last completed run, whether we were checking, when the run
started). `render_model()` is a pure function from its output to what the
rendering collaborator displays.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum

from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..core.types import Millis, TimestampMs
from ..logs.facts import RunFacts, extract_subscription_stats, find_active_start_time
from ..logs.lines import SubscriptionStats, classify_lines
from ..protocol.models import JobStatusSnapshot, LastCheck
from .eta import CALCULATING, BaselineRun, EtaReading
from .phase import FinishReason, Phase

LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class SummarySource(str, Enum):
    server = "server"  # lastCheck in the status snapshot
    log = "log"  # extracted from the log window
    local = "local"  # timestamped by us when checking flipped off


@dataclass(frozen=True)
class RunSummary:
    end_text: str
    duration_seconds: int
    total: int
    available: int
    source: SummarySource

    @classmethod
    def from_last_check(cls, lc: LastCheck) -> RunSummary:
        return cls(lc.time, lc.duration_seconds, lc.total, lc.available, SummarySource.server)

    @classmethod
    def from_facts(cls, facts: RunFacts) -> RunSummary:
        return cls(facts.end_text, facts.duration_seconds, facts.total_nodes, facts.available_nodes, SummarySource.log)


@dataclass(frozen=True)
class PhaseFacts:
    phase: Phase
    processed: int
    total: int
    available: int
    finish_reason: FinishReason | None = None
    summary: RunSummary | None = None
    preparing: SubscriptionStats | None = None
    run_start_ms: TimestampMs | None = None
    # Start of node probing according to the log (None when unknown).
    server_start_ms: TimestampMs | None = None


def finish_reason(snap: JobStatusSnapshot) -> FinishReason | None:
    if snap.processing_results:
        return FinishReason.saving_results
    if snap.force_close:
        return FinishReason.stopping
    if snap.success_limited:
        return FinishReason.limit_reached
    return None


class ProgressReconciler:
    def __init__(
        self,
        *,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
        freshness_ms: Millis = 5000,
    ) -> None:
        self.clock: Clock = clock or SystemClock()
        self.tz = tz
        self.freshness_ms = freshness_ms
        self.last_completed_run: RunFacts | None = None
        self._was_checking = False
        self._seen_snapshot = False
        self._prev_last_check: LastCheck | None = None
        self._run_start_ms: TimestampMs | None = None
        self._local_summary: RunSummary | None = None
        self.log = get_logger("progress.reconciler")

    # ---- facts fed from the log channel

    def remember_completed_run(self, facts: RunFacts) -> None:
        if facts == self.last_completed_run:
            return
        self.last_completed_run = facts
        self._local_summary = None
        self.log.info(
            "reconciler.completed_run",
            event="reconciler.completed_run",
            end=facts.end_text,
            duration_s=facts.duration_seconds,
            total=facts.total_nodes,
            available=facts.available_nodes,
        )

    def mark_run_started(self) -> None:
        """A start action was issued; use now as the local run start."""
        self._run_start_ms = self.clock.now_ms()

    def baseline(self) -> BaselineRun | None:
        if self.last_completed_run is not None:
            f = self.last_completed_run
            return BaselineRun(total=f.total_nodes, duration_seconds=f.duration_seconds)
        if self._prev_last_check is not None:
            lc = self._prev_last_check
            return BaselineRun(total=lc.total, duration_seconds=lc.duration_seconds)
        return None

    # ---- reconciliation

    def reconcile(self, snap: JobStatusSnapshot, window: Sequence[str]) -> PhaseFacts:
        now = self.clock.now_ms()
        flipped = self._was_checking and not snap.checking
        base = {
            "processed": snap.processed_count,
            "total": snap.total_count,
            "available": snap.available_count,
        }

        if snap.checking:
            lines = classify_lines(list(window), self.tz)
            server_start = find_active_start_time(lines)
            if server_start is not None:
                self._run_start_ms = server_start
            elif self._run_start_ms is None:
                self._run_start_ms = now

            reason = finish_reason(snap)
            if reason is not None:
                out = PhaseFacts(Phase.finishing, finish_reason=reason, **base)
            elif snap.processed_count == 0:
                stats = extract_subscription_stats(lines, now_ms=now, freshness_ms=self.freshness_ms)
                out = PhaseFacts(Phase.preparing, preparing=stats, **base)
            else:
                out = PhaseFacts(Phase.running, **base)
            out = _with_start(out, self._run_start_ms, server_start)
        else:
            phase, summary = self._settled(snap, flipped, now)
            out = PhaseFacts(phase, summary=summary, **base)
            if flipped:
                self._run_start_ms = None

        if out.phase is Phase.done:
            self.log.info("reconciler.done", event="reconciler.done", source=out.summary and out.summary.source.value)

        self._was_checking = snap.checking
        self._seen_snapshot = True
        if snap.last_check is not None:
            self._prev_last_check = snap.last_check
        return out

    def _settled(self, snap: JobStatusSnapshot, flipped: bool, now: TimestampMs) -> tuple[Phase, RunSummary | None]:
        lc = snap.last_check
        if lc is not None:
            fresh = flipped or (self._seen_snapshot and lc != self._prev_last_check)
            self._local_summary = None
            return (Phase.done if fresh else Phase.idle), RunSummary.from_last_check(lc)

        cached = self.last_completed_run
        if flipped and cached is not None:
            if self._run_start_ms is not None:
                duration = max(0, round((now - self._run_start_ms) / 1000))
            else:
                duration = cached.duration_seconds
            self._local_summary = RunSummary(
                end_text=self._now_text(),
                duration_seconds=duration,
                total=snap.total_count or cached.total_nodes,
                available=snap.available_count or cached.available_nodes,
                source=SummarySource.local,
            )
            return Phase.done, self._local_summary

        if self._local_summary is not None:
            return Phase.idle, self._local_summary
        if cached is not None:
            return Phase.idle, RunSummary.from_facts(cached)
        return Phase.idle, None

    def _now_text(self) -> str:
        dt = self.clock.now_dt()
        dt = dt.astimezone(self.tz) if self.tz is not None else dt.astimezone()
        return dt.strftime(LOG_TIME_FORMAT)


def _with_start(facts: PhaseFacts, run_start: TimestampMs | None, server_start: TimestampMs | None) -> PhaseFacts:
    return PhaseFacts(
        facts.phase,
        processed=facts.processed,
        total=facts.total,
        available=facts.available,
        finish_reason=facts.finish_reason,
        summary=facts.summary,
        preparing=facts.preparing,
        run_start_ms=run_start,
        server_start_ms=server_start,
    )


# --------------------------------------------------------------------------- #
# Render model
# --------------------------------------------------------------------------- #

STATUS_UNAVAILABLE = "status unavailable"


@dataclass(frozen=True)
class RenderModel:
    phase: Phase
    status_text: str
    progress_visible: bool
    summary_visible: bool
    preparing_visible: bool
    percent: float
    processed: int
    total: int
    available: int
    eta_text: str = ""
    eta_seconds: float | None = None
    summary: RunSummary | None = None
    summary_duration_text: str = ""
    summary_total_text: str = ""
    preparing: SubscriptionStats | None = None
    preparing_text: str = ""
    elapsed_seconds: int | None = None
    stale: bool = False

    @property
    def percent_text(self) -> str:
        return f"{self.percent:.1f}%"


def format_summary_duration(seconds: int) -> str:
    if seconds >= 3600:
        return f"{seconds // 60}m"
    if seconds >= 60:
        return f"{seconds // 60}m{seconds % 60}s"
    return f"{seconds}s"


def format_count(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 10_000:
        return f"{n / 1000:.1f}k"
    return str(n)


def format_preparing(stats: SubscriptionStats | None) -> str:
    if stats is None:
        return "waiting for data…"
    items = [f"{label}: {v}" for label, v in (("local", stats.local), ("remote", stats.remote), ("history", stats.history)) if v is not None]
    if stats.total is not None:
        dup = stats.duplicates
        items.append(f"total: {stats.total}" + (f" [deduplicated: {dup}]" if dup else ""))
    return " | ".join(items) if items else "analyzing log…"


def _status_text(facts: PhaseFacts, eta: EtaReading) -> str:
    phase = facts.phase
    if phase is Phase.idle:
        return "idle"
    if phase is Phase.done:
        return "check completed"
    if phase is Phase.preparing:
        return "fetching subscriptions…"
    if phase is Phase.finishing:
        return eta.text
    if eta.text == CALCULATING:
        return "started, estimating remaining time…"
    if not eta.text:
        return "saving results…"
    return f"running, about {eta.text} left"


def render_model(facts: PhaseFacts, eta: EtaReading, *, now_ms: TimestampMs, stale: bool = False) -> RenderModel:
    """Pure projection of reconciled facts onto display fields."""
    phase = facts.phase
    percent = min(100.0, facts.processed / facts.total * 100) if facts.total > 0 else 0.0
    progress_visible = phase in (Phase.running, Phase.finishing)
    preparing_visible = phase is Phase.preparing
    summary_visible = not progress_visible and not preparing_visible
    summary = facts.summary if summary_visible else None
    elapsed = None
    if phase.checking and facts.run_start_ms is not None:
        elapsed = max(0, (now_ms - facts.run_start_ms) // 1000)

    return RenderModel(
        phase=phase,
        status_text=STATUS_UNAVAILABLE if stale else _status_text(facts, eta),
        progress_visible=progress_visible,
        summary_visible=summary_visible,
        preparing_visible=preparing_visible,
        percent=round(percent, 1),
        processed=facts.processed,
        total=facts.total,
        available=facts.available,
        eta_text=eta.text,
        eta_seconds=eta.seconds,
        summary=summary,
        summary_duration_text=format_summary_duration(summary.duration_seconds) if summary else "",
        summary_total_text=format_count(summary.total) if summary else "",
        preparing=facts.preparing if preparing_visible else None,
        preparing_text=format_preparing(facts.preparing) if preparing_visible else "",
        elapsed_seconds=elapsed,
        stale=stale,
    )
