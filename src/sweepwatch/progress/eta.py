from __future__ import annotations

"""
sweepwatch.progress.eta
=======================

Remaining-time estimation for a running sweep.

Rate model:
- early on (few samples, or below the blend threshold) the global average
  `processed / elapsed` is used; later a trailing-window rate reflects
  current throughput;
- when the previous completed run gives a baseline rate, the two are
  blended: below the threshold a real-time rate faster than the baseline is
  not trusted; above it the real-time weight grows linearly from
  `min_weight` to 1 at 100 %.

The text is recomputed at most once per `refresh_ms` and cached in between
so the display does not jitter.
"""

from collections import deque
from dataclasses import dataclass, field

from ..core.time import Clock, SystemClock
from ..core.types import Millis, TimestampMs
from .phase import FinishReason, Phase

CALCULATING = "calculating…"
SAVING_RESULTS = "saving results…"
STOPPING = "stopping…"
LIMIT_REACHED = "limit reached, finishing…"
UNKNOWN = "..."

FINISH_TEXT: dict[FinishReason, str] = {
    FinishReason.saving_results: SAVING_RESULTS,
    FinishReason.stopping: STOPPING,
    FinishReason.limit_reached: LIMIT_REACHED,
}


@dataclass(frozen=True)
class EtaTuning:
    warmup_ms: Millis = 3000
    refresh_ms: Millis = 1000
    sample_ms: Millis = 500
    window_ms: Millis = 60_000
    start_tolerance_ms: Millis = 1000
    blend_threshold_pct: float = 15.0
    min_weight: float = 0.3


@dataclass(frozen=True)
class BaselineRun:
    """Previous completed run used to derive a historical rate."""

    total: int
    duration_seconds: float

    @property
    def rate(self) -> float:
        if self.total > 0 and self.duration_seconds > 0:
            return self.total / self.duration_seconds
        return 0.0


@dataclass(frozen=True)
class EtaReading:
    text: str
    seconds: float | None = None


@dataclass
class EtaState:
    running: bool = False
    start_ms: TimestampMs = 0
    last_ui_update_ms: TimestampMs = 0
    last_sample_ms: TimestampMs = 0
    samples: deque[tuple[TimestampMs, int]] = field(default_factory=deque)
    cached_text: str = ""
    cached_seconds: float | None = None
    baseline_rate: float = 0.0


def format_duration(seconds: float | None) -> str:
    if seconds is None or seconds <= 0:
        return UNKNOWN
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{round(seconds / 60)}m"
    h = int(seconds // 3600)
    m = round((seconds % 3600) / 60)
    return f"{h}h {m}m"


def blend_weight(pct: float, *, threshold_pct: float = 15.0, min_weight: float = 0.3) -> float:
    """Real-time weight at `pct` % completion (only meaningful at or above the threshold)."""
    w = min_weight + (pct - threshold_pct) / (100.0 - threshold_pct) * (1.0 - min_weight)
    return min(1.0, max(0.0, w))


class EtaEstimator:
    def __init__(self, *, clock: Clock | None = None, tuning: EtaTuning | None = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self.tuning = tuning or EtaTuning()
        self.state = EtaState()

    # ---- lifecycle

    def reset(self, *, start_ms: TimestampMs, baseline: BaselineRun | None) -> None:
        st = self.state
        st.running = True
        st.start_ms = start_ms
        st.last_ui_update_ms = 0
        st.samples = deque([(start_ms, 0)])
        st.cached_text = CALCULATING
        st.cached_seconds = None
        st.baseline_rate = baseline.rate if baseline is not None else 0.0

    def clear(self) -> None:
        st = self.state
        st.running = False
        st.start_ms = 0
        st.samples.clear()
        st.cached_text = ""
        st.cached_seconds = None

    # ---- per tick

    def update(
        self,
        *,
        total: int,
        processed: int,
        phase: Phase,
        finish_reason: FinishReason | None = None,
        server_start_ms: TimestampMs | None = None,
        baseline: BaselineRun | None = None,
    ) -> EtaReading:
        st = self.state
        now = self.clock.now_ms()
        total = max(0, int(total))
        processed = max(0, int(processed))

        if not phase.checking:
            self.clear()
            return EtaReading("")

        corrected = (
            server_start_ms is not None and abs(st.start_ms - server_start_ms) > self.tuning.start_tolerance_ms
        )
        if not st.running or processed == 0 or corrected:
            self.reset(start_ms=server_start_ms if server_start_ms is not None else now, baseline=baseline)

        self._record(now, processed)

        if finish_reason is not None:
            st.cached_text = FINISH_TEXT[finish_reason]
            st.cached_seconds = None
            return EtaReading(st.cached_text)

        if phase is Phase.preparing:
            return EtaReading(CALCULATING)

        if total <= 0 or processed >= total:
            return EtaReading("")

        elapsed = now - st.start_ms
        if elapsed < self.tuning.warmup_ms:
            st.cached_text = CALCULATING
            return EtaReading(CALCULATING)

        if now - st.last_ui_update_ms > self.tuning.refresh_ms:
            rate = self.final_rate(total=total, processed=processed, now_ms=now)
            if rate > 0:
                st.cached_seconds = (total - processed) / rate
                st.cached_text = format_duration(st.cached_seconds)
            st.last_ui_update_ms = now

        return EtaReading(st.cached_text, st.cached_seconds)

    # ---- internals

    def _record(self, now: TimestampMs, processed: int) -> None:
        st = self.state
        if now - st.last_sample_ms <= self.tuning.sample_ms:
            return
        st.samples.append((now, processed))
        st.last_sample_ms = now
        threshold = now - self.tuning.window_ms
        while st.samples and st.samples[0][0] < threshold:
            st.samples.popleft()

    def real_time_rate(self, *, total: int, processed: int, now_ms: TimestampMs) -> float:
        st = self.state
        pct = _percent(processed, total)
        if len(st.samples) <= 1 or pct < self.tuning.blend_threshold_pct:
            elapsed_s = (now_ms - st.start_ms) / 1000
            return processed / elapsed_s if elapsed_s > 0 else 0.0
        t0, c0 = st.samples[0]
        win_s = (now_ms - t0) / 1000
        return (processed - c0) / win_s if win_s > 0 else 0.0

    def final_rate(self, *, total: int, processed: int, now_ms: TimestampMs) -> float:
        st = self.state
        real = self.real_time_rate(total=total, processed=processed, now_ms=now_ms)
        hist = st.baseline_rate
        if hist <= 0:
            return real
        pct = _percent(processed, total)
        if pct < self.tuning.blend_threshold_pct:
            # An early speed-up is usually warm-up noise; an early slowdown is real.
            return hist if real > hist else real
        w = blend_weight(pct, threshold_pct=self.tuning.blend_threshold_pct, min_weight=self.tuning.min_weight)
        return real * w + hist * (1 - w)


def _percent(processed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, processed / total * 100)
