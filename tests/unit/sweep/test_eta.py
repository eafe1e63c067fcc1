"""
Remaining-time estimation: warm-up, blending with the previous run, caching.
"""

from __future__ import annotations

import pytest

from sweepwatch.core.time import ManualClock
from sweepwatch.progress.eta import (
    CALCULATING,
    LIMIT_REACHED,
    SAVING_RESULTS,
    STOPPING,
    BaselineRun,
    EtaEstimator,
    blend_weight,
    format_duration,
)
from sweepwatch.progress.phase import FinishReason, Phase
from tests.helpers import T0

pytestmark = [pytest.mark.unit]


@pytest.fixture
def est(clock: ManualClock) -> EtaEstimator:
    return EtaEstimator(clock=clock)


def test_preparing_shows_calculating(est):
    r = est.update(total=100, processed=0, phase=Phase.preparing)
    assert r.text == CALCULATING
    assert r.seconds is None


def test_blends_real_time_rate_with_previous_run(est, clock):
    clock.set(T0 + 10_000)
    r = est.update(
        total=100,
        processed=50,
        phase=Phase.running,
        server_start_ms=T0,
        baseline=BaselineRun(total=200, duration_seconds=20),
    )
    # real-time 5/s, baseline 10/s, w ~= 0.588 -> ~7.06/s -> ~7.08 s left
    assert r.text == "7s"
    assert r.seconds == pytest.approx(50 / (5 * 0.58824 + 10 * 0.41176), rel=1e-3)


def test_warmup_shows_calculating(est, clock):
    clock.set(T0 + 2000)
    r = est.update(total=100, processed=10, phase=Phase.running, server_start_ms=T0)
    assert r.text == CALCULATING


@pytest.mark.parametrize(
    "baseline",
    [None, BaselineRun(total=1000, duration_seconds=50), BaselineRun(total=1000, duration_seconds=200)],
    ids=["no-history", "faster-history", "slower-history"],
)
def test_estimate_strictly_decreases_at_constant_rate(est, clock, baseline):
    seen: list[float] = []
    k = 1
    while True:
        clock.set(T0 + 1100 * k)
        processed = 11 * k  # 10 items/s
        if processed >= 1000:
            break
        r = est.update(
            total=1000, processed=processed, phase=Phase.running, server_start_ms=T0, baseline=baseline
        )
        if r.seconds is not None:
            seen.append(r.seconds)
        k += 1
    assert len(seen) > 50
    assert all(b < a for a, b in zip(seen, seen[1:], strict=False))


def test_text_is_cached_between_refreshes(est, clock):
    clock.set(T0 + 10_000)
    first = est.update(total=100, processed=50, phase=Phase.running, server_start_ms=T0)
    clock.set(T0 + 10_500)
    second = est.update(total=100, processed=90, phase=Phase.running, server_start_ms=T0)
    assert second == first
    clock.set(T0 + 11_100)
    third = est.update(total=100, processed=90, phase=Phase.running, server_start_ms=T0)
    assert third.seconds is not None and third.seconds < first.seconds


@pytest.mark.parametrize(
    "reason,text",
    [
        (FinishReason.saving_results, SAVING_RESULTS),
        (FinishReason.stopping, STOPPING),
        (FinishReason.limit_reached, LIMIT_REACHED),
    ],
)
def test_finishing_uses_fixed_text(est, clock, reason, text):
    clock.set(T0 + 30_000)
    r = est.update(total=100, processed=60, phase=Phase.finishing, finish_reason=reason, server_start_ms=T0)
    assert r.text == text
    assert r.seconds is None


def test_idle_and_done_clear_the_state(est, clock):
    clock.set(T0 + 10_000)
    est.update(total=100, processed=50, phase=Phase.running, server_start_ms=T0)
    assert est.state.running
    assert est.update(total=100, processed=50, phase=Phase.done).text == ""
    assert not est.state.running
    assert est.update(total=0, processed=0, phase=Phase.idle).text == ""


def test_server_start_correction_resets(est, clock):
    clock.set(T0 + 10_000)
    est.update(total=100, processed=50, phase=Phase.running, server_start_ms=T0)
    assert est.state.start_ms == T0
    # within tolerance: kept
    est.update(total=100, processed=51, phase=Phase.running, server_start_ms=T0 + 900)
    assert est.state.start_ms == T0
    est.update(total=100, processed=52, phase=Phase.running, server_start_ms=T0 + 5000)
    assert est.state.start_ms == T0 + 5000


def test_all_processed_shows_nothing(est, clock):
    clock.set(T0 + 10_000)
    assert est.update(total=100, processed=100, phase=Phase.running, server_start_ms=T0).text == ""


def test_early_speedup_is_capped_by_baseline(est, clock):
    clock.set(T0 + 10_000)
    est.update(total=1000, processed=100, phase=Phase.running, server_start_ms=T0, baseline=BaselineRun(1000, 1000))
    # 10 %: real-time 10/s is faster than the 1/s baseline, baseline wins
    assert est.final_rate(total=1000, processed=100, now_ms=T0 + 10_000) == pytest.approx(1.0)
    # an early slowdown is believed
    assert est.final_rate(total=1000, processed=5, now_ms=T0 + 10_000) == pytest.approx(0.5)


def test_blend_weight():
    assert blend_weight(15) == pytest.approx(0.3)
    assert blend_weight(100) == pytest.approx(1.0)
    assert blend_weight(50) == pytest.approx(0.3 + 35 / 85 * 0.7)


@pytest.mark.parametrize(
    "seconds,text",
    [
        (None, "..."),
        (0, "..."),
        (-3, "..."),
        (7.9, "7s"),
        (59.9, "59s"),
        (60, "1m"),
        (150, "2m"),
        (3599, "60m"),
        (3600, "1h 0m"),
        (3661, "1h 1m"),
        (7260, "2h 1m"),
    ],
)
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text
