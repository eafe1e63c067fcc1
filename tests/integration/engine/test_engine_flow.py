"""
ProgressEngine end to end over a fake HTTP client and a manual clock.

Polls are driven by hand (`poll_status()` / `poll_logs()`) so the timeline is
deterministic; the background loops are only exercised in the lifecycle test.
"""

from __future__ import annotations

import asyncio

import pytest

from sweepwatch.engine import ActionOutcome, ProgressEngine
from sweepwatch.errors import ActionTimeout
from sweepwatch.logs.window import SyncMode
from sweepwatch.progress.eta import CALCULATING
from sweepwatch.progress.phase import Phase
from sweepwatch.progress.reconciler import STATUS_UNAVAILABLE, SummarySource
from sweepwatch.transport.guard import LOGOUT_CONNECTIVITY, LOGOUT_UNAUTHORIZED, StaticCredentials
from tests.helpers import T0, json_response, line, run_lines, text_response

pytestmark = [pytest.mark.integration]

STATUS = "/api/status"
LOGS = "/api/logs"
TRIGGER = "/api/trigger-check"
FORCE_CLOSE = "/api/force-close"


class RecordingSink:
    def __init__(self) -> None:
        self.models = []
        self.log_results = []

    def render(self, model) -> None:
        self.models.append(model)

    def render_logs(self, result) -> None:
        self.log_results.append(result)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(cfg, auth, http, clock, sink, metrics) -> ProgressEngine:
    return ProgressEngine(cfg=cfg, auth=auth, client=http, clock=clock, sink=sink, metrics=metrics)


def status(**kw):
    return json_response(kw)


@pytest.mark.asyncio
async def test_full_run_lifecycle(engine, http, clock, sink, metrics):
    prev = run_lines(T0 - 3_600_000, total=1000, available=250)

    # idle, history recovered from the log
    http.set(LOGS, json_response({"logs": prev}))
    assert await engine.poll_logs()
    assert sink.log_results[-1].mode is SyncMode.initial
    http.set(STATUS, status(checking=False, lastCheck={}))
    assert await engine.poll_status()
    m = engine.render_model
    assert m.phase is Phase.idle and m.summary_visible and not m.progress_visible
    assert m.summary.source is SummarySource.log
    assert (m.summary.total, m.summary.available, m.summary.duration_seconds) == (1000, 250, 569)

    # triggered: subscriptions are being fetched
    clock.set(T0 + 1000)
    cur = prev + [line(T0, "手动触发检测"), line(T0 + 500, "订阅链接数量 本地=66 远程=24 历史=2 总计=90")]
    http.set(LOGS, json_response({"logs": cur}))
    await engine.poll_logs()
    assert sink.log_results[-1].mode is SyncMode.incremental
    assert len(sink.log_results[-1].delta) == 2
    http.set(STATUS, status(checking=True, progress=0, proxyCount=0))
    await engine.poll_status()
    m = engine.render_model
    assert m.phase is Phase.preparing and m.preparing_visible
    assert m.preparing.total == 90
    assert m.eta_text == CALCULATING

    # probing starts
    clock.set(T0 + 4000)
    cur += [line(T0 + 3000, "去重后节点数量: 1000"), line(T0 + 3000, "开始检测节点")]
    http.set(LOGS, json_response(cur))
    await engine.poll_logs()
    http.set(STATUS, status(checking=True, progress=0, proxyCount=1000))
    await engine.poll_status()
    assert engine.phase is Phase.preparing

    clock.set(T0 + 13_000)
    http.set(STATUS, status(checking=True, progress=100, proxyCount=1000, available=20))
    await engine.poll_status()
    m = engine.render_model
    assert m.phase is Phase.running and m.progress_visible and not m.summary_visible
    assert m.percent == 10.0
    assert m.elapsed_seconds == 10
    # 10 % done: the 10/s start is not trusted over the previous run's ~1.76/s
    assert m.eta_text == "9m"
    assert m.status_text == "running, about 9m left"

    # completed, reported by the server
    clock.set(T0 + 600_000)
    last = {"time": "2025-01-02 10:10:00", "duration": 597, "total": 1000, "available": 300}
    http.set(STATUS, status(checking=False, lastCheck=last))
    await engine.poll_status()
    m = engine.render_model
    assert m.phase is Phase.done and m.summary_visible and not m.progress_visible
    assert m.summary.source is SummarySource.server
    assert m.summary_duration_text == "9m57s"
    assert m.eta_text == ""

    await engine.poll_status()
    assert engine.phase is Phase.idle
    assert metrics.registry.get_sample_value("sweepwatch_phase", {"phase": "idle"}) == 1.0
    assert metrics.registry.get_sample_value("sweepwatch_phase", {"phase": "running"}) == 0.0


@pytest.mark.asyncio
async def test_done_from_cached_log_facts_when_server_has_no_summary(engine, http, clock):
    http.set(LOGS, json_response(run_lines(T0 - 3_600_000, total=1200, available=315)))
    await engine.poll_logs()

    http.set(STATUS, status(checking=True, progress=600, proxyCount=1200))
    await engine.poll_status()
    clock.advance(30_000)
    http.set(STATUS, status(checking=False))
    await engine.poll_status()

    m = engine.render_model
    assert m.phase is Phase.done
    assert m.summary.source is SummarySource.local
    assert (m.summary.total, m.summary.available) == (1200, 315)
    assert m.summary.duration_seconds == 30


@pytest.mark.asyncio
async def test_completion_in_new_log_lines_refreshes_history(engine, http, clock):
    lines = run_lines(T0, with_available=False, with_completion=False)
    http.set(LOGS, json_response(lines))
    await engine.poll_logs()
    assert engine.reconciler.last_completed_run is None

    lines += [line(T0 + 569_000, "可用节点数量: 315"), line(T0 + 570_000, "检测完成")]
    http.set(LOGS, json_response(lines))
    await engine.poll_logs()
    facts = engine.reconciler.last_completed_run
    assert facts is not None and facts.available_nodes == 315


@pytest.mark.asyncio
async def test_failed_status_poll_marks_render_stale(engine, http):
    http.set(STATUS, status(checking=True, progress=10, proxyCount=100))
    await engine.poll_status()
    assert not engine.render_model.stale

    http.set(STATUS, text_response("bad gateway", status=502))
    assert await engine.poll_status() is False
    m = engine.render_model
    assert m.stale and m.status_text == STATUS_UNAVAILABLE
    assert m.processed == 10 and m.phase is Phase.running


@pytest.mark.asyncio
async def test_malformed_payloads_count_as_failures(engine, http):
    http.set(STATUS, json_response([1, 2, 3]))
    assert await engine.poll_status() is False
    assert engine.render_model.stale
    assert engine.guard.failure_count == 1

    http.set(LOGS, json_response(42))
    assert await engine.poll_logs() is False
    assert engine.guard.failure_count == 2
    assert engine.log_lines == []


@pytest.mark.asyncio
async def test_garbage_on_one_channel_keeps_the_other_channel_outage(engine, http, clock):
    http.set(STATUS, text_response("bad gateway", status=502))
    await engine.poll_status()
    started = engine.guard.first_failure_ms

    http.set(LOGS, json_response({"lines": []}))
    clock.advance(3_000)
    assert await engine.poll_logs() is False
    assert engine.guard.first_failure_ms == started
    assert engine.guard.failure_count == 2


@pytest.mark.asyncio
async def test_sustained_malformed_status_logs_out(engine, http, auth, clock):
    http.set(STATUS, json_response([1, 2, 3]))
    for _ in range(10):
        assert await engine.poll_status() is False
        clock.advance(1_000)
    assert auth.has_credential()

    await engine.poll_status()
    assert auth.logout_reasons == [LOGOUT_CONNECTIVITY]


@pytest.mark.asyncio
async def test_unauthorized_status_logs_out(engine, http, auth):
    http.set(STATUS, json_response({"error": "invalid key"}, status=401))
    await engine.poll_status()
    assert auth.logout_reasons == [LOGOUT_UNAUTHORIZED]
    assert engine.render_model.stale

    await engine.poll_logs()
    assert http.calls_to(LOGS) == []


# ---------- actions ----------


@pytest.mark.asyncio
async def test_start_check_confirms_when_status_flips(engine, http, metrics):
    http.set(TRIGGER, json_response({"ok": True}))
    http.queue(STATUS, status(checking=False), status(checking=True, proxyCount=10))

    assert await engine.start_check() is ActionOutcome.confirmed
    assert [c.method for c in http.calls_to(TRIGGER)] == ["POST"]
    assert len(http.calls_to(STATUS)) == 2
    assert engine.phase is Phase.preparing
    assert metrics.registry.get_sample_value(
        "sweepwatch_actions_total", {"action": "start", "outcome": "confirmed"}
    ) == 1.0


@pytest.mark.asyncio
async def test_stop_check_times_out(cfg, auth, http, clock, sink, metrics):
    cfg = type(cfg)(base_url="http://test", log_tz_offset_min=0, action_confirm_timeout_sec=3)
    engine = ProgressEngine(cfg=cfg, auth=auth, client=http, clock=clock, sink=sink, metrics=metrics)
    http.set(FORCE_CLOSE, json_response({"ok": True}))
    http.set(STATUS, status(checking=True, progress=5, proxyCount=10, forceClose=True))

    outcome = await engine.stop_check()
    assert outcome is ActionOutcome.timed_out
    with pytest.raises(ActionTimeout):
        outcome.raise_for_timeout()
    assert clock.now_ms() - T0 == 3000
    assert len(http.calls_to(STATUS)) == 6
    assert engine.render_model.status_text == "stopping…"


@pytest.mark.asyncio
async def test_failed_post_still_waits_for_status(engine, http):
    http.set(FORCE_CLOSE, text_response("busy", status=500))
    http.set(STATUS, status(checking=False))
    assert await engine.stop_check() is ActionOutcome.confirmed


@pytest.mark.asyncio
async def test_second_action_is_rejected_while_one_is_in_flight(engine, http):
    http.gate(TRIGGER)
    http.set(TRIGGER, json_response({"ok": True}))
    http.set(STATUS, status(checking=True, proxyCount=10))

    first = asyncio.create_task(engine.start_check())
    for _ in range(3):
        await asyncio.sleep(0)
    assert await engine.stop_check() is ActionOutcome.rejected

    http.release(TRIGGER)
    assert await first is ActionOutcome.confirmed
    assert http.calls_to(FORCE_CLOSE) == []


@pytest.mark.asyncio
async def test_action_without_credential_fails(cfg, http, clock, sink, metrics):
    engine = ProgressEngine(cfg=cfg, auth=StaticCredentials(), client=http, clock=clock, sink=sink, metrics=metrics)
    assert await engine.start_check() is ActionOutcome.failed
    assert http.calls == []


# ---------- manual refresh / lifecycle ----------


@pytest.mark.asyncio
async def test_manual_refresh_is_single_flight(engine, http):
    http.gate(LOGS)
    http.set(LOGS, json_response(["a", "b"]))

    first = asyncio.create_task(engine.refresh_logs())
    for _ in range(3):
        await asyncio.sleep(0)
    assert await engine.refresh_logs() is False

    http.release(LOGS)
    assert await first is True
    assert len(http.calls_to(LOGS)) == 1
    assert engine.log_lines == ["a", "b"]


@pytest.mark.asyncio
async def test_start_and_stop(engine, http):
    http.set(STATUS, status(checking=False))
    http.set(LOGS, json_response([]))
    await engine.start()
    assert http.started and engine.scheduler.running
    for _ in range(5):
        await asyncio.sleep(0)
    await engine.stop()
    assert http.stopped and not engine.scheduler.running
    assert http.calls_to(STATUS) and http.calls_to(LOGS)
