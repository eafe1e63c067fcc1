# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
sweepwatch.engine
=================

`ProgressEngine` wires the pieces together:

    status channel -> TransportGuard -> JobStatusSnapshot -> ProgressReconciler
                                                          -> EtaEstimator -> render_model -> sink.render
    logs channel   -> TransportGuard -> parse_log_payload -> LogTailSynchronizer -> sink.render_logs
                                                          -> extract_completed_run -> reconciler cache

Both channels are single-flight `PollChannel`s whose cadence follows the
current phase. Start/stop actions POST once and then poll status until the
server confirms (or the confirm timeout elapses).
"""

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

from .core.config import EngineConfig
from .core.log import get_logger, log_context, swallow, warn_once
from .core.time import Clock, SystemClock
from .errors import ActionTimeout, FailureKind
from .logs.facts import extract_completed_run
from .logs.window import LogTailSynchronizer, SyncMode, SyncResult
from .observability.metrics import EngineMetrics
from .progress.eta import EtaEstimator, EtaReading, EtaTuning
from .progress.phase import Phase
from .progress.reconciler import PhaseFacts, ProgressReconciler, RenderModel, render_model
from .protocol.models import JobStatusSnapshot, parse_log_payload
from .runtime.scheduler import LOGS, STATUS, PollChannel, PollScheduler, poll_interval_ms
from .transport.guard import AuthCollaborator, TransportGuard
from .transport.http import AiohttpClient, HttpClient


class ActionOutcome(str, Enum):
    confirmed = "confirmed"  # status reached the desired `checking` value
    timed_out = "timed_out"
    rejected = "rejected"  # another action was still in flight
    failed = "failed"  # no usable credential

    def raise_for_timeout(self) -> None:
        if self is ActionOutcome.timed_out:
            raise ActionTimeout("server did not confirm the action in time")


@runtime_checkable
class RenderSink(Protocol):
    def render(self, model: RenderModel) -> None: ...
    def render_logs(self, result: SyncResult) -> None: ...


class NullSink:
    def render(self, model: RenderModel) -> None:
        return None

    def render_logs(self, result: SyncResult) -> None:
        return None


def tuning_from_config(cfg: EngineConfig) -> EtaTuning:
    return EtaTuning(
        warmup_ms=cfg.eta_warmup_ms,
        refresh_ms=cfg.eta_refresh_ms,
        sample_ms=cfg.eta_sample_ms,
        window_ms=cfg.eta_window_ms,
        start_tolerance_ms=cfg.start_tolerance_ms,
        blend_threshold_pct=cfg.blend_threshold_pct,
        min_weight=cfg.blend_min_weight,
    )


class ProgressEngine:
    def __init__(
        self,
        *,
        auth: AuthCollaborator,
        cfg: EngineConfig | None = None,
        client: HttpClient | None = None,
        clock: Clock | None = None,
        sink: RenderSink | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.cfg = cfg or EngineConfig()
        self.auth = auth
        self.clock: Clock = clock or SystemClock()
        self.client: HttpClient = client or AiohttpClient(timeout_sec=self.cfg.request_timeout_sec)
        self.sink: RenderSink = sink or NullSink()
        self.metrics = metrics or EngineMetrics.create()
        self.log = get_logger("engine")

        tz = self.cfg.log_tz()
        if tz is None:
            warn_once(
                self.log,
                "engine.log_tz.local",
                "server log timestamps are read as host local time",
                level=logging.INFO,
            )
        self.guard = TransportGuard(
            client=self.client, auth=auth, cfg=self.cfg, clock=self.clock, metrics=self.metrics
        )
        self.logsync = LogTailSynchronizer(self.cfg.max_log_lines, tz=tz)
        self.reconciler = ProgressReconciler(
            clock=self.clock, tz=tz, freshness_ms=self.cfg.subscription_freshness_ms
        )
        self.eta = EtaEstimator(clock=self.clock, tuning=tuning_from_config(self.cfg))

        self.snapshot: JobStatusSnapshot | None = None
        self.phase: Phase = Phase.idle
        self.render_model: RenderModel | None = None
        self._facts: PhaseFacts | None = None
        self._reading = EtaReading("")
        self._action: str | None = None

        self.scheduler = PollScheduler()
        self.scheduler.add(
            PollChannel(
                STATUS,
                self.poll_status,
                interval_ms=lambda: poll_interval_ms(self.cfg, STATUS, self.phase.value),
                enabled=auth.has_credential,
                clock=self.clock,
                metrics=self.metrics,
            )
        )
        self.scheduler.add(
            PollChannel(
                LOGS,
                self.poll_logs,
                interval_ms=lambda: poll_interval_ms(self.cfg, LOGS, self.phase.value),
                enabled=auth.has_credential,
                clock=self.clock,
                metrics=self.metrics,
            )
        )

    # ---------- lifecycle ----------

    async def start(self) -> None:
        self.log.info("engine.start", event="engine.start", base_url=self.cfg.base_url)
        await self.client.start()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        with swallow(logger=self.log, code="engine.client.stop", msg="http client stop failed", level=logging.WARNING):
            await self.client.stop()
        self.log.info("engine.stopped", event="engine.stopped")

    @property
    def log_lines(self) -> list[str]:
        return self.logsync.window.lines()

    # ---------- status channel ----------

    async def poll_status(self) -> bool:
        with log_context(channel=STATUS):
            res = await self.guard.call(self.cfg.status_path, parse=JobStatusSnapshot.from_payload)
            if not res.ok:
                self._render_stale()
                return False
            self.apply_snapshot(res.payload)
            return True

    def apply_snapshot(self, snap: JobStatusSnapshot) -> RenderModel:
        """Reconcile one snapshot against the current log window and render it."""
        prev = self.phase
        self.snapshot = snap
        facts = self.reconciler.reconcile(snap, self.logsync.window.lines())
        start = facts.server_start_ms if facts.server_start_ms is not None else facts.run_start_ms
        reading = self.eta.update(
            total=facts.total,
            processed=facts.processed,
            phase=facts.phase,
            finish_reason=facts.finish_reason,
            server_start_ms=start,
            baseline=self.reconciler.baseline(),
        )
        self._facts = facts
        self._reading = reading
        self.phase = facts.phase
        if facts.phase is not prev:
            self.log.info("engine.phase", event="engine.phase", old=prev.value, new=facts.phase.value)

        self.metrics.set_phase(facts.phase.value)
        if reading.seconds is not None:
            self.metrics.eta_seconds.set(reading.seconds)
        return self._emit(render_model(facts, reading, now_ms=self.clock.now_ms()))

    def _render_stale(self) -> None:
        facts = self._facts or PhaseFacts(Phase.idle, processed=0, total=0, available=0)
        self._emit(render_model(facts, self._reading, now_ms=self.clock.now_ms(), stale=True))

    def _emit(self, model: RenderModel) -> RenderModel:
        self.render_model = model
        with swallow(logger=self.log, code="engine.sink.render", msg="render sink failed", level=logging.WARNING):
            self.sink.render(model)
        return model

    # ---------- logs channel ----------

    async def poll_logs(self) -> bool:
        with log_context(channel=LOGS):
            res = await self.guard.call(self.cfg.logs_path, parse=parse_log_payload)
            if not res.ok:
                return False
            self.apply_logs(res.payload)
            return True

    def apply_logs(self, lines: list[str]) -> SyncResult:
        result = self.logsync.sync(lines)
        self.metrics.log_sync_total.labels(mode=result.mode.value).inc()

        if result.mode is not SyncMode.unchanged:
            with swallow(
                logger=self.log, code="engine.sink.render_logs", msg="render sink failed", level=logging.WARNING
            ):
                self.sink.render_logs(result)

        if result.completion_seen or result.full_render:
            facts = extract_completed_run(result.lines, tz=self.logsync.tz)
            if facts is not None:
                self.reconciler.remember_completed_run(facts)
        return result

    async def refresh_logs(self) -> bool:
        """Manual refresh; shares the channel's single-flight guard."""
        return await self.scheduler[LOGS].tick()

    # ---------- actions ----------

    async def start_check(self) -> ActionOutcome:
        return await self._run_action("start", self.cfg.trigger_path, desired=True)

    async def stop_check(self) -> ActionOutcome:
        return await self._run_action("stop", self.cfg.force_close_path, desired=False)

    async def _run_action(self, name: str, path: str, *, desired: bool) -> ActionOutcome:
        if self._action is not None:
            self.log.info("engine.action.rejected", event="engine.action.rejected", action=name, busy=self._action)
            return self._action_done(name, ActionOutcome.rejected)

        self._action = name
        try:
            res = await self.guard.call(path, method="POST")
            if res.failure in (FailureKind.unauthenticated, FailureKind.unauthorized):
                return self._action_done(name, ActionOutcome.failed)
            if not res.ok:
                # The server may still have acted on it; status decides.
                self.log.warning(
                    "engine.action.post_failed", event="engine.action.post_failed", action=name, detail=res.detail
                )
            if desired:
                self.reconciler.mark_run_started()
            confirmed = await self.wait_for_checking(desired)
            return self._action_done(name, ActionOutcome.confirmed if confirmed else ActionOutcome.timed_out)
        finally:
            self._action = None

    def _action_done(self, name: str, outcome: ActionOutcome) -> ActionOutcome:
        self.metrics.actions_total.labels(action=name, outcome=outcome.value).inc()
        self.log.info("engine.action", event="engine.action", action=name, outcome=outcome.value)
        return outcome

    async def wait_for_checking(self, desired: bool) -> bool:
        """Poll status every `action_poll_ms` until `checking == desired` or the confirm timeout."""
        channel = self.scheduler[STATUS]
        deadline = self.clock.now_ms() + self.cfg.action_confirm_timeout_ms
        while True:
            if not await channel.tick():
                await channel.drain()
            if self.snapshot is not None and self.snapshot.checking == desired:
                return True
            if self.clock.now_ms() >= deadline or not self.auth.has_credential():
                return False
            await self.clock.sleep_ms(self.cfg.action_poll_ms)
