# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Low-cardinality Prometheus metrics for the progress engine.

Labels stay conservative (channel, result, kind, mode, phase); no URLs,
no counts, no free text.

Each engine gets its own `CollectorRegistry` unless one is passed in, so
several engines (or tests) in one process never collide on metric names.
Pass `prometheus_client.REGISTRY` to expose them on the default endpoint.
"""

from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge

PHASE_NAMES = ("idle", "preparing", "running", "finishing", "done")


@dataclass
class EngineMetrics:
    registry: CollectorRegistry
    polls_total: Any
    poll_skipped_total: Any
    transport_failures_total: Any
    logouts_total: Any
    log_sync_total: Any
    actions_total: Any
    phase: Any
    eta_seconds: Any

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> EngineMetrics:
        reg = registry if registry is not None else CollectorRegistry()
        return cls(
            registry=reg,
            polls_total=Counter(
                "sweepwatch_polls_total", "Poll ticks that issued a request", ["channel", "result"], registry=reg
            ),
            poll_skipped_total=Counter(
                "sweepwatch_poll_skipped_total", "Ticks skipped because a request was in flight", ["channel"], registry=reg
            ),
            transport_failures_total=Counter(
                "sweepwatch_transport_failures_total", "Guarded call failures", ["kind"], registry=reg
            ),
            logouts_total=Counter("sweepwatch_logouts_total", "Forced logouts", ["reason"], registry=reg),
            log_sync_total=Counter("sweepwatch_log_sync_total", "Log window sync outcomes", ["mode"], registry=reg),
            actions_total=Counter(
                "sweepwatch_actions_total", "Start/stop actions", ["action", "outcome"], registry=reg
            ),
            phase=Gauge("sweepwatch_phase", "1 for the current job phase, 0 otherwise", ["phase"], registry=reg),
            eta_seconds=Gauge("sweepwatch_eta_seconds", "Last computed remaining-time estimate", registry=reg),
        )

    def set_phase(self, current: str) -> None:
        for name in PHASE_NAMES:
            self.phase.labels(phase=name).set(1 if name == current else 0)
