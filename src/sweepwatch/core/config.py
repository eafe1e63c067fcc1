from __future__ import annotations

"""
sweepwatch.core.config
======================

Strongly-typed engine configuration.
- No external deps; optional JSON file loading.
- Durations are declared in seconds; millisecond fields are derived once.
- Small env overrides for convenience.

If no config file is given (or it is missing), the defaults below apply.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any

from .log import get_logger

_log = get_logger("config")

PHASES = ("idle", "preparing", "running", "finishing", "done")


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        # Fail soft; callers may still override
        _log.warning("config.file.unreadable", event="config.file.unreadable", path=str(path), exc_info=True)
    return {}


@dataclass
class EngineConfig:
    """Engine configuration loaded from JSON/env with derived millisecond fields."""

    # ---- Server
    base_url: str = "http://127.0.0.1:8199"
    api_key_header: str = "X-API-Key"
    status_path: str = "/api/status"
    logs_path: str = "/api/logs"
    trigger_path: str = "/api/trigger-check"
    force_close_path: str = "/api/force-close"
    request_timeout_sec: float = 10.0

    # ---- Poll cadence (seconds)
    status_interval_fast_sec: float = 0.8
    status_interval_slow_sec: float = 3.0
    log_interval_fast_sec: float = 1.0
    log_interval_slow_sec: float = 3.0
    fast_phases: list[str] = field(default_factory=lambda: ["preparing", "running", "finishing"])

    # ---- Transport guard
    max_failure_duration_sec: float = 10.0

    # ---- Actions (start/stop)
    action_confirm_timeout_sec: float = 600.0
    action_poll_sec: float = 0.6

    # ---- Log window / facts
    max_log_lines: int = 1000
    subscription_freshness_sec: float = 5.0
    # Offset of server log timestamps from UTC; None means the host's local time.
    log_tz_offset_min: int | None = None

    # ---- ETA tuning
    start_tolerance_sec: float = 1.0
    eta_warmup_sec: float = 3.0
    eta_refresh_sec: float = 1.0
    eta_sample_sec: float = 0.5
    eta_window_sec: float = 60.0
    blend_threshold_pct: float = 15.0
    blend_min_weight: float = 0.3

    # ---- Derived (ms)
    status_fast_ms: int = 0
    status_slow_ms: int = 0
    log_fast_ms: int = 0
    log_slow_ms: int = 0
    request_timeout_ms: int = 0
    max_failure_duration_ms: int = 0
    action_confirm_timeout_ms: int = 0
    action_poll_ms: int = 0
    subscription_freshness_ms: int = 0
    start_tolerance_ms: int = 0
    eta_warmup_ms: int = 0
    eta_refresh_ms: int = 0
    eta_sample_ms: int = 0
    eta_window_ms: int = 0

    # ---- Methods ------------------------------------------------------------

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must be a non-empty string")
        if self.max_log_lines <= 0:
            raise ValueError("max_log_lines must be positive")
        intervals = (
            self.status_interval_fast_sec,
            self.status_interval_slow_sec,
            self.log_interval_fast_sec,
            self.log_interval_slow_sec,
            self.action_poll_sec,
        )
        if any(x <= 0 for x in intervals):
            raise ValueError("poll intervals must be positive")
        if not 0 < self.blend_min_weight <= 1:
            raise ValueError("blend_min_weight must be in (0, 1]")
        if not 0 <= self.blend_threshold_pct < 100:
            raise ValueError("blend_threshold_pct must be in [0, 100)")
        unknown = [p for p in self.fast_phases if p not in PHASES]
        if unknown:
            raise ValueError(f"unknown phases in fast_phases: {unknown}")
        self._derive_ms()

    def _derive_ms(self) -> None:
        """Populate millisecond fields derived from second-based values."""
        self.status_fast_ms = int(self.status_interval_fast_sec * 1000)
        self.status_slow_ms = int(self.status_interval_slow_sec * 1000)
        self.log_fast_ms = int(self.log_interval_fast_sec * 1000)
        self.log_slow_ms = int(self.log_interval_slow_sec * 1000)
        self.request_timeout_ms = int(self.request_timeout_sec * 1000)
        self.max_failure_duration_ms = int(self.max_failure_duration_sec * 1000)
        self.action_confirm_timeout_ms = int(self.action_confirm_timeout_sec * 1000)
        self.action_poll_ms = int(self.action_poll_sec * 1000)
        self.subscription_freshness_ms = int(self.subscription_freshness_sec * 1000)
        self.start_tolerance_ms = int(self.start_tolerance_sec * 1000)
        self.eta_warmup_ms = int(self.eta_warmup_sec * 1000)
        self.eta_refresh_ms = int(self.eta_refresh_sec * 1000)
        self.eta_sample_ms = int(self.eta_sample_sec * 1000)
        self.eta_window_ms = int(self.eta_window_sec * 1000)

    def log_tz(self) -> tzinfo | None:
        if self.log_tz_offset_min is None:
            return None
        return timezone(timedelta(minutes=self.log_tz_offset_min))

    def url(self, path: str) -> str:
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")

    # Loader
    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> EngineConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - SWEEPWATCH_BASE_URL
          - SWEEPWATCH_LOG_TZ_OFFSET_MIN
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        if os.getenv("SWEEPWATCH_BASE_URL"):
            data["base_url"] = os.environ["SWEEPWATCH_BASE_URL"]
        tz_env = os.getenv("SWEEPWATCH_LOG_TZ_OFFSET_MIN")
        if tz_env:
            data["log_tz_offset_min"] = int(tz_env)

        if overrides:
            data.update(overrides)

        return cls(**data)
