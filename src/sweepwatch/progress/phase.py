from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Canonical job phases shown to the user."""

    idle = "idle"
    preparing = "preparing"  # checking, nothing probed yet
    running = "running"  # checking, probing in progress
    finishing = "finishing"  # checking, but stopping / limit reached / saving
    done = "done"  # a run just completed (shown once, then idle)

    @property
    def checking(self) -> bool:
        return self in (Phase.preparing, Phase.running, Phase.finishing)


class FinishReason(str, Enum):
    saving_results = "saving_results"
    stopping = "stopping"
    limit_reached = "limit_reached"
