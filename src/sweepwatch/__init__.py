from __future__ import annotations

# Runtime package version from the installed distribution metadata.
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("sweepwatch")
except Exception:  # pragma: no cover
    # running from a source tree without an install
    __version__ = "0.0.0"

from .core.config import EngineConfig
from .engine import ActionOutcome, NullSink, ProgressEngine, RenderSink
from .progress.phase import Phase
from .progress.reconciler import RenderModel
from .transport.guard import StaticCredentials

__all__ = [
    "ActionOutcome",
    "EngineConfig",
    "NullSink",
    "Phase",
    "ProgressEngine",
    "RenderModel",
    "RenderSink",
    "StaticCredentials",
    "__version__",
]
