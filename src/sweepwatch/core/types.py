from __future__ import annotations

"""
sweepwatch.core.types
=====================

Shared type aliases. Keep this module tiny and dependency-free.
"""

Millis = int
TimestampMs = int  # wall-clock epoch timestamp (ms)

Endpoint = str  # path relative to the server base URL, e.g. "/api/status"

__all__ = [
    "Millis",
    "TimestampMs",
    "Endpoint",
]
