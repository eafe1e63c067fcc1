from __future__ import annotations

import pytest

from sweepwatch.errors import MalformedPayload
from sweepwatch.protocol.models import JobStatusSnapshot, parse_log_payload

pytestmark = [pytest.mark.unit]


def test_status_wire_names():
    s = JobStatusSnapshot.from_payload(
        {
            "checking": True,
            "proxyCount": 1200,
            "progress": 300,
            "available": 40,
            "forceClose": False,
            "successlimited": True,
            "processResults": False,
            "lastCheck": {"time": "2025-01-02 09:00:00", "duration": 300, "total": 800, "available": 200},
            "someNewField": "ignored",
        }
    )
    assert s.checking and s.total_count == 1200 and s.processed_count == 300 and s.available_count == 40
    assert s.success_limited and not s.force_close and not s.processing_results
    assert s.finishing
    assert s.last_check is not None
    assert (s.last_check.duration_seconds, s.last_check.total, s.last_check.available) == (300, 800, 200)


def test_missing_fields_default():
    s = JobStatusSnapshot.from_payload({})
    assert not s.checking
    assert (s.processed_count, s.total_count, s.available_count) == (0, 0, 0)
    assert s.last_check is None
    assert not s.finishing


@pytest.mark.parametrize("last_check", [{}, None, {"time": "x"}, {"total": "many"}, "yesterday"])
def test_empty_or_unusable_last_check_is_none(last_check):
    assert JobStatusSnapshot.from_payload({"lastCheck": last_check}).last_check is None


def test_null_counters_read_as_zero():
    s = JobStatusSnapshot.from_payload({"progress": None, "proxyCount": None})
    assert s.processed_count == 0 and s.total_count == 0


@pytest.mark.parametrize("payload", [[1, 2], "text", None, {"progress": "lots"}])
def test_malformed_status(payload):
    with pytest.raises(MalformedPayload):
        JobStatusSnapshot.from_payload(payload)


@pytest.mark.parametrize(
    "payload,lines",
    [
        (["a", "b"], ["a", "b"]),
        ({"logs": ["a", "b"]}, ["a", "b"]),
        ({"logs": "a\nb"}, ["a", "b"]),
        ("a\nb", ["a", "b"]),
        ([], []),
    ],
)
def test_log_payload_shapes(payload, lines):
    assert parse_log_payload(payload) == lines


@pytest.mark.parametrize("payload", [{"lines": []}, {"logs": 3}, 42, None])
def test_malformed_log_payload(payload):
    with pytest.raises(MalformedPayload):
        parse_log_payload(payload)
