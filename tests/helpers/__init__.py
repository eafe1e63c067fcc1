from .http import FakeHttpClient, RecordedCall, json_response, text_response
from .logs import T0, line, run_lines, stamp

__all__ = [
    "T0",
    "FakeHttpClient",
    "RecordedCall",
    "json_response",
    "line",
    "run_lines",
    "stamp",
    "text_response",
]
