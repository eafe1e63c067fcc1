from __future__ import annotations

"""
sweepwatch.core.log
===================

Structured logging for the engine:
- Keyword-friendly LoggerAdapter (`log.info("msg", event=..., channel=...)`).
- Context propagation via contextvars (channel, phase, endpoint).
- JSON formatter for production, compact human formatter for local runs.
- Silent by default; apps and tests opt in with `configure_from_env()` or
  `enable_stdout_logging()`.
"""

import contextvars
import json
import logging
import os
import sys
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

_ROOT_LOGGER_NAME: Final[str] = "sweepwatch"
_STDOUT_HANDLER: Final[str] = "_sweepwatch_stdout_handler"
_STDERR_HANDLER: Final[str] = "_sweepwatch_stderr_handler"

# ---------- Context ----------

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "sweepwatch_log_ctx", default=None
)


def _ctx_copy() -> dict[str, Any]:
    ctx = _log_context.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge fields into the current log context (None values are dropped)."""
    ctx = _ctx_copy()
    ctx.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(ctx)


@contextmanager
def log_context(**fields: Any):
    """Temporarily add fields to the log context; restores the previous one on exit."""
    token = _log_context.set({**_ctx_copy(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _log_context.reset(token)


# ---------- Formatters ----------

_STD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "asctime",
        "taskName",
    }
)


def _iso_utc_ms(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _exc_tuple(record: logging.LogRecord):
    info = record.exc_info
    if not info:
        return None
    if isinstance(info, BaseException):
        return (type(info), info, info.__traceback__)
    if info is True:
        return sys.exc_info()
    return info


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record: ts, level, logger, message, log context,
    non-standard `extra` fields and error info.
    """

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
        }
        msg = record.getMessage()
        if msg:
            out["message"] = msg

        ctx = _log_context.get()
        if ctx:
            out.update(ctx)

        for k, v in record.__dict__.items():
            if k in _STD_ATTRS or k in out:
                continue
            out[k] = v

        exc = _exc_tuple(record)
        if exc:
            err = out.setdefault("error", {})
            err["type"] = exc[0].__name__ if exc[0] else "Exception"
            err["message"] = str(exc[1]) if exc[1] else None
            if self.include_stack:
                err["stack"] = self.formatException(exc)

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Compact formatter for local debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"

    _context_keys: ClassVar[tuple[str, ...]] = ("channel", "phase", "endpoint")

    def format(self, record: logging.LogRecord) -> str:
        s = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        ctx = _log_context.get()
        if ctx:
            compact = {k: ctx[k] for k in self._context_keys if ctx.get(k) is not None}
            if compact:
                s += "  [" + ", ".join(f"{k}={v}" for k, v in compact.items()) + "]"
        exc = _exc_tuple(record)
        if exc:
            s += "\n" + self.formatException(exc)
        return s


# ---------- Filters / adapter ----------


class ContextFilter(logging.Filter):
    """Copy the current log context onto the record for downstream handlers."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        if ctx:
            for k, v in ctx.items():
                record.__dict__.setdefault(k, v)
        return True


class _LevelRange(logging.Filter):
    def __init__(self, lo: int = logging.NOTSET, hi: int = logging.CRITICAL) -> None:
        super().__init__()
        self.lo = lo
        self.hi = hi

    def filter(self, record: logging.LogRecord) -> bool:
        return self.lo <= record.levelno <= self.hi


class _KwExtraAdapter(logging.LoggerAdapter):
    """Moves unknown keyword arguments into `extra` so call sites can pass fields inline."""

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in [k for k in kwargs if k not in self._passthrough]:
            v = kwargs.pop(k)
            key = f"field_{k}" if k in _STD_ATTRS else k
            extra.setdefault(key, v)
        kwargs["extra"] = extra
        return msg, kwargs


_WARN_ONCE_SEEN: set[str] = set()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` only the first time `code` is seen in this process."""
    if code in _WARN_ONCE_SEEN:
        return
    _WARN_ONCE_SEEN.add(code)
    adapter = logger if isinstance(logger, logging.LoggerAdapter) else _KwExtraAdapter(logger, {})
    adapter.log(level, msg, code=code, **extra)


# ---------- Public configuration API ----------

_configured = False


def _bootstrap_minimal() -> None:
    global _configured
    if _configured:
        return
    lg = logging.getLogger(_ROOT_LOGGER_NAME)
    lg.setLevel(logging.DEBUG)
    if not any(isinstance(h, logging.NullHandler) for h in lg.handlers):
        lg.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in lg.filters):
        lg.addFilter(ContextFilter())
    _configured = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Namespaced logger adapter (`sweepwatch.<name>`) accepting arbitrary keyword fields."""
    _bootstrap_minimal()
    base = logging.getLogger(_ROOT_LOGGER_NAME)
    return _KwExtraAdapter(base.getChild(name) if name else base, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"invalid log level: {level!r}")
    return resolved


def set_level(level: int | str) -> None:
    logging.getLogger(_ROOT_LOGGER_NAME).setLevel(_resolve_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers. `pretty=True` selects the human formatter,
    `route_errors_to_stderr=True` sends ERROR+ to stderr and the rest to stdout.
    """
    lvl = _resolve_level(level)
    _bootstrap_minimal()
    lg = logging.getLogger(_ROOT_LOGGER_NAME)
    disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    if route_errors_to_stderr:
        h_out = logging.StreamHandler(sys.stdout)
        h_out.set_name(_STDOUT_HANDLER)
        h_out.setLevel(lvl)
        h_out.addFilter(_LevelRange(hi=logging.WARNING))
        h_out.setFormatter(fmt)
        lg.addHandler(h_out)

        h_err = logging.StreamHandler(sys.stderr)
        h_err.set_name(_STDERR_HANDLER)
        h_err.setLevel(max(lvl, logging.ERROR))
        h_err.addFilter(_LevelRange(lo=logging.ERROR))
        h_err.setFormatter(fmt)
        lg.addHandler(h_err)
    else:
        h = logging.StreamHandler(sys.stdout)
        h.set_name(_STDOUT_HANDLER)
        h.setLevel(lvl)
        h.setFormatter(fmt)
        lg.addHandler(h)


def disable_stdout_logging() -> None:
    lg = logging.getLogger(_ROOT_LOGGER_NAME)
    for h in list(lg.handlers):
        if h.get_name() in (_STDOUT_HANDLER, _STDERR_HANDLER):
            lg.removeHandler(h)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def configure_from_env() -> None:
    """
    Call once from entrypoints/tests. Honors:
      - SWEEPWATCH_LOG_STDOUT=1   enable stdout handler
      - SWEEPWATCH_LOG_LEVEL=INFO level (default DEBUG)
      - SWEEPWATCH_LOG_PRETTY=1   human formatter instead of JSON
      - SWEEPWATCH_LOG_STACK=1    include stack traces in JSON output
    """
    level = os.getenv("SWEEPWATCH_LOG_LEVEL", "DEBUG")
    pretty = _env_flag("SWEEPWATCH_LOG_PRETTY")

    _bootstrap_minimal()
    set_level(level)
    if _env_flag("SWEEPWATCH_LOG_STDOUT"):
        enable_stdout_logging(
            level=level,
            json_output=not pretty,
            include_stack=_env_flag("SWEEPWATCH_LOG_STACK"),
            pretty=pretty,
        )
    else:
        disable_stdout_logging()


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Replace `try/except: pass` with a logged suppression.

        with swallow(logger=log, code="engine.sink.render", msg="render sink failed"):
            sink.render(model)
    """
    base = logger or get_logger("swallow")
    adapter = base if isinstance(base, logging.LoggerAdapter) else _KwExtraAdapter(base, {})
    try:
        yield
    except Exception as e:
        payload: dict[str, Any] = {"code": code, "expected": expected}
        if extra:
            payload.update(dict(extra))
        adapter.log(level, msg or "Suppressed exception", exc_info=e, **payload)


_bootstrap_minimal()
