# conftest.py
from __future__ import annotations

import os
import uuid

import pytest

from sweepwatch.core.config import EngineConfig
from sweepwatch.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from sweepwatch.core.time import ManualClock
from sweepwatch.observability.metrics import EngineMetrics
from sweepwatch.transport.guard import StaticCredentials
from tests.helpers import T0, FakeHttpClient


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit sweepwatch logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_sweepwatch_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # Unless enabled explicitly through env, turn stdout logging on (human-readable by default)
    if os.getenv("SWEEPWATCH_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    if rep.when == "call":
        log = get_logger("test")
        with log_context(pytest_nodeid=item.nodeid, test=item.name):
            log.debug(
                "pytest.test.finish",
                event="pytest.test.finish",
                outcome=rep.outcome,
                duration=getattr(rep, "duration", None),
            )


# ---------- shared fixtures ----------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_ms=T0)


@pytest.fixture
def cfg() -> EngineConfig:
    # Server log timestamps in tests are UTC.
    return EngineConfig(base_url="http://test", log_tz_offset_min=0)


@pytest.fixture
def metrics() -> EngineMetrics:
    return EngineMetrics.create()


@pytest.fixture
def auth() -> StaticCredentials:
    return StaticCredentials("secret-key")


@pytest.fixture
def http() -> FakeHttpClient:
    return FakeHttpClient()
