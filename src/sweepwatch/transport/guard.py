# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Transport guard.

Every outbound call to either data channel goes through `TransportGuard.call`:

- no credential -> `unauthenticated` result, no request issued;
- credential injected as a header;
- HTTP 401 -> `unauthorized`, logout through the auth collaborator;
- network error, timeout, other non-2xx, undecodable JSON, or a payload
  rejected by the caller's `parse` -> counted failure; once failures have
  persisted for `max_failure_duration_ms` since the first one, logout with a
  connectivity reason;
- only a response that decodes and parses resets the failure tracker.

Callers never see raw exceptions, only `CallResult`.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp

from ..core.config import EngineConfig
from ..core.log import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import Endpoint, TimestampMs
from ..errors import FailureKind, MalformedPayload, error_for
from ..observability.metrics import EngineMetrics
from .http import HttpClient

LOGOUT_UNAUTHORIZED = "unauthorized: API key is invalid or expired"
LOGOUT_CONNECTIVITY = "connectivity lost: API unreachable for too long"


@runtime_checkable
class AuthCollaborator(Protocol):
    """Boundary to the credential owner (login form, key storage)."""

    def has_credential(self) -> bool: ...
    def credential(self) -> str | None: ...
    def logout(self, reason: str) -> None: ...


class StaticCredentials:
    """In-memory credential holder; `logout` forgets the key and records why."""

    def __init__(self, api_key: str | None = None) -> None:
        self._key = api_key or None
        self.logout_reasons: list[str] = []

    def login(self, api_key: str) -> None:
        self._key = api_key or None

    def has_credential(self) -> bool:
        return self._key is not None

    def credential(self) -> str | None:
        return self._key

    def logout(self, reason: str) -> None:
        self._key = None
        self.logout_reasons.append(reason)


@dataclass(frozen=True)
class CallResult:
    ok: bool
    status: int | None = None
    payload: Any = None
    failure: FailureKind | None = None
    detail: str | None = None

    def raise_for_failure(self) -> None:
        if not self.ok and self.failure is not None:
            raise error_for(self.failure)(self.detail or self.failure.value)


class TransportGuard:
    """Wraps an `HttpClient` with auth injection and failure classification."""

    def __init__(
        self,
        *,
        client: HttpClient,
        auth: AuthCollaborator,
        cfg: EngineConfig | None = None,
        clock: Clock | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.client = client
        self.auth = auth
        self.cfg = cfg or EngineConfig()
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics
        self.failure_count = 0
        self.first_failure_ms: TimestampMs | None = None
        self.log = get_logger("transport.guard")

    # ---- public API

    async def call(
        self,
        endpoint: Endpoint,
        *,
        method: str = "GET",
        parse: Callable[[Any], Any] | None = None,
    ) -> CallResult:
        """Issue one guarded request.

        `parse` turns the decoded payload into the caller's model and raises
        `MalformedPayload` when it cannot; the parsed value becomes
        `CallResult.payload`.
        """
        if not self.auth.has_credential():
            return CallResult(ok=False, failure=FailureKind.unauthenticated, detail="no credential")
        key = self.auth.credential() or ""
        headers = {self.cfg.api_key_header: key}

        with log_context(endpoint=endpoint):
            try:
                resp = await self.client.request(method, self.cfg.url(endpoint), headers=headers)
            except (aiohttp.ClientError, TimeoutError, OSError) as e:
                return self._failed(FailureKind.transient, endpoint, None, f"{type(e).__name__}: {e}")

            if resp.status == 401:
                self.log.warning("guard.unauthorized", event="guard.unauthorized", method=method)
                self._count(FailureKind.unauthorized)
                self._logout(LOGOUT_UNAUTHORIZED)
                return CallResult(
                    ok=False, status=401, payload=resp.text, failure=FailureKind.unauthorized, detail="HTTP 401"
                )

            payload: Any = resp.text
            if resp.is_json and resp.text:
                try:
                    payload = json.loads(resp.text)
                except ValueError as e:
                    if resp.ok:
                        return self._failed(FailureKind.malformed, endpoint, resp.status, f"invalid JSON: {e}")

            if not resp.ok:
                return self._failed(FailureKind.transient, endpoint, resp.status, f"HTTP {resp.status}", payload)

            if parse is not None:
                try:
                    payload = parse(payload)
                except MalformedPayload as e:
                    return self._failed(FailureKind.malformed, endpoint, resp.status, str(e))

            self.reset_failures()
            return CallResult(ok=True, status=resp.status, payload=payload)

    def report_malformed(self, endpoint: Endpoint, reason: str) -> None:
        """Count a response whose shape the caller could not use."""
        with log_context(endpoint=endpoint):
            self._failed(FailureKind.malformed, endpoint, None, reason)

    def reset_failures(self) -> None:
        if self.failure_count:
            self.log.debug("guard.recovered", event="guard.recovered", failures=self.failure_count)
        self.failure_count = 0
        self.first_failure_ms = None

    # ---- internals

    def _failed(
        self,
        kind: FailureKind,
        endpoint: Endpoint,
        status: int | None,
        detail: str,
        payload: Any = None,
    ) -> CallResult:
        now = self.clock.now_ms()
        self.failure_count += 1
        if self.first_failure_ms is None:
            self.first_failure_ms = now
        self._count(kind)
        outage_ms = now - self.first_failure_ms
        self.log.info(
            "guard.failure",
            event="guard.failure",
            kind=kind.value,
            status=status,
            detail=detail,
            failures=self.failure_count,
            outage_ms=outage_ms,
        )
        if outage_ms >= self.cfg.max_failure_duration_ms:
            self._logout(LOGOUT_CONNECTIVITY)
        return CallResult(ok=False, status=status, payload=payload, failure=kind, detail=detail)

    def _logout(self, reason: str) -> None:
        self.log.warning("guard.logout", event="guard.logout", reason=reason)
        if self.metrics is not None:
            self.metrics.logouts_total.labels(reason=reason.split(":", 1)[0]).inc()
        self.reset_failures()
        self.auth.logout(reason)

    def _count(self, kind: FailureKind) -> None:
        if self.metrics is not None:
            self.metrics.transport_failures_total.labels(kind=kind.value).inc()
