# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for sweepwatch.

Network-level failures never surface as exceptions past the transport guard;
they are classified into `FailureKind` values on `CallResult`. The exception
classes below mirror that taxonomy for the few places that do raise:
payload parsing (`MalformedPayload`) and callers that prefer exceptions to
result values (`CallResult.raise_for_failure()`).
"""

from enum import Enum


class FailureKind(str, Enum):
    """Why a guarded call did not succeed."""

    unauthenticated = "unauthenticated"  # no credential, no request issued
    unauthorized = "unauthorized"  # HTTP 401, triggers logout
    transient = "transient"  # network error, timeout, non-2xx
    malformed = "malformed"  # undecodable body or unexpected shape


class SweepwatchError(Exception):
    """Base class for all sweepwatch errors."""

    ...


class Unauthenticated(SweepwatchError):
    """No credential is set; the call was not attempted."""

    ...


class Unauthorized(SweepwatchError):
    """The server rejected the credential (HTTP 401)."""

    ...


class TransientFailure(SweepwatchError):
    """Timeout, connection error or non-2xx response. Polling continues."""

    ...


class MalformedPayload(SweepwatchError):
    """A response had an unexpected shape; counted like a transient failure."""

    ...


class ActionTimeout(SweepwatchError):
    """The server did not confirm a start/stop action within the confirm timeout."""

    ...


_BY_KIND: dict[FailureKind, type[SweepwatchError]] = {
    FailureKind.unauthenticated: Unauthenticated,
    FailureKind.unauthorized: Unauthorized,
    FailureKind.transient: TransientFailure,
    FailureKind.malformed: MalformedPayload,
}


def error_for(kind: FailureKind) -> type[SweepwatchError]:
    return _BY_KIND[kind]
