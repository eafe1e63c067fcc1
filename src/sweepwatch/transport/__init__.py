# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
HTTP transport and the guard every data-channel call goes through.
"""

from .guard import AuthCollaborator, CallResult, StaticCredentials, TransportGuard
from .http import AiohttpClient, HttpClient, HttpResponse

__all__ = [
    "AiohttpClient",
    "AuthCollaborator",
    "CallResult",
    "HttpClient",
    "HttpResponse",
    "StaticCredentials",
    "TransportGuard",
]
