# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
HTTP client abstraction.

This module defines:
- `HttpResponse`: status, content type and decoded body text.
- `HttpClient` protocol: lifecycle + a single `request()` coroutine.
- `AiohttpClient`: the production implementation over one shared
  `aiohttp.ClientSession`.

Network errors propagate as exceptions from `request()`; classifying them is
the transport guard's job, not the client's.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import aiohttp

from ..core.log import get_logger


@dataclass(frozen=True)
class HttpResponse:
    status: int
    content_type: str
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_json(self) -> bool:
        return "application/json" in self.content_type


@runtime_checkable
class HttpClient(Protocol):
    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def request(self, method: str, url: str, *, headers: Mapping[str, str]) -> HttpResponse: ...


class AiohttpClient:
    """
    `HttpClient` backed by aiohttp.

    The session is created lazily on first use (or in `start()`) so the
    client can be constructed outside a running event loop.
    """

    def __init__(self, *, timeout_sec: float = 10.0) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: aiohttp.ClientSession | None = None
        self.log = get_logger("transport.http")

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self.log.debug("http.session.open", event="http.session.open")

    async def stop(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self.log.debug("http.session.closed", event="http.session.closed")
        self._session = None

    async def request(self, method: str, url: str, *, headers: Mapping[str, str]) -> HttpResponse:
        await self.start()
        if self._session is None:
            raise RuntimeError("http session is not open")
        async with self._session.request(method, url, headers=dict(headers)) as resp:
            text = await resp.text(errors="replace")
            return HttpResponse(
                status=resp.status,
                content_type=resp.headers.get("Content-Type", ""),
                text=text,
            )
