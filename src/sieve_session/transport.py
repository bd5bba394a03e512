# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Contract between a session and its physical connection.

The transport owns the socket, the TLS upgrade, the request queue, the wire
codec and the keep-alive timer. Sessions only talk to it through the methods
below, so any implementation (asyncio streams, a test double, ...) can be
plugged in via a :data:`TransportFactory`.

Requests are processed strictly in the order they were queued and each one
receives exactly one reply.
"""

from __future__ import annotations

from logging import Logger
from typing import Any, Callable, Protocol

from .account import ProxyInfo
from .requests import SieveRequest
from .responses import ByeResponse, Compatibility, ErrorResponse


class TransportListener(Protocol):
    """Events a transport reports to the session that owns it."""

    def on_idle(self) -> None:
        """The keep-alive interval elapsed without traffic."""

    def on_bye_response(self, response: ByeResponse) -> None:
        """The server sent an unsolicited BYE."""

    def on_error(self, response: ErrorResponse) -> None:
        """The transport failed (socket error, TLS failure, parser error)."""

    def on_timeout(self, message: str) -> None:
        """A queued request did not get a reply in time."""

    def on_disconnect(self) -> None:
        """The connection was lost or closed by the peer."""


class Transport(Protocol):
    """One physical ManageSieve connection."""

    def connect(
        self,
        hostname: str,
        port: int,
        use_tls: bool,
        listener: TransportListener,
        proxy_info: ProxyInfo | None = None,
    ) -> None: ...

    def disconnect(self) -> None: ...

    def start_tls(self, on_complete: Callable[[], None]) -> None: ...

    def set_paused(self, paused: bool) -> None: ...

    def add_request(self, request: SieveRequest, silent: bool = False) -> None: ...

    def is_alive(self) -> bool: ...

    def get_compatibility(self) -> Compatibility: ...

    def set_compatibility(self, capabilities: dict[str, Any]) -> None: ...

    def set_keep_alive_interval(self, interval: int) -> None: ...

    def add_listener(self, listener: TransportListener) -> None: ...


TransportFactory = Callable[[Logger], Transport]
"""Builds a fresh, unconnected transport. Receives the session's logger."""


__all__ = ["Transport", "TransportFactory", "TransportListener"]
