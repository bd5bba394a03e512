# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Request objects issued by a session onto its transport.

A request is queued with ``Transport.add_request()``. The transport sends it,
waits for the matching reply and then calls exactly one of
:meth:`SieveRequest.on_response` or :meth:`SieveRequest.on_error`, which in
turn notify the callbacks registered on the request.

Example::

    request = CapabilitiesRequest()
    request.add_response_listener(session_handler)
    request.add_error_listener(error_handler)
    transport.add_request(request)
"""

from __future__ import annotations

from typing import Any, Callable

from .logger import get_logger

logger = get_logger("SieveRequest")

ResponseCallback = Callable[[Any], None]


class SieveRequest:
    """Base request with response and error listener lists."""

    command: str | None = None
    """ManageSieve command keyword, None for the implicit server greeting."""

    def __init__(self) -> None:
        self._response_listeners: list[ResponseCallback] = []
        self._error_listeners: list[ResponseCallback] = []

    def add_response_listener(self, callback: ResponseCallback) -> None:
        self._response_listeners.append(callback)

    def add_error_listener(self, callback: ResponseCallback) -> None:
        self._error_listeners.append(callback)

    def has_error_listener(self) -> bool:
        return bool(self._error_listeners)

    def on_response(self, response: Any) -> None:
        """Called by the transport with the parsed success reply."""
        for callback in list(self._response_listeners):
            callback(response)

    def on_error(self, response: Any) -> None:
        """Called by the transport with a NO reply or a transport error."""
        if not self._error_listeners:
            logger.debug("Unhandled error for %s request", self.command or "greeting")
        for callback in list(self._error_listeners):
            callback(response)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.command or 'greeting'}>"


class InitRequest(SieveRequest):
    """Waits for the capability listing the server sends unsolicited.

    Sent after connecting and implicitly after a successful STARTTLS.
    """

    command = None


class CapabilitiesRequest(SieveRequest):
    command = "CAPABILITY"


class StartTLSRequest(SieveRequest):
    command = "STARTTLS"


class LogoutRequest(SieveRequest):
    command = "LOGOUT"


class NoopRequest(SieveRequest):
    command = "NOOP"


__all__ = [
    "CapabilitiesRequest",
    "InitRequest",
    "LogoutRequest",
    "NoopRequest",
    "ResponseCallback",
    "SieveRequest",
    "StartTLSRequest",
]
