# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-account ManageSieve session state machine.

A session owns at most one transport and hides the login handshake behind a
small state machine::

    OFFLINE --connect()--> CONNECTING --authenticated--> CONNECTED
       ^                      |  ^                          |
       |                      |  +------ BYE REFERRAL ------+
       +---- DISCONNECTING <--+---------- disconnect() -----+

While CONNECTING the session waits for the server greeting, optionally
upgrades the connection with STARTTLS, picks a SASL mechanism and
authenticates. Every outcome is reported to listeners
(:mod:`sieve_session.listeners`); nothing is raised to the caller.

Channels are logical leases on the shared transport. The session only hands
out and tracks their identifiers; the connection pool decides when the last
lease is gone and the session can be closed.
"""

from __future__ import annotations

from enum import IntEnum
from logging import Logger
from typing import Any, Callable

from .account import SieveAccount
from .exceptions import SaslError
from .listeners import ListenerRegistry, SessionEvent
from .logger import get_logger
from .metrics import SessionMetrics
from .requests import CapabilitiesRequest, InitRequest, LogoutRequest, NoopRequest, StartTLSRequest
from .responses import ByeResponse, CapabilitiesResponse, ErrorResponse, SaslResponse
from .sasl import SaslRequest, select_mechanism
from .transport import Transport, TransportFactory

ERROR_SASL = "error.sasl"
ERROR_AUTHENTICATION = "error.authentication"
PROGRESS_AUTHENTICATING = "progress.authenticating"


class SessionState(IntEnum):
    OFFLINE = 0
    CONNECTING = 1
    CONNECTED = 2
    DISCONNECTING = 3


class StatusCode(IntEnum):
    """First argument of ``on_channel_status``."""

    NEGOTIATION_FAILED = 2
    """Detail is ``error.sasl`` or ``error.authentication``."""

    AUTHENTICATING = 3
    """Detail is ``progress.authenticating``."""

    SERVER_ERROR = 4
    """Detail is the server or transport error message."""

    CAPABILITIES = 7
    """Detail is the CapabilitiesResponse, for listeners that display it."""


class SieveSession:
    """Connection state machine for one account.

    Args:
        account: Account configuration (host, login, TLS policy, ...).
        transport_factory: Builds a new unconnected transport per connect.
        sid: Session identifier. Defaults to the account identifier.
        logger: Optional logger, defaults to the ``SieveSession.<sid>`` logger.
        metrics: Optional Prometheus metrics collector.
    """

    def __init__(
        self,
        account: SieveAccount,
        transport_factory: TransportFactory,
        sid: str | None = None,
        logger: Logger | None = None,
        metrics: SessionMetrics | None = None,
    ):
        self.account = account
        self.sid = sid or account.account_id
        self._transport_factory = transport_factory
        self._logger = logger or get_logger("SieveSession", self.sid)
        self._metrics = metrics

        self._state = SessionState.OFFLINE
        self._transport: Transport | None = None
        self._next_channel = 0
        self._channels: list[str] = []
        self._listeners = ListenerRegistry(self._logger)

        self.capabilities: dict[str, Any] = {}
        self.extensions: list[str] = []

    def __repr__(self) -> str:
        return f"<SieveSession {self.sid} {self._state.name} channels={self._channels}>"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transport(self) -> Transport | None:
        return self._transport

    def is_connecting(self) -> bool:
        return self._state is SessionState.CONNECTING

    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    def is_disconnecting(self) -> bool:
        return self._state is SessionState.DISCONNECTING

    def is_disconnected(self) -> bool:
        return self._state is SessionState.OFFLINE

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Any) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Any) -> None:
        self._listeners.remove(listener)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def has_listener(self, listener: Any) -> bool:
        return listener in self._listeners

    def notify(self, event: SessionEvent, *args: Any) -> int:
        """Broadcast ``event`` to the listeners subscribed to it."""
        return self._listeners.dispatch(event, *args)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    @property
    def channels(self) -> tuple[str, ...]:
        return tuple(self._channels)

    def add_channel(self) -> str:
        """Allocate a new channel identifier.

        The caller must release it with :meth:`remove_channel`, otherwise the
        connection stays open.
        """
        cid = f"cid={self._next_channel}"
        self._next_channel += 1
        self._channels.append(cid)
        self._logger.debug("Channel added: %s %s", cid, self._channels)
        self._update_channel_gauge()
        return cid

    def remove_channel(self, cid: str) -> bool:
        """Release a channel. Returns False for unknown identifiers."""
        if cid not in self._channels:
            return False
        self._channels.remove(cid)
        self._logger.debug("Channel closed: %s %s", cid, self._channels)
        self._update_channel_gauge()
        return True

    def has_channel(self, cid: str) -> bool:
        return cid in self._channels

    def has_channels(self) -> bool:
        return bool(self._channels)

    def _update_channel_gauge(self) -> None:
        if self._metrics:
            self._metrics.set_channels(self.sid, len(self._channels))

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    def connect(self, hostname: str | None = None, port: int | None = None) -> None:
        """Open a new transport and start the login handshake.

        Progress and the final outcome are reported to listeners.

        Args:
            hostname: Overrides the account's hostname (used for referrals).
            port: Overrides the account's port.
        """
        self._state = SessionState.CONNECTING

        transport = self._transport_factory(self._logger)
        self._transport = transport
        transport.add_listener(_TransportEvents(self, transport))

        settings = self.account.settings
        if settings.keep_alive:
            transport.set_keep_alive_interval(settings.keep_alive_interval)

        request = InitRequest()
        request.add_error_listener(self._bind(self._on_request_error))
        request.add_response_listener(self._bind(self._on_init_response))
        transport.add_request(request)

        host = self.account.host
        if hostname is None:
            hostname = host.hostname
        if port is None:
            port = host.port

        self._logger.info("Connecting %s to %s:%s", self.sid, hostname, port)
        if self._metrics:
            self._metrics.inc_connect(self.sid)

        transport.connect(
            hostname,
            port,
            host.tls_enabled,
            self,
            self.account.proxy.get_proxy_info(),
        )

    def disconnect(
        self, force: bool = False, status: int | None = None, message: Any = None
    ) -> None:
        """Close the connection.

        Without ``force`` and with a live transport a LOGOUT is sent first and
        the session stays DISCONNECTING until the reply arrives. Otherwise the
        transport is dropped immediately and the session is OFFLINE on return.

        Args:
            force: Skip the LOGOUT request.
            status: Optional status code broadcast before disconnecting.
            message: Detail for the status broadcast.
        """
        self._state = SessionState.DISCONNECTING

        if status is not None:
            self.notify(SessionEvent.CHANNEL_STATUS, status, message)

        transport = self._transport
        if transport is None:
            self._state = SessionState.OFFLINE
            return

        if not force and transport.is_alive():
            request = LogoutRequest()
            request.add_response_listener(self._bind(self._on_logout_response))
            request.add_error_listener(self._bind(self._on_logout_response))
            transport.add_request(request)
            return

        self._drop_transport()
        self._state = SessionState.OFFLINE
        self._logger.info("Session %s disconnected", self.sid)

    def _drop_transport(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is not None:
            transport.disconnect()

    def _bind(self, callback: Callable[..., None]) -> Callable[..., None]:
        """Wrap a request callback so replies for a dropped transport are ignored."""
        transport = self._transport

        def handler(*args: Any) -> None:
            if transport is None or transport is not self._transport:
                self._logger.debug("Ignoring reply for a closed transport (%s)", self.sid)
                return
            callback(*args)

        return handler

    def _fail(self, reason: str, status: int, detail: Any, force: bool = True) -> None:
        if self._metrics:
            self._metrics.inc_failure(self.sid, reason)
        self.disconnect(force, status, detail)

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def _handshaking(self, step: str) -> bool:
        if self._state is SessionState.CONNECTING:
            return True
        self._logger.debug("Ignoring %s for %s (%s)", step, self.sid, self._state.name)
        return False

    def _on_init_response(self, response: CapabilitiesResponse) -> None:
        if not self._handshaking("greeting"):
            return
        host = self.account.host

        if not host.tls_enabled:
            self._authenticate(response)
            return

        if not response.get_tls() and not host.tls_forced:
            self._authenticate(response)
            return

        if not response.get_tls():
            self._logger.warning(
                "%s does not advertise STARTTLS but TLS is forced, trying anyway", self.sid
            )

        transport = self._transport
        transport.set_paused(True)

        request = StartTLSRequest()
        request.add_response_listener(self._bind(self._on_start_tls_response))
        request.add_error_listener(self._bind(self._on_request_error))
        transport.add_request(request)

    def _on_start_tls_response(self, response: Any) -> None:
        self._transport.start_tls(self._bind(self._on_start_tls_completed))

    def _on_start_tls_completed(self) -> None:
        transport = self._transport

        request = CapabilitiesRequest()
        request.add_response_listener(self._bind(self._authenticate))
        request.add_error_listener(self._bind(self._on_request_error))
        transport.add_request(request)

        # The server sends its capabilities unsolicited after STARTTLS and
        # once more for our explicit request; one of the two is consumed here.
        transport.add_request(InitRequest(), silent=True)

        transport.set_paused(False)

    def _authenticate(self, response: CapabilitiesResponse) -> None:
        if not self._handshaking("capabilities"):
            return
        transport = self._transport
        account = self.account

        self.capabilities = response.get_capabilities()
        transport.set_compatibility(self.capabilities)

        self.notify(SessionEvent.CHANNEL_STATUS, StatusCode.AUTHENTICATING, PROGRESS_AUTHENTICATING)

        if not account.login.has_username():
            self._on_login_response(None)
            return

        self.extensions = response.get_extensions()
        self.notify(SessionEvent.CHANNEL_STATUS, StatusCode.CAPABILITIES, response)

        forced = None
        if account.settings.has_forced_mechanism():
            forced = account.settings.forced_mechanism

        request_class = select_mechanism(response.get_sasl(), forced)
        if request_class is None:
            self._logger.warning(
                "No usable SASL mechanism for %s (advertised %s, forced %s)",
                self.sid,
                response.get_sasl(),
                forced,
            )
            self._fail(ERROR_SASL, StatusCode.NEGOTIATION_FAILED, ERROR_SASL)
            return

        request = request_class()
        request.add_error_listener(self._bind(self._on_request_error))
        request.set_username(account.login.username)

        if request.has_password():
            password = account.login.get_password()
            if password is None:
                self._logger.warning("No password available for %s", self.sid)
                self._fail(ERROR_AUTHENTICATION, StatusCode.NEGOTIATION_FAILED, ERROR_AUTHENTICATION)
                return
            request.set_password(password)

        request.add_response_listener(self._bind(lambda reply: self._on_sasl_response(request, reply)))

        if request.is_authorizable():
            authorization = account.authorization.get_authorization()
            if authorization is None:
                self._logger.warning("No authorization identity available for %s", self.sid)
                self._fail(ERROR_AUTHENTICATION, StatusCode.NEGOTIATION_FAILED, ERROR_AUTHENTICATION)
                return
            if authorization != "":
                request.set_authorization(authorization)

        self._logger.debug(
            "Authenticating %s as %s using %s", self.sid, account.login.username, request.mechanism
        )
        transport.add_request(request)

    def _on_sasl_response(self, request: SaslRequest, response: SaslResponse) -> None:
        if not self._handshaking("authentication reply"):
            return
        try:
            request.on_success(response.server_data if isinstance(response, SaslResponse) else None)
        except SaslError as exc:
            self._logger.warning("SASL verification failed for %s: %s", self.sid, exc)
            self._fail(ERROR_AUTHENTICATION, StatusCode.NEGOTIATION_FAILED, ERROR_AUTHENTICATION)
            return
        self._on_login_response(response)

    def _on_login_response(self, response: SaslResponse | None) -> None:
        if not self._handshaking("login"):
            return
        self._state = SessionState.CONNECTED
        self._logger.info("Session %s connected", self.sid)
        self.notify(SessionEvent.CHANNEL_CREATED, self._transport)

    def _on_logout_response(self, response: Any) -> None:
        self.disconnect(True)

    def _on_request_error(self, response: ErrorResponse) -> None:
        message = response.get_message()
        self._logger.warning("Server rejected request for %s: %s", self.sid, message)
        self._fail("server", StatusCode.SERVER_ERROR, message, force=False)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def on_idle(self) -> None:
        """Send a keep-alive request. The reply is not inspected."""
        transport = self._transport
        if transport is None or self._state is not SessionState.CONNECTED:
            self._logger.debug("Skipping keep-alive for %s (%s)", self.sid, self._state.name)
            return

        self._logger.debug("Sending keep alive packet for %s", self.sid)
        if transport.get_compatibility().noop:
            transport.add_request(NoopRequest())
        else:
            transport.add_request(CapabilitiesRequest())

    def on_bye_response(self, response: ByeResponse) -> None:
        if self._transport is None:
            self._logger.debug("Ignoring BYE for closed session %s", self.sid)
            return

        code = response.get_response_code()

        if code.equals_code("REFERRAL"):
            # Channels survive a referral; only the physical link is replaced.
            self._drop_transport()
            self._state = SessionState.OFFLINE
            self._logger.info(
                "Session %s referred to %s:%s, migrating channels %s",
                self.sid,
                code.hostname,
                code.port,
                self._channels,
            )
            if self._metrics:
                self._metrics.inc_referral(self.sid)
            self.connect(code.hostname, code.port)
            return

        # The server closes the connection after BYE, so no LOGOUT.
        message = response.get_message()
        self._logger.warning("Server closed session %s: %s", self.sid, message)
        self._fail("bye", StatusCode.SERVER_ERROR, message)

    def on_error(self, response: ErrorResponse) -> None:
        if self._transport is None:
            self._logger.debug("Ignoring transport error for closed session %s", self.sid)
            return
        message = response.get_message()
        self._logger.warning("Transport error on %s: %s", self.sid, message)
        self._fail("transport", StatusCode.SERVER_ERROR, message)

    def on_timeout(self, message: str) -> None:
        self.notify(SessionEvent.TIMEOUT, message)

    def on_disconnect(self) -> None:
        """The transport lost its connection."""
        if self._transport is None:
            return
        self._logger.info("Server disconnected %s, channels %s", self.sid, self._channels)
        self.notify(SessionEvent.DISCONNECT)
        self.disconnect(True)


class _TransportEvents:
    """Transport listener forwarding events only while its transport is current.

    A replaced transport (referral, forced reconnect) may still report a
    closed socket or a late timeout; those must not reach the session.
    """

    def __init__(self, session: SieveSession, transport: Transport):
        self.session = session
        self.transport = transport

    def _current(self, event: str) -> bool:
        if self.transport is self.session.transport:
            return True
        self.session._logger.debug(
            "Ignoring %s from a replaced transport (%s)", event, self.session.sid
        )
        return False

    def on_idle(self) -> None:
        if self._current("idle"):
            self.session.on_idle()

    def on_bye_response(self, response: ByeResponse) -> None:
        if self._current("BYE"):
            self.session.on_bye_response(response)

    def on_error(self, response: ErrorResponse) -> None:
        if self._current("error"):
            self.session.on_error(response)

    def on_timeout(self, message: str) -> None:
        if self._current("timeout"):
            self.session.on_timeout(message)

    def on_disconnect(self) -> None:
        if self._current("disconnect"):
            self.session.on_disconnect()


__all__ = [
    "ERROR_AUTHENTICATION",
    "ERROR_SASL",
    "PROGRESS_AUTHENTICATING",
    "SessionState",
    "SieveSession",
    "StatusCode",
]
