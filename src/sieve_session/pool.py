# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Connection pool mapping accounts to shared ManageSieve sessions.

Most ManageSieve servers refuse concurrent connections for one account, so
every consumer of an account shares a single :class:`SieveSession`. Each
consumer holds a *channel*, a lightweight lease identified by a string. The
session connects when the first channel is opened and is closed and evicted
once the last channel is released, so there is no explicit close-session
operation.

Example:
    Sharing one connection between two consumers::

        pool = SieveConnectionPool(accounts.__getitem__, transport_factory)

        sid = pool.create_session("work")
        cid = pool.create_channel(sid)
        pool.add_session_listener(sid, ui_listener)
        pool.open_channel(sid, cid)        # connects, fires on_channel_created

        transport = pool.get_channel(sid, cid)
        ...
        pool.close_channel(sid, cid)       # last channel: logout and evict

    Awaiting the handshake from asyncio code::

        transport = await pool.acquire_channel(sid, cid, timeout=30)
"""

from __future__ import annotations

import asyncio
from logging import Logger
from typing import Any, Callable, Mapping

from .account import SieveAccount
from .exceptions import (
    InvalidChannelError,
    InvalidSessionError,
    SessionClosedError,
    UnknownAccountError,
)
from .listeners import SessionEvent, SessionListener
from .logger import get_logger
from .metrics import SessionMetrics
from .session import SieveSession, StatusCode
from .transport import Transport, TransportFactory

AccountProvider = Callable[[str], SieveAccount | None]


class SieveConnectionPool:
    """Registry of sessions keyed by account identifier.

    At most one session exists per account. Create one pool per process and
    hand it to the components that need ManageSieve access; call
    :meth:`close` on shutdown.

    Attributes:
        transport_factory: Factory passed on to every session.
        metrics: Optional Prometheus metrics shared with the sessions.
    """

    def __init__(
        self,
        account_provider: AccountProvider,
        transport_factory: TransportFactory,
        logger: Logger | None = None,
        metrics: SessionMetrics | None = None,
    ):
        """Initialize an empty pool.

        Args:
            account_provider: Returns the account configuration for an
                account identifier. May raise KeyError or return None for
                unknown accounts.
            transport_factory: Builds the transport for each connect.
            logger: Optional logger. Sessions log under a child named after
                their identifier.
            metrics: Optional metrics collector.
        """
        self._account_provider = account_provider
        self.transport_factory = transport_factory
        self._logger = logger or get_logger("SieveConnectionPool")
        self.metrics = metrics
        self._sessions: dict[str, SieveSession] = {}

    @classmethod
    def from_accounts(
        cls,
        accounts: Mapping[str, SieveAccount],
        transport_factory: TransportFactory,
        **kwargs: Any,
    ) -> SieveConnectionPool:
        """Build a pool over a fixed mapping of accounts."""
        return cls(accounts.get, transport_factory, **kwargs)

    def __contains__(self, sid: str) -> bool:
        return sid in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> dict[str, SieveSession]:
        return dict(self._sessions)

    def get_session(self, sid: str) -> SieveSession | None:
        return self._sessions.get(sid)

    def _session(self, sid: str, operation: str) -> SieveSession:
        session = self._sessions.get(sid)
        if session is None:
            raise InvalidSessionError(sid, operation)
        return session

    def _update_session_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_sessions(len(self._sessions))

    # ------------------------------------------------------------------
    # Session and channel lifecycle
    # ------------------------------------------------------------------

    def create_session(self, account_id: str) -> str:
        """Return the session handle for an account, creating it if needed.

        The account identifier is the handle. The session starts OFFLINE and
        does not connect until a channel is opened.

        Raises:
            UnknownAccountError: The account provider knows no such account.
        """
        sid = account_id
        if sid in self._sessions:
            return sid

        try:
            account = self._account_provider(account_id)
        except KeyError:
            account = None
        if account is None:
            raise UnknownAccountError(account_id)

        self._sessions[sid] = SieveSession(
            account,
            self.transport_factory,
            sid=sid,
            logger=self._logger.getChild(sid),
            metrics=self.metrics,
        )
        self._logger.debug("Session created: %s", sid)
        self._update_session_gauge()
        return sid

    def create_channel(self, sid: str) -> str:
        """Allocate a channel on a session. Does not connect."""
        return self._session(sid, "create_channel").add_channel()

    def open_channel(self, sid: str, cid: str) -> None:
        """Make sure the session behind a channel is connecting or connected.

        - CONNECTING: nothing to do, ``on_channel_created`` follows.
        - CONNECTED: ``on_channel_ready(cid)`` is fired immediately.
        - DISCONNECTING: the pending logout is cut short, then reconnect.
        - OFFLINE: start connecting.
        """
        session = self._session(sid, "open_channel")
        if not session.has_channel(cid):
            raise InvalidChannelError(sid, cid, "open_channel")

        if session.is_connecting():
            return

        if session.is_connected():
            session.notify(SessionEvent.CHANNEL_READY, cid)
            return

        if session.is_disconnecting():
            self._logger.debug("Forcing pending disconnect of %s before reconnecting", sid)
            session.disconnect(force=True)

        session.connect()

    def close_channel(self, sid: str, cid: str) -> None:
        """Release a channel. Unknown sessions and channels are ignored.

        When the session has no channels left, its listeners are dropped and
        it is disconnected and removed from the pool.
        """
        session = self._sessions.get(sid)
        if session is None:
            return

        if session.remove_channel(cid):
            session.notify(SessionEvent.CHANNEL_CLOSED, cid)

        # A listener may have closed the session already.
        if self._sessions.get(sid) is not session or session.has_channels():
            return

        session.clear_listeners()
        session.disconnect()
        del self._sessions[sid]
        self._logger.debug("Session released: %s", sid)
        self._update_session_gauge()

    def get_channel(self, sid: str, cid: str) -> Transport:
        """Return the live transport shared by a channel.

        Raises:
            InvalidSessionError: Unknown session.
            InvalidChannelError: Unknown channel.
            SessionClosedError: The session has no live transport.
        """
        session = self._session(sid, "get_channel")
        if not session.has_channel(cid):
            raise InvalidChannelError(sid, cid, "get_channel")

        transport = session.transport
        if transport is None or not transport.is_alive():
            raise SessionClosedError(sid, cid)
        return transport

    def add_session_listener(self, sid: str, listener: Any) -> None:
        self._session(sid, "add_session_listener").add_listener(listener)

    def remove_session_listener(self, sid: str, listener: Any) -> None:
        session = self._sessions.get(sid)
        if session is not None:
            session.remove_listener(listener)

    def close(self) -> None:
        """Force-disconnect every session and empty the pool."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session.clear_listeners()
            session.disconnect(force=True)
        if sessions:
            self._logger.info("Connection pool closed (%d sessions)", len(sessions))
        self._update_session_gauge()

    # ------------------------------------------------------------------
    # asyncio helpers
    # ------------------------------------------------------------------

    async def acquire_channel(self, sid: str, cid: str, timeout: float | None = None) -> Transport:
        """Open a channel and wait until its session is usable.

        Args:
            sid: Session handle from :meth:`create_session`.
            cid: Channel handle from :meth:`create_channel`.
            timeout: Seconds to wait for the handshake, None waits forever.

        Returns:
            The live transport.

        Raises:
            SessionClosedError: The handshake failed, the session was
                disconnected or the channel was closed while waiting.
            asyncio.TimeoutError: The handshake did not finish in time.
        """
        session = self._session(sid, "acquire_channel")
        if not session.has_channel(cid):
            raise InvalidChannelError(sid, cid, "acquire_channel")

        waiter = _ChannelWaiter(session, cid, asyncio.get_running_loop().create_future())
        session.add_listener(waiter)
        try:
            self.open_channel(sid, cid)
            return await asyncio.wait_for(waiter.future, timeout)
        finally:
            session.remove_listener(waiter)


class _ChannelWaiter(SessionListener):
    """One-shot listener resolving a future once a channel is usable."""

    def __init__(self, session: SieveSession, cid: str, future: asyncio.Future):
        self.session = session
        self.cid = cid
        self.future = future

    def _resolve(self, transport: Any) -> None:
        if not self.future.done():
            self.future.set_result(transport)

    def _reject(self, reason: str) -> None:
        if not self.future.done():
            self.future.set_exception(SessionClosedError(self.session.sid, self.cid, reason))

    def on_channel_created(self, transport: Any) -> None:
        self._resolve(transport)

    def on_channel_ready(self, cid: str) -> None:
        if cid == self.cid:
            self._resolve(self.session.transport)

    def on_channel_status(self, code: int, detail: Any) -> None:
        if code in (StatusCode.NEGOTIATION_FAILED, StatusCode.SERVER_ERROR):
            self._reject(str(detail))

    def on_channel_closed(self, cid: str) -> None:
        if cid == self.cid:
            self._reject("channel closed")

    def on_disconnect(self) -> None:
        self._reject("disconnected")


__all__ = ["AccountProvider", "SieveConnectionPool"]
