# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Session event listeners and snapshot dispatch.

Each event has its own small interface. A listener subscribes to an event by
inheriting from that interface, so subscription is declared by the class and
never guessed from the methods it happens to have:

==================  ========================  ===============================
Event               Interface                 Method
==================  ========================  ===============================
CHANNEL_CREATED     ChannelCreatedListener    on_channel_created(transport)
CHANNEL_READY       ChannelReadyListener      on_channel_ready(cid)
CHANNEL_STATUS      ChannelStatusListener     on_channel_status(code, detail)
CHANNEL_CLOSED      ChannelClosedListener     on_channel_closed(cid)
DISCONNECT          DisconnectListener        on_disconnect()
TIMEOUT             TimeoutListener           on_timeout(message)
==================  ========================  ===============================

:class:`SessionListener` subscribes to everything with no-op handlers;
override the ones you need.

Dispatch takes a snapshot of the matching listeners before calling any of
them, so a handler may add or remove listeners (itself included) safely.
Listeners added last are called first.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from logging import Logger
from typing import Any

from .logger import get_logger


class SessionEvent(str, Enum):
    CHANNEL_CREATED = "on_channel_created"
    CHANNEL_READY = "on_channel_ready"
    CHANNEL_STATUS = "on_channel_status"
    CHANNEL_CLOSED = "on_channel_closed"
    DISCONNECT = "on_disconnect"
    TIMEOUT = "on_timeout"


class ChannelCreatedListener(ABC):
    @abstractmethod
    def on_channel_created(self, transport: Any) -> None:
        """The session finished its handshake on ``transport``."""


class ChannelReadyListener(ABC):
    @abstractmethod
    def on_channel_ready(self, cid: str) -> None:
        """A channel was opened on an already connected session."""


class ChannelStatusListener(ABC):
    @abstractmethod
    def on_channel_status(self, code: int, detail: Any) -> None:
        """Progress or failure, see :class:`~sieve_session.session.StatusCode`."""


class ChannelClosedListener(ABC):
    @abstractmethod
    def on_channel_closed(self, cid: str) -> None: ...


class DisconnectListener(ABC):
    @abstractmethod
    def on_disconnect(self) -> None: ...


class TimeoutListener(ABC):
    @abstractmethod
    def on_timeout(self, message: str) -> None: ...


class SessionListener(
    ChannelCreatedListener,
    ChannelReadyListener,
    ChannelStatusListener,
    ChannelClosedListener,
    DisconnectListener,
    TimeoutListener,
):
    """Listener for every session event. All handlers do nothing by default."""

    def on_channel_created(self, transport: Any) -> None:
        pass

    def on_channel_ready(self, cid: str) -> None:
        pass

    def on_channel_status(self, code: int, detail: Any) -> None:
        pass

    def on_channel_closed(self, cid: str) -> None:
        pass

    def on_disconnect(self) -> None:
        pass

    def on_timeout(self, message: str) -> None:
        pass


EVENT_INTERFACES: dict[SessionEvent, type] = {
    SessionEvent.CHANNEL_CREATED: ChannelCreatedListener,
    SessionEvent.CHANNEL_READY: ChannelReadyListener,
    SessionEvent.CHANNEL_STATUS: ChannelStatusListener,
    SessionEvent.CHANNEL_CLOSED: ChannelClosedListener,
    SessionEvent.DISCONNECT: DisconnectListener,
    SessionEvent.TIMEOUT: TimeoutListener,
}


class ListenerRegistry:
    """Ordered set of listeners with per-event fan-out."""

    def __init__(self, logger: Logger | None = None):
        self._listeners: list[Any] = []
        self._logger = logger or get_logger("SieveListeners")

    def add(self, listener: Any) -> None:
        """Register ``listener``. Registering the same object twice is a no-op."""
        if listener not in self:
            self._listeners.append(listener)

    def remove(self, listener: Any) -> None:
        """Remove every registration of ``listener``. Unknown listeners are ignored."""
        self._listeners = [item for item in self._listeners if item is not listener]

    def clear(self) -> None:
        self._listeners = []

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: Any) -> bool:
        return any(item is listener for item in self._listeners)

    def subscribers(self, event: SessionEvent) -> list[Any]:
        interface = EVENT_INTERFACES[event]
        return [item for item in self._listeners if isinstance(item, interface)]

    def has_subscribers(self, event: SessionEvent) -> bool:
        return bool(self.subscribers(event))

    def dispatch(self, event: SessionEvent, *args: Any) -> int:
        """Deliver ``event`` to every subscribed listener.

        Returns:
            The number of listeners invoked.
        """
        snapshot = self.subscribers(event)
        if not snapshot:
            self._logger.debug("No listener for %s", event.value)
            return 0

        self._logger.debug("Invoking %d listener(s) for %s", len(snapshot), event.value)
        for listener in reversed(snapshot):
            getattr(listener, event.value)(*args)
        return len(snapshot)


__all__ = [
    "ChannelClosedListener",
    "ChannelCreatedListener",
    "ChannelReadyListener",
    "ChannelStatusListener",
    "DisconnectListener",
    "EVENT_INTERFACES",
    "ListenerRegistry",
    "SessionEvent",
    "SessionListener",
    "TimeoutListener",
]
