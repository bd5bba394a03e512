# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: a scripted transport, a recording listener and accounts."""

from __future__ import annotations

import pytest

from sieve_session.account import (
    AuthorizationConfig,
    HostConfig,
    LoginConfig,
    SessionSettings,
    SieveAccount,
)
from sieve_session.listeners import SessionListener
from sieve_session.responses import CapabilitiesResponse, Compatibility, SaslResponse


class FakeTransport:
    """Transport double that queues requests until the test answers them."""

    def __init__(self, logger=None):
        self.logger = logger
        self.listeners = []
        self.queue = []
        self.sent = []
        self.silent = []
        self.connect_args = None
        self.alive = False
        self.disconnect_calls = 0
        self.paused_history = []
        self.keep_alive_interval = None
        self.capabilities = None
        self.noop = False
        self.tls_callback = None

    # Transport interface

    def connect(self, hostname, port, use_tls, listener, proxy_info=None):
        self.connect_args = (hostname, port, use_tls, listener, proxy_info)
        self.alive = True

    def disconnect(self):
        self.disconnect_calls += 1
        self.alive = False

    def start_tls(self, on_complete):
        self.tls_callback = on_complete

    def set_paused(self, paused):
        self.paused_history.append(paused)

    def add_request(self, request, silent=False):
        self.queue.append(request)
        self.sent.append(request)
        if silent:
            self.silent.append(request)

    def is_alive(self):
        return self.alive

    def get_compatibility(self):
        return Compatibility(noop=self.noop)

    def set_compatibility(self, capabilities):
        self.capabilities = capabilities

    def set_keep_alive_interval(self, interval):
        self.keep_alive_interval = interval

    def add_listener(self, listener):
        self.listeners.append(listener)

    # Test helpers

    @property
    def head(self):
        return self.queue[0]

    def reply(self, response=None):
        request = self.queue.pop(0)
        request.on_response(response)
        return request

    def fail(self, response):
        request = self.queue.pop(0)
        request.on_error(response)
        return request

    def complete_tls(self):
        self.tls_callback()

    def sent_of(self, request_type):
        return [request for request in self.sent if isinstance(request, request_type)]


class TransportRecorder:
    """Transport factory keeping every transport it built."""

    def __init__(self):
        self.transports = []

    def __call__(self, logger):
        transport = FakeTransport(logger)
        self.transports.append(transport)
        return transport

    @property
    def last(self):
        return self.transports[-1]


class RecordingListener(SessionListener):
    """Listener implementing every session event."""

    def __init__(self, name="listener", log=None):
        self.name = name
        self.events = []
        self.log = log if log is not None else []

    def _record(self, *event):
        self.events.append(event)
        self.log.append((self.name,) + event)

    def on_channel_created(self, transport):
        self._record("created", transport)

    def on_channel_ready(self, cid):
        self._record("ready", cid)

    def on_channel_status(self, code, detail):
        self._record("status", code, detail)

    def on_channel_closed(self, cid):
        self._record("closed", cid)

    def on_disconnect(self):
        self._record("disconnect")

    def on_timeout(self, message):
        self._record("timeout", message)

    def of(self, kind):
        return [event for event in self.events if event[0] == kind]

    def statuses(self):
        return [(event[1], event[2]) for event in self.of("status")]


def capabilities(sasl=("PLAIN",), tls=False, version="1.0", extensions=("fileinto", "vacation")):
    caps = {"IMPLEMENTATION": "Dovecot Pigeonhole", "SIEVE": " ".join(extensions), "SASL": " ".join(sasl)}
    if version:
        caps["VERSION"] = version
    if tls:
        caps["STARTTLS"] = ""
    return CapabilitiesResponse(
        capabilities=caps,
        extensions=tuple(extensions),
        sasl=tuple(sasl),
        tls=tls,
        implementation="Dovecot Pigeonhole",
    )


def make_account(
    account_id="work",
    hostname="sieve.example.com",
    port=4190,
    tls_enabled=False,
    tls_forced=False,
    username="alice",
    password="secret",
    authorization="",
    forced_mechanism=None,
    keep_alive=True,
    **login_kwargs,
):
    return SieveAccount(
        account_id=account_id,
        host=HostConfig(hostname=hostname, port=port, tls_enabled=tls_enabled, tls_forced=tls_forced),
        login=LoginConfig(username=username, password=password, **login_kwargs),
        authorization=AuthorizationConfig(authorization=authorization),
        settings=SessionSettings(keep_alive=keep_alive, forced_mechanism=forced_mechanism),
    )


def complete_login(transport, sasl=("PLAIN",)):
    """Answer the greeting and the AUTHENTICATE request of a plain-text login."""
    transport.reply(capabilities(sasl=sasl))
    transport.reply(SaslResponse())


@pytest.fixture
def recorder():
    return TransportRecorder()


@pytest.fixture
def listener():
    return RecordingListener()
