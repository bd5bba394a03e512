# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the SieveSession state machine driven by a scripted transport."""

import pytest

from sieve_session.account import ProxyConfig, ProxyInfo
from sieve_session.metrics import SessionMetrics
from sieve_session.requests import (
    CapabilitiesRequest,
    InitRequest,
    LogoutRequest,
    NoopRequest,
    StartTLSRequest,
)
from sieve_session.responses import (
    ByeResponse,
    ErrorResponse,
    ResponseCode,
    SaslResponse,
)
from sieve_session.sasl import (
    SaslCramMd5Request,
    SaslExternalRequest,
    SaslPlainRequest,
    SaslRequest,
    SaslScramSha1Request,
)
from sieve_session.session import SessionState, SieveSession, StatusCode

from conftest import capabilities, complete_login, make_account


@pytest.fixture
def make_session(recorder, listener):
    def factory(**account_kwargs):
        session = SieveSession(make_account(**account_kwargs), recorder)
        session.add_listener(listener)
        return session

    return factory


def connected_session(make_session, recorder, **account_kwargs):
    session = make_session(**account_kwargs)
    session.connect()
    complete_login(recorder.last)
    return session


class TestConnect:
    """Offline -> Connecting."""

    def test_connect_sets_up_transport(self, make_session, recorder):
        session = make_session()
        assert session.state is SessionState.OFFLINE
        assert session.transport is None

        session.connect()

        transport = recorder.last
        assert session.state is SessionState.CONNECTING
        assert session.transport is transport
        assert len(transport.listeners) == 1
        assert transport.keep_alive_interval == 20 * 60 * 1000
        assert isinstance(transport.head, InitRequest)
        assert transport.connect_args == ("sieve.example.com", 4190, False, session, None)

    def test_connect_overrides_and_proxy(self, make_session, recorder):
        session = make_session(tls_enabled=True)
        session.account.proxy = ProxyConfig(type="socks5", host="127.0.0.1", port=1080)

        session.connect("other.example.com", 2000)

        hostname, port, use_tls, _listener, proxy = recorder.last.connect_args
        assert (hostname, port, use_tls) == ("other.example.com", 2000, True)
        assert proxy == ProxyInfo(type="socks5", host="127.0.0.1", port=1080)

    def test_keep_alive_disabled(self, make_session, recorder):
        make_session(keep_alive=False).connect()
        assert recorder.last.keep_alive_interval is None


class TestTLS:
    """STARTTLS negotiation branch."""

    def test_tls_disabled_skips_starttls(self, make_session, recorder, listener):
        session = make_session(tls_enabled=False)
        session.connect()
        recorder.last.reply(capabilities(tls=True))

        assert not recorder.last.sent_of(StartTLSRequest)
        assert isinstance(recorder.last.head, SaslPlainRequest)
        assert listener.statuses()[0] == (StatusCode.AUTHENTICATING, "progress.authenticating")

    def test_tls_enabled_but_not_advertised_skips_starttls(self, make_session, recorder):
        session = make_session(tls_enabled=True)
        session.connect()
        recorder.last.reply(capabilities(tls=False))

        assert not recorder.last.sent_of(StartTLSRequest)
        assert isinstance(recorder.last.head, SaslPlainRequest)

    def test_starttls_upgrade_sequence(self, make_session, recorder, listener):
        session = make_session(tls_enabled=True)
        session.connect()
        transport = recorder.last

        transport.reply(capabilities(tls=True))
        assert transport.paused_history == [True]
        assert isinstance(transport.head, StartTLSRequest)
        assert listener.statuses() == []

        transport.reply(None)
        assert transport.tls_callback is not None

        transport.complete_tls()
        assert transport.paused_history == [True, False]
        assert isinstance(transport.queue[0], CapabilitiesRequest)
        assert isinstance(transport.queue[1], InitRequest)
        assert transport.silent == [transport.queue[1]]

        transport.reply(capabilities(sasl=("PLAIN",), tls=True))
        transport.reply(capabilities(sasl=("PLAIN",), tls=True))

        assert isinstance(transport.head, SaslPlainRequest)
        transport.reply(SaslResponse())

        assert session.is_connected()
        assert listener.of("created") == [("created", transport)]

    def test_forced_tls_without_server_support_does_not_authenticate(
        self, make_session, recorder, listener
    ):
        session = make_session(tls_enabled=True, tls_forced=True)
        session.connect()
        transport = recorder.last

        transport.reply(capabilities(tls=False))

        assert isinstance(transport.head, StartTLSRequest)
        assert not [r for r in transport.sent if isinstance(r, SaslRequest)]
        assert (StatusCode.AUTHENTICATING, "progress.authenticating") not in listener.statuses()

        transport.fail(ErrorResponse(message="STARTTLS not supported"))

        assert listener.statuses() == [(StatusCode.SERVER_ERROR, "STARTTLS not supported")]
        assert session.is_disconnecting()
        assert isinstance(transport.head, LogoutRequest)

        transport.reply(None)
        assert session.is_disconnected()
        assert session.transport is None
        assert transport.disconnect_calls == 1
        assert not listener.of("created")


class TestAuthentication:
    """Mechanism selection and credential checks."""

    def test_plain_login(self, make_session, recorder, listener):
        session = make_session()
        session.connect()
        transport = recorder.last
        response = capabilities(sasl=("LOGIN", "PLAIN"))
        transport.reply(response)

        request = transport.head
        assert isinstance(request, SaslPlainRequest)
        assert request.username == "alice"
        assert request.password == "secret"
        assert request.authorization is None
        assert transport.capabilities == response.capabilities
        assert session.extensions == ["fileinto", "vacation"]
        assert listener.statuses() == [
            (StatusCode.AUTHENTICATING, "progress.authenticating"),
            (StatusCode.CAPABILITIES, response),
        ]

        transport.reply(SaslResponse())
        assert session.state is SessionState.CONNECTED
        assert listener.of("created") == [("created", transport)]

    def test_anonymous_login_skips_sasl(self, make_session, recorder, listener):
        session = make_session(username=None)
        session.connect()
        recorder.last.reply(capabilities())

        assert session.is_connected()
        assert not [r for r in recorder.last.sent if isinstance(r, SaslRequest)]
        assert listener.statuses() == [(StatusCode.AUTHENTICATING, "progress.authenticating")]
        assert listener.of("created") == [("created", recorder.last)]

    def test_no_usable_mechanism_fails_with_sasl_error(self, make_session, recorder, listener):
        session = make_session()
        session.connect()
        transport = recorder.last
        transport.reply(capabilities(sasl=("GSSAPI",)))

        assert listener.statuses()[-1] == (StatusCode.NEGOTIATION_FAILED, "error.sasl")
        assert session.is_disconnected()
        assert session.transport is None
        assert transport.disconnect_calls == 1
        assert not transport.sent_of(LogoutRequest)

    def test_forced_mechanism_overrides_advertised(self, make_session, recorder):
        session = make_session(forced_mechanism="CRAM-MD5")
        session.connect()
        recorder.last.reply(capabilities(sasl=("PLAIN",)))
        assert isinstance(recorder.last.head, SaslCramMd5Request)

    def test_missing_password_fails_with_authentication_error(
        self, make_session, recorder, listener
    ):
        session = make_session(password=None)
        session.connect()
        recorder.last.reply(capabilities())

        assert listener.statuses()[-1] == (StatusCode.NEGOTIATION_FAILED, "error.authentication")
        assert session.is_disconnected()

    def test_password_provider_is_consulted(self, make_session, recorder):
        session = make_session(password=None, password_provider=lambda: "from-keyring")
        session.connect()
        recorder.last.reply(capabilities())
        assert recorder.last.head.password == "from-keyring"

    def test_external_does_not_ask_for_password(self, make_session, recorder):
        def no_password():
            raise AssertionError("password requested for EXTERNAL")

        session = make_session(password=None, password_provider=no_password)
        session.connect()
        recorder.last.reply(capabilities(sasl=("EXTERNAL",)))

        request = recorder.last.head
        assert isinstance(request, SaslExternalRequest)
        assert request.password is None

    def test_missing_authorization_fails_for_authorizable_mechanism(
        self, make_session, recorder, listener
    ):
        session = make_session(authorization=None)
        session.connect()
        recorder.last.reply(capabilities(sasl=("PLAIN",)))

        assert listener.statuses()[-1] == (StatusCode.NEGOTIATION_FAILED, "error.authentication")
        assert session.is_disconnected()

    def test_missing_authorization_ignored_for_non_authorizable_mechanism(
        self, make_session, recorder
    ):
        session = make_session(authorization=None)
        session.connect()
        recorder.last.reply(capabilities(sasl=("CRAM-MD5",)))
        assert isinstance(recorder.last.head, SaslCramMd5Request)

    def test_authorization_identity_is_passed(self, make_session, recorder):
        session = make_session(authorization="shared-mailbox")
        session.connect()
        recorder.last.reply(capabilities(sasl=("PLAIN",)))
        assert recorder.last.head.authorization == "shared-mailbox"

    def test_rejected_authentication_logs_out(self, make_session, recorder, listener):
        session = make_session()
        session.connect()
        transport = recorder.last
        transport.reply(capabilities())

        transport.fail(ErrorResponse(message="Authentication failed."))

        assert listener.statuses()[-1] == (StatusCode.SERVER_ERROR, "Authentication failed.")
        assert session.is_disconnecting()
        transport.reply(None)
        assert session.is_disconnected()

    def test_scram_server_signature_mismatch(self, make_session, recorder, listener):
        session = make_session(forced_mechanism="SCRAM-SHA-1")
        session.connect()
        transport = recorder.last
        transport.reply(capabilities(sasl=("SCRAM-SHA-1",)))

        request = transport.head
        request.initial_response()
        nonce = request._client_nonce
        request.on_challenge(f"r={nonce}srv,s=QSXCR+Q6sek8bf92,i=4096".encode())

        transport.reply(SaslResponse(server_data=b"v=AAAAAAAAAAAAAAAAAAAAAAAAAAA="))

        assert isinstance(request, SaslScramSha1Request)
        assert listener.statuses()[-1] == (StatusCode.NEGOTIATION_FAILED, "error.authentication")
        assert session.is_disconnected()
        assert not listener.of("created")

    def test_scram_success_without_server_signature(self, make_session, recorder, listener):
        session = make_session(forced_mechanism="SCRAM-SHA-1")
        session.connect()
        transport = recorder.last
        transport.reply(capabilities(sasl=("SCRAM-SHA-1",)))

        transport.reply(SaslResponse())

        assert listener.statuses()[-1] == (StatusCode.NEGOTIATION_FAILED, "error.authentication")
        assert session.is_disconnected()
        assert not listener.of("created")


class TestDisconnect:
    """Graceful and forced teardown."""

    def test_disconnect_during_anonymous_greeting(self, make_session, recorder, listener):
        session = make_session(username=None)
        session.connect()
        transport = recorder.last

        session.disconnect()
        assert isinstance(transport.queue[1], LogoutRequest)

        transport.reply(capabilities())

        assert session.is_disconnecting()
        assert listener.of("created") == []
        assert listener.statuses() == []

        transport.reply(None)
        assert session.is_disconnected()
        assert transport.disconnect_calls == 1

    def test_late_sasl_reply_after_disconnect(self, make_session, recorder, listener):
        session = make_session()
        session.connect()
        transport = recorder.last
        transport.reply(capabilities())

        session.disconnect()
        transport.reply(SaslResponse())

        assert session.is_disconnecting()
        assert listener.of("created") == []

    def test_graceful_disconnect_waits_for_logout(self, make_session, recorder):
        session = connected_session(make_session, recorder)
        transport = recorder.last

        session.disconnect()

        assert session.is_disconnecting()
        assert isinstance(transport.head, LogoutRequest)
        assert transport.disconnect_calls == 0

        transport.reply(None)
        assert session.is_disconnected()
        assert session.transport is None
        assert transport.disconnect_calls == 1

    def test_forced_disconnect_is_immediate(self, make_session, recorder):
        session = connected_session(make_session, recorder)
        session.disconnect(force=True)

        assert session.is_disconnected()
        assert recorder.last.disconnect_calls == 1
        assert not recorder.last.sent_of(LogoutRequest)

    def test_disconnect_with_dead_transport_skips_logout(self, make_session, recorder):
        session = connected_session(make_session, recorder)
        recorder.last.alive = False

        session.disconnect()

        assert session.is_disconnected()
        assert not recorder.last.sent_of(LogoutRequest)

    def test_disconnect_broadcasts_status(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        session.disconnect(True, 4, "going away")
        assert listener.statuses()[-1] == (4, "going away")

    def test_disconnect_when_offline(self, make_session, listener):
        session = make_session()
        session.disconnect()
        assert session.is_disconnected()

    def test_disconnect_keeps_channels(self, make_session, recorder):
        session = make_session()
        cid = session.add_channel()
        session.connect()
        complete_login(recorder.last)

        session.disconnect(force=True)

        assert session.has_channel(cid)


class TestServerEvents:
    """BYE, referrals, transport errors, timeouts and keep-alive."""

    def test_referral_reconnects_and_keeps_channels(self, make_session, recorder, listener):
        session = make_session()
        channels = [session.add_channel(), session.add_channel()]
        session.connect()
        old = recorder.last
        complete_login(old)
        events_before = list(listener.events)

        session.on_bye_response(
            ByeResponse(code=ResponseCode("REFERRAL", "backup.example.com", 4191), message="moved")
        )

        new = recorder.last
        assert new is not old
        assert old.disconnect_calls == 1
        assert new.connect_args[:2] == ("backup.example.com", 4191)
        assert session.state is SessionState.CONNECTING
        assert session.transport is new
        assert list(session.channels) == channels
        assert listener.events == events_before

        complete_login(new)
        assert session.is_connected()
        assert listener.of("created")[-1] == ("created", new)

    def test_replies_for_old_transport_are_ignored(self, make_session, recorder):
        session = make_session()
        session.connect()
        old = recorder.last
        session.on_bye_response(ByeResponse(code=ResponseCode("referral", "other", 4190)))

        old.reply(capabilities())

        assert session.is_connecting()
        assert not [r for r in old.sent if isinstance(r, SaslRequest)]

    def test_bye_without_referral_is_a_forced_failure(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        transport = recorder.last

        session.on_bye_response(ByeResponse(code=ResponseCode("TRYLATER"), message="Shutting down"))

        assert listener.statuses()[-1] == (StatusCode.SERVER_ERROR, "Shutting down")
        assert session.is_disconnected()
        assert session.transport is None
        assert transport.disconnect_calls == 1
        assert not transport.sent_of(LogoutRequest)

    def test_transport_error_is_a_forced_failure(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        session.on_error(ErrorResponse(message="Connection reset"))

        assert listener.statuses()[-1] == (StatusCode.SERVER_ERROR, "Connection reset")
        assert session.is_disconnected()
        assert not recorder.last.sent_of(LogoutRequest)

    def test_transport_disconnect_notifies_listeners(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        session.on_disconnect()

        assert listener.of("disconnect") == [("disconnect",)]
        assert session.is_disconnected()

        session.on_disconnect()
        assert listener.of("disconnect") == [("disconnect",)]

    def test_timeout_is_forwarded_without_state_change(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        session.on_timeout("Server did not answer")

        assert listener.of("timeout") == [("timeout", "Server did not answer")]
        assert session.is_connected()

    def test_keep_alive_uses_noop_when_supported(self, make_session, recorder):
        session = connected_session(make_session, recorder)
        recorder.last.noop = True

        session.on_idle()
        assert isinstance(recorder.last.head, NoopRequest)

    def test_keep_alive_falls_back_to_capabilities(self, make_session, recorder):
        session = connected_session(make_session, recorder)
        session.on_idle()
        assert isinstance(recorder.last.head, CapabilitiesRequest)

    def test_keep_alive_ignored_while_connecting(self, make_session, recorder):
        session = make_session()
        session.connect()
        session.on_idle()
        assert len(recorder.last.sent) == 1

    def test_events_from_current_transport_reach_session(self, make_session, recorder, listener):
        session = connected_session(make_session, recorder)
        events = recorder.last.listeners[0]

        events.on_timeout("slow")
        events.on_idle()
        assert listener.of("timeout") == [("timeout", "slow")]
        assert isinstance(recorder.last.head, CapabilitiesRequest)

        events.on_disconnect()
        assert listener.of("disconnect") == [("disconnect",)]
        assert session.is_disconnected()

    def test_events_from_referred_away_transport_are_ignored(
        self, make_session, recorder, listener
    ):
        session = connected_session(make_session, recorder)
        old = recorder.last
        session.on_bye_response(
            ByeResponse(code=ResponseCode("REFERRAL", "backup.example.com", 4191))
        )
        new = recorder.last
        stale = old.listeners[0]
        statuses_before = listener.statuses()

        stale.on_disconnect()
        stale.on_error(ErrorResponse(message="Connection reset by peer"))
        stale.on_bye_response(ByeResponse(message="Bye"))
        stale.on_timeout("late")
        stale.on_idle()

        assert session.is_connecting()
        assert session.transport is new
        assert new.disconnect_calls == 0
        assert len(new.sent) == 1
        assert listener.of("disconnect") == []
        assert listener.of("timeout") == []
        assert listener.statuses() == statuses_before

        complete_login(new)
        assert session.is_connected()


class TestChannels:
    def test_channel_ids_are_unique_and_increasing(self, make_session):
        session = make_session()
        assert [session.add_channel() for _ in range(3)] == ["cid=0", "cid=1", "cid=2"]
        assert session.remove_channel("cid=1")
        assert session.add_channel() == "cid=3"
        assert session.channels == ("cid=0", "cid=2", "cid=3")

    def test_remove_unknown_channel(self, make_session):
        session = make_session()
        assert session.remove_channel("cid=7") is False
        assert not session.has_channels()


def test_metrics_are_recorded(recorder):
    metrics = SessionMetrics()
    session = SieveSession(make_account(), recorder, metrics=metrics)
    session.add_channel()
    session.connect()
    recorder.last.reply(capabilities(sasl=("GSSAPI",)))

    output = metrics.generate_latest().decode()
    assert 'sieve_connects_total{account_id="work"} 1.0' in output
    assert 'sieve_failures_total{account_id="work",reason="error.sasl"} 1.0' in output
    assert 'sieve_channels_open{account_id="work"} 1.0' in output
