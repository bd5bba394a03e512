# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SASL mechanisms and the mechanism selection policy.

Each mechanism is a request object queued on the transport as an
``AUTHENTICATE`` command. Besides the listener plumbing inherited from
:class:`~sieve_session.requests.SieveRequest`, a mechanism computes the
client side of the exchange so the codec only has to move bytes:

- ``initial_response()`` returns the optional initial client response.
- ``on_challenge(challenge)`` answers one server challenge.

Supported mechanisms: PLAIN, LOGIN, CRAM-MD5, SCRAM-SHA-1 and EXTERNAL.

Selection follows RFC 5804: use the first advertised mechanism we support,
unless the account forces one. LOGIN is pinned to the lowest priority and is
only chosen when nothing else usable is advertised.

Example::

    request_class = select_mechanism(["LOGIN", "PLAIN"])
    assert request_class is SaslPlainRequest
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from typing import Iterable

from .exceptions import SaslError
from .requests import SieveRequest


class SaslRequest(SieveRequest):
    """Base class for an AUTHENTICATE request."""

    command = "AUTHENTICATE"
    mechanism = ""
    needs_password = True
    authorizable = False

    def __init__(self) -> None:
        super().__init__()
        self.username: str | None = None
        self.password: str | None = None
        self.authorization: str | None = None

    def set_username(self, username: str) -> None:
        self.username = username

    def set_password(self, password: str) -> None:
        self.password = password

    def set_authorization(self, authorization: str) -> None:
        self.authorization = authorization

    def has_password(self) -> bool:
        return self.needs_password

    def is_authorizable(self) -> bool:
        return self.authorizable

    def initial_response(self) -> bytes | None:
        return None

    def on_challenge(self, challenge: bytes) -> bytes:
        raise SaslError(self.mechanism, "unexpected server challenge")

    def on_success(self, server_data: bytes | None) -> None:
        """Check additional data sent with the final OK, if any."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.mechanism} user={self.username!r}>"


class SaslPlainRequest(SaslRequest):
    """RFC 4616 PLAIN: ``authzid NUL authcid NUL passwd``."""

    mechanism = "PLAIN"
    authorizable = True

    def initial_response(self) -> bytes:
        parts = [self.authorization or "", self.username or "", self.password or ""]
        return "\0".join(parts).encode("utf-8")


class SaslLoginRequest(SaslRequest):
    """Legacy LOGIN: the username and the password answer two challenges."""

    mechanism = "LOGIN"

    def __init__(self) -> None:
        super().__init__()
        self._step = 0

    def on_challenge(self, challenge: bytes) -> bytes:
        self._step += 1
        if self._step == 1:
            return (self.username or "").encode("utf-8")
        if self._step == 2:
            return (self.password or "").encode("utf-8")
        raise SaslError(self.mechanism, "too many challenges")


class SaslCramMd5Request(SaslRequest):
    """RFC 2195 CRAM-MD5: keyed MD5 digest of the server challenge."""

    mechanism = "CRAM-MD5"

    def on_challenge(self, challenge: bytes) -> bytes:
        digest = hmac.new(
            (self.password or "").encode("utf-8"), challenge, hashlib.md5
        ).hexdigest()
        return f"{self.username} {digest}".encode("utf-8")


def _saslname(value: str) -> str:
    return value.replace("=", "=3D").replace(",", "=2C")


def _parse_attributes(message: bytes, mechanism: str) -> dict[str, str]:
    try:
        text = message.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SaslError(mechanism, "challenge is not valid UTF-8") from exc
    attributes: dict[str, str] = {}
    for item in text.split(","):
        if len(item) < 2 or item[1] != "=":
            raise SaslError(mechanism, f"malformed attribute {item!r}")
        attributes[item[0]] = item[2:]
    return attributes


class SaslScramSha1Request(SaslRequest):
    """RFC 5802 SCRAM-SHA-1 without channel binding."""

    mechanism = "SCRAM-SHA-1"
    authorizable = True
    digest = hashlib.sha1

    def __init__(self, nonce: str | None = None) -> None:
        super().__init__()
        self._client_nonce = nonce or secrets.token_urlsafe(18)
        self._client_first_bare = ""
        self._gs2_header = ""
        self._server_signature: bytes | None = None
        self._verified = False
        self._step = 0

    def _hmac(self, key: bytes, message: bytes) -> bytes:
        return hmac.new(key, message, self.digest).digest()

    def initial_response(self) -> bytes:
        authzid = f"a={_saslname(self.authorization)}" if self.authorization else ""
        self._gs2_header = f"n,{authzid},"
        self._client_first_bare = f"n={_saslname(self.username or '')},r={self._client_nonce}"
        return (self._gs2_header + self._client_first_bare).encode("utf-8")

    def on_challenge(self, challenge: bytes) -> bytes:
        self._step += 1
        if self._step == 1:
            return self._client_final(challenge)
        if self._step == 2:
            self.verify_server_final(challenge)
            return b""
        raise SaslError(self.mechanism, "too many challenges")

    def _client_final(self, server_first: bytes) -> bytes:
        if not self._client_first_bare:
            self.initial_response()
        attributes = _parse_attributes(server_first, self.mechanism)
        if "e" in attributes:
            raise SaslError(self.mechanism, f"server error {attributes['e']}")
        nonce = attributes.get("r", "")
        if not nonce.startswith(self._client_nonce) or nonce == self._client_nonce:
            raise SaslError(self.mechanism, "server nonce does not extend client nonce")
        try:
            salt = base64.b64decode(attributes["s"], validate=True)
            iterations = int(attributes["i"])
        except (KeyError, ValueError) as exc:
            raise SaslError(self.mechanism, "missing salt or iteration count") from exc

        salted = hashlib.pbkdf2_hmac(
            self.digest().name, (self.password or "").encode("utf-8"), salt, iterations
        )
        client_key = self._hmac(salted, b"Client Key")
        stored_key = self.digest(client_key).digest()
        channel_binding = base64.b64encode(self._gs2_header.encode("utf-8")).decode("ascii")
        without_proof = f"c={channel_binding},r={nonce}"
        auth_message = ",".join(
            [self._client_first_bare, server_first.decode("utf-8"), without_proof]
        ).encode("utf-8")

        client_signature = self._hmac(stored_key, auth_message)
        proof = bytes(a ^ b for a, b in zip(client_key, client_signature))
        server_key = self._hmac(salted, b"Server Key")
        self._server_signature = self._hmac(server_key, auth_message)

        encoded_proof = base64.b64encode(proof).decode("ascii")
        return f"{without_proof},p={encoded_proof}".encode("utf-8")

    def on_success(self, server_data: bytes | None) -> None:
        if server_data:
            self.verify_server_final(server_data)
        elif not self._verified:
            raise SaslError(self.mechanism, "missing server signature")

    def verify_server_final(self, server_final: bytes) -> None:
        """Check the ``v=`` server signature, raising SaslError on mismatch."""
        if self._server_signature is None:
            raise SaslError(self.mechanism, "server final message before client final")
        attributes = _parse_attributes(server_final, self.mechanism)
        if "e" in attributes:
            raise SaslError(self.mechanism, f"server error {attributes['e']}")
        try:
            signature = base64.b64decode(attributes["v"], validate=True)
        except (KeyError, ValueError) as exc:
            raise SaslError(self.mechanism, "missing server signature") from exc
        if not hmac.compare_digest(signature, self._server_signature):
            raise SaslError(self.mechanism, "server signature mismatch")
        self._verified = True


class SaslExternalRequest(SaslRequest):
    """RFC 4422 EXTERNAL: identity comes from the TLS client certificate."""

    mechanism = "EXTERNAL"
    needs_password = False
    authorizable = True

    def initial_response(self) -> bytes:
        return (self.authorization or "").encode("utf-8")


MECHANISMS: dict[str, type[SaslRequest]] = {
    request_class.mechanism: request_class
    for request_class in (
        SaslPlainRequest,
        SaslCramMd5Request,
        SaslScramSha1Request,
        SaslExternalRequest,
        SaslLoginRequest,
    )
}

# Higher value = less preferred. Mechanisms not listed rank 0.
MECHANISM_PRIORITY: dict[str, int] = {"LOGIN": 1}


def resolve_mechanism(name: str) -> type[SaslRequest] | None:
    """Map a mechanism name (case-insensitive) to its request class."""
    return MECHANISMS.get(name.strip().upper())


def select_mechanism(
    advertised: Iterable[str], forced: str | None = None
) -> type[SaslRequest] | None:
    """Pick the SASL mechanism to authenticate with.

    Args:
        advertised: Mechanism names in the order the server listed them.
        forced: Mechanism configured on the account. When set, the
            advertised list is ignored entirely.

    Returns:
        The request class to instantiate, or None when no candidate is
        supported.
    """
    candidates = [forced] if forced else list(advertised)

    ranked: list[tuple[int, int, type[SaslRequest]]] = []
    for position, name in enumerate(candidates):
        request_class = resolve_mechanism(name)
        if request_class is None:
            continue
        ranked.append((MECHANISM_PRIORITY.get(request_class.mechanism, 0), position, request_class))

    if not ranked:
        return None
    return min(ranked, key=lambda item: (item[0], item[1]))[2]


__all__ = [
    "MECHANISMS",
    "MECHANISM_PRIORITY",
    "SaslCramMd5Request",
    "SaslExternalRequest",
    "SaslLoginRequest",
    "SaslPlainRequest",
    "SaslRequest",
    "SaslScramSha1Request",
    "resolve_mechanism",
    "select_mechanism",
]
