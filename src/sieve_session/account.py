# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Account configuration dataclasses for ManageSieve sessions.

An account groups everything a session needs to reach and authenticate
against one server:
- account.host: hostname, port and TLS policy
- account.login: username and password source
- account.authorization: proxy authorization identity
- account.proxy: optional SOCKS/HTTP proxy for the transport
- account.settings: keep-alive and forced SASL mechanism

Credential storage is not handled here. Passwords and authorization
identities are either given inline or pulled from a provider callable
at authentication time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

DEFAULT_PORT = 4190
DEFAULT_KEEP_ALIVE_INTERVAL = 20 * 60 * 1000


@dataclass
class HostConfig:
    """Remote server address and TLS policy."""

    hostname: str = "localhost"
    """Server hostname or IP address."""

    port: int = DEFAULT_PORT
    """ManageSieve port (RFC 5804 assigns 4190)."""

    tls_enabled: bool = True
    """Upgrade the connection with STARTTLS when the server offers it."""

    tls_forced: bool = False
    """Require STARTTLS even when the server does not advertise it."""


@dataclass
class LoginConfig:
    """Authentication identity and password source."""

    username: str | None = None
    """Authentication identity. None means anonymous (no SASL exchange)."""

    password: str | None = None
    """Inline password, takes precedence over the provider."""

    password_provider: Callable[[], str | None] | None = field(default=None, repr=False)
    """Callable returning the password on demand, or None when unavailable."""

    def has_username(self) -> bool:
        return bool(self.username)

    def get_password(self) -> str | None:
        if self.password is not None:
            return self.password
        if self.password_provider is not None:
            return self.password_provider()
        return None


@dataclass
class AuthorizationConfig:
    """Identity to act as once authenticated (SASL authzid).

    An empty string means "authorize as myself" and is simply omitted from
    the exchange. None means the identity could not be obtained, which
    aborts authentication for mechanisms that support authorization.
    """

    authorization: str | None = ""
    """Inline authorization identity."""

    authorization_provider: Callable[[], str | None] | None = field(default=None, repr=False)
    """Callable returning the authorization identity on demand."""

    def get_authorization(self) -> str | None:
        if self.authorization_provider is not None:
            return self.authorization_provider()
        return self.authorization


@dataclass(frozen=True)
class ProxyInfo:
    """Proxy endpoint handed to the transport's connect call."""

    type: str
    host: str
    port: int


@dataclass
class ProxyConfig:
    """Optional proxy in front of the ManageSieve server."""

    type: str | None = None
    """Proxy type (socks4, socks5, http). None disables the proxy."""

    host: str | None = None
    port: int | None = None

    def get_proxy_info(self) -> ProxyInfo | None:
        if not self.type or not self.host or not self.port:
            return None
        return ProxyInfo(type=self.type, host=self.host, port=self.port)


@dataclass
class SessionSettings:
    """Per-account session behaviour."""

    keep_alive: bool = True
    """Send periodic keep-alive requests while connected."""

    keep_alive_interval: int = DEFAULT_KEEP_ALIVE_INTERVAL
    """Idle interval in milliseconds before a keep-alive is sent."""

    forced_mechanism: str | None = None
    """SASL mechanism to use regardless of what the server advertises."""

    def has_forced_mechanism(self) -> bool:
        return bool(self.forced_mechanism)


@dataclass
class SieveAccount:
    """Complete configuration for one ManageSieve account.

    Example:
        account = SieveAccount(
            account_id="work",
            host=HostConfig(hostname="sieve.example.com", tls_forced=True),
            login=LoginConfig(username="alice", password="secret"),
        )
    """

    account_id: str
    """Process-unique identifier, used as the session key by the pool."""

    host: HostConfig = field(default_factory=HostConfig)
    login: LoginConfig = field(default_factory=LoginConfig)
    authorization: AuthorizationConfig = field(default_factory=AuthorizationConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    settings: SessionSettings = field(default_factory=SessionSettings)


__all__ = [
    "AuthorizationConfig",
    "DEFAULT_KEEP_ALIVE_INTERVAL",
    "DEFAULT_PORT",
    "HostConfig",
    "LoginConfig",
    "ProxyConfig",
    "ProxyInfo",
    "SessionSettings",
    "SieveAccount",
]
