# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ManageSieve (RFC 5804) session and connection pool management.

Features:
    - One physical connection per account, shared by any number of channels
    - Login handshake with optional or forced STARTTLS
    - SASL mechanism selection (PLAIN, CRAM-MD5, SCRAM-SHA-1, EXTERNAL, LOGIN)
    - Transparent server referrals
    - Keep-alive while idle, graceful LOGOUT on release
    - Listener events for UI and glue code, asyncio helper for awaiting channels
    - Prometheus metrics and INI account configuration

Example::

    from sieve_session import SieveConnectionPool, load_accounts

    pool = SieveConnectionPool.from_accounts(load_accounts("accounts.ini"), transport_factory)
    sid = pool.create_session("work")
    cid = pool.create_channel(sid)
    transport = await pool.acquire_channel(sid, cid, timeout=30)
"""

from .account import (
    AuthorizationConfig,
    HostConfig,
    LoginConfig,
    ProxyConfig,
    ProxyInfo,
    SessionSettings,
    SieveAccount,
)
from .config_loader import load_accounts
from .exceptions import (
    ConfigError,
    InvalidChannelError,
    InvalidSessionError,
    SaslError,
    SessionClosedError,
    SieveSessionError,
    UnknownAccountError,
)
from .listeners import ListenerRegistry, SessionEvent, SessionListener
from .metrics import SessionMetrics
from .pool import SieveConnectionPool
from .session import SessionState, SieveSession, StatusCode

__all__ = [
    "AuthorizationConfig",
    "ConfigError",
    "HostConfig",
    "InvalidChannelError",
    "InvalidSessionError",
    "ListenerRegistry",
    "LoginConfig",
    "ProxyConfig",
    "ProxyInfo",
    "SaslError",
    "SessionClosedError",
    "SessionEvent",
    "SessionListener",
    "SessionMetrics",
    "SessionSettings",
    "SessionState",
    "SieveAccount",
    "SieveConnectionPool",
    "SieveSession",
    "SieveSessionError",
    "StatusCode",
    "UnknownAccountError",
    "load_accounts",
]
