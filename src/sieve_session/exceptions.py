# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised synchronously by the session layer.

Only caller misuse is raised across the pool boundary. Negotiation, server
and transport failures are reported to listeners as status events instead.
"""

from __future__ import annotations


class SieveSessionError(RuntimeError):
    """Base class for caller errors reported by the connection pool."""

    code = "sieve_session_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__)


class InvalidSessionError(SieveSessionError):
    """The session identifier is not registered with the pool."""

    code = "invalid_session"

    def __init__(self, sid: str, operation: str = ""):
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}Invalid session ({sid})")
        self.sid = sid


class InvalidChannelError(SieveSessionError):
    """The channel identifier is not registered with the session."""

    code = "invalid_channel"

    def __init__(self, sid: str, cid: str, operation: str = ""):
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}Invalid channel ({sid} / {cid})")
        self.sid = sid
        self.cid = cid


class SessionClosedError(SieveSessionError):
    """The session has no live transport."""

    code = "session_closed"

    def __init__(self, sid: str, cid: str | None = None, reason: str | None = None):
        target = f"{sid} / {cid}" if cid else sid
        message = f"Session closed ({target})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.sid = sid
        self.cid = cid
        self.reason = reason


class UnknownAccountError(SieveSessionError):
    """No account configuration exists for the requested identifier."""

    code = "unknown_account"

    def __init__(self, account_id: str):
        super().__init__(f"Unknown account ({account_id})")
        self.account_id = account_id


class ConfigError(ValueError):
    """Raised when an account configuration entry is invalid."""

    def __init__(self, section: str, detail: str):
        super().__init__(f"[{section}] {detail}")
        self.section = section
        self.detail = detail


class SaslError(Exception):
    """Raised when a SASL exchange cannot continue on the client side."""

    def __init__(self, mechanism: str, detail: str):
        super().__init__(f"{mechanism}: {detail}")
        self.mechanism = mechanism
        self.detail = detail


__all__ = [
    "ConfigError",
    "InvalidChannelError",
    "InvalidSessionError",
    "SaslError",
    "SessionClosedError",
    "SieveSessionError",
    "UnknownAccountError",
]
