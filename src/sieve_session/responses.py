# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Typed server responses consumed by the session layer.

The wire codec parses ManageSieve replies into these value objects and hands
them to the request that was waiting for them. Nothing here knows about the
wire format itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ResponseCode:
    """Bracketed response code attached to OK/NO/BYE replies.

    For ``REFERRAL`` codes the codec fills in the target host and port.
    """

    name: str | None = None
    hostname: str | None = None
    port: int | None = None

    def equals_code(self, name: str) -> bool:
        return self.name is not None and self.name.upper() == name.upper()


@dataclass(frozen=True)
class Compatibility:
    """Protocol features the transport may rely on for this server."""

    noop: bool = False
    """Server understands NOOP (RFC 5804 version 1.0 servers)."""

    renamescript: bool = False
    """Server understands RENAMESCRIPT."""

    @classmethod
    def from_capabilities(cls, capabilities: dict[str, Any]) -> Compatibility:
        version = str(capabilities.get("VERSION") or "")
        try:
            major = float(version) if version else 0.0
        except ValueError:
            major = 0.0
        return cls(noop=major >= 1.0, renamescript=major >= 1.0)


@dataclass(frozen=True)
class CapabilitiesResponse:
    """Capability listing sent in the greeting or after CAPABILITY.

    Attributes:
        capabilities: All capability keys with their raw values.
        extensions: Sieve language extensions (the SIEVE capability).
        sasl: Advertised SASL mechanisms in server order.
        tls: True when STARTTLS is advertised.
    """

    capabilities: dict[str, Any] = field(default_factory=dict)
    extensions: tuple[str, ...] = ()
    sasl: tuple[str, ...] = ()
    tls: bool = False
    implementation: str | None = None

    def get_capabilities(self) -> dict[str, Any]:
        return dict(self.capabilities)

    def get_extensions(self) -> list[str]:
        return list(self.extensions)

    def get_sasl(self) -> list[str]:
        return list(self.sasl)

    def get_tls(self) -> bool:
        return self.tls


@dataclass(frozen=True)
class StatusResponse:
    """Plain OK/NO reply with an optional code and human readable text."""

    code: ResponseCode = field(default_factory=ResponseCode)
    message: str = ""

    def get_response_code(self) -> ResponseCode:
        return self.code

    def get_message(self) -> str:
        return self.message


@dataclass(frozen=True)
class ErrorResponse(StatusResponse):
    """NO reply, or an error reported by the transport itself."""


@dataclass(frozen=True)
class ByeResponse(StatusResponse):
    """BYE reply. The server closes the connection after sending it."""


@dataclass(frozen=True)
class SaslResponse(StatusResponse):
    """Final OK of a completed AUTHENTICATE exchange."""

    server_data: bytes | None = None
    """Optional final server data (e.g. SCRAM server signature)."""


__all__ = [
    "ByeResponse",
    "CapabilitiesResponse",
    "Compatibility",
    "ErrorResponse",
    "ResponseCode",
    "SaslResponse",
    "StatusResponse",
]
