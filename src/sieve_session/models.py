# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models validating account entries from configuration files.

Models:
    - TLSMode: disabled / enabled / forced
    - ProxyType: socks4 / socks5 / http
    - AccountEntry: one ``[account:<id>]`` section, convertible to SieveAccount
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .account import (
    DEFAULT_KEEP_ALIVE_INTERVAL,
    DEFAULT_PORT,
    AuthorizationConfig,
    HostConfig,
    LoginConfig,
    ProxyConfig,
    SessionSettings,
    SieveAccount,
)
from .sasl import MECHANISMS


class TLSMode(str, Enum):
    """STARTTLS policy.

    Attributes:
        DISABLED: Never upgrade the connection.
        ENABLED: Upgrade when the server advertises STARTTLS.
        FORCED: Always try STARTTLS, never fall back to plain text.
    """

    DISABLED = "disabled"
    ENABLED = "enabled"
    FORCED = "forced"


class ProxyType(str, Enum):
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"
    HTTP = "http"


class AccountEntry(BaseModel):
    """Raw account configuration as written in a config file."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Account identifier")]
    hostname: Annotated[str, Field(min_length=1, description="ManageSieve server host")]
    port: Annotated[
        int,
        Field(default=DEFAULT_PORT, ge=1, le=65535, description="ManageSieve server port")
    ]
    tls: Annotated[TLSMode, Field(default=TLSMode.ENABLED, description="STARTTLS policy")]
    username: Annotated[
        str | None,
        Field(default=None, description="Login name, empty for anonymous access")
    ]
    password: Annotated[str | None, Field(default=None, description="Login password")]
    authorization: Annotated[
        str | None,
        Field(default="", description="Authorization identity, empty to act as yourself")
    ]
    forced_mechanism: Annotated[
        str | None,
        Field(default=None, description="SASL mechanism to use regardless of the server")
    ]
    keep_alive: Annotated[bool, Field(default=True, description="Send keep-alive requests")]
    keep_alive_interval: Annotated[
        int,
        Field(default=DEFAULT_KEEP_ALIVE_INTERVAL, gt=0, description="Keep-alive interval in ms")
    ]
    proxy_type: Annotated[ProxyType | None, Field(default=None, description="Proxy type")]
    proxy_host: Annotated[str | None, Field(default=None, description="Proxy host")]
    proxy_port: Annotated[
        int | None,
        Field(default=None, ge=1, le=65535, description="Proxy port")
    ]

    @field_validator(
        "username", "forced_mechanism", "proxy_type", "proxy_host", "proxy_port", mode="before"
    )
    @classmethod
    def empty_string_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("forced_mechanism")
    @classmethod
    def mechanism_must_be_supported(cls, v: str | None) -> str | None:
        if v is None:
            return v
        name = v.strip().upper()
        if name not in MECHANISMS:
            supported = ", ".join(MECHANISMS)
            raise ValueError(f"unsupported SASL mechanism {v!r} (supported: {supported})")
        return name

    @model_validator(mode="after")
    def proxy_requires_host_and_port(self) -> AccountEntry:
        if self.proxy_type is not None and (not self.proxy_host or not self.proxy_port):
            raise ValueError("proxy_host and proxy_port are required when proxy_type is set")
        return self

    def to_account(self) -> SieveAccount:
        return SieveAccount(
            account_id=self.id,
            host=HostConfig(
                hostname=self.hostname,
                port=self.port,
                tls_enabled=self.tls is not TLSMode.DISABLED,
                tls_forced=self.tls is TLSMode.FORCED,
            ),
            login=LoginConfig(username=self.username, password=self.password),
            authorization=AuthorizationConfig(authorization=self.authorization),
            proxy=ProxyConfig(
                type=self.proxy_type.value if self.proxy_type else None,
                host=self.proxy_host,
                port=self.proxy_port,
            ),
            settings=SessionSettings(
                keep_alive=self.keep_alive,
                keep_alive_interval=self.keep_alive_interval,
                forced_mechanism=self.forced_mechanism,
            ),
        )


__all__ = ["AccountEntry", "ProxyType", "TLSMode"]
