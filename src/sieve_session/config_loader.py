# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Load ManageSieve account definitions from INI configuration files.

Each account lives in its own ``[account:<id>]`` section. Secrets may be
left out of the file and supplied through environment variables instead.

Example:
    Configuration file format (accounts.ini)::

        [account:work]
        hostname = sieve.example.com
        port = 4190
        tls = forced
        username = alice
        forced_mechanism = SCRAM-SHA-1
        keep_alive = true
        keep_alive_interval = 1200000

        [account:home]
        hostname = mail.example.org
        tls = enabled
        username = bob
        proxy_type = socks5
        proxy_host = 127.0.0.1
        proxy_port = 1080

    Environment overrides (the account id is upper-cased, ``-`` becomes ``_``)::

        SIEVE_WORK_PASSWORD=secret
        SIEVE_WORK_AUTHORIZATION=shared-mailbox

    Loading::

        accounts = load_accounts("/etc/sieve/accounts.ini")
        pool = SieveConnectionPool.from_accounts(accounts, transport_factory)
"""

from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Mapping

from pydantic import ValidationError

from .account import SieveAccount
from .exceptions import ConfigError
from .logger import get_logger
from .models import AccountEntry

SECTION_PREFIX = "account:"
ENV_PREFIX = "SIEVE_"

logger = get_logger("SieveConfig")


def _env_key(account_id: str, name: str) -> str:
    return f"{ENV_PREFIX}{account_id.upper().replace('-', '_')}_{name}"


class AccountConfigLoader:
    """Parse ``[account:<id>]`` sections into validated accounts.

    Attributes:
        config_path: Path to the INI file.
        environ: Mapping consulted for secret overrides.
    """

    def __init__(self, config_path: str | Path, environ: Mapping[str, str] | None = None):
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self.config = configparser.ConfigParser(interpolation=None)

    def load_config(self) -> None:
        """Read the configuration file.

        Raises:
            FileNotFoundError: The file does not exist.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")
        self.config.read(self.config_path)

    def parse_entries(self) -> list[AccountEntry]:
        """Validate every account section.

        Raises:
            ConfigError: A section fails validation.
        """
        entries: list[AccountEntry] = []
        for section in self.config.sections():
            if not section.startswith(SECTION_PREFIX):
                continue
            account_id = section[len(SECTION_PREFIX):].strip()
            raw: dict[str, object] = dict(self.config.items(section))
            raw["id"] = account_id

            password = self.environ.get(_env_key(account_id, "PASSWORD"))
            if password is not None:
                raw["password"] = password
            authorization = self.environ.get(_env_key(account_id, "AUTHORIZATION"))
            if authorization is not None:
                raw["authorization"] = authorization

            try:
                entries.append(AccountEntry.model_validate(raw))
            except ValidationError as exc:
                details = "; ".join(
                    f"{'.'.join(str(part) for part in error['loc']) or 'entry'}: {error['msg']}"
                    for error in exc.errors()
                )
                raise ConfigError(section, details) from exc

        logger.debug("Parsed %d account(s) from %s", len(entries), self.config_path)
        return entries

    def parse_accounts(self) -> dict[str, SieveAccount]:
        accounts: dict[str, SieveAccount] = {}
        for entry in self.parse_entries():
            if entry.id in accounts:
                raise ConfigError(f"{SECTION_PREFIX}{entry.id}", "duplicate account id")
            accounts[entry.id] = entry.to_account()
        return accounts


def load_accounts(
    config_path: str | Path, environ: Mapping[str, str] | None = None
) -> dict[str, SieveAccount]:
    """Convenience wrapper: read ``config_path`` and return accounts by id."""
    loader = AccountConfigLoader(config_path, environ=environ)
    loader.load_config()
    return loader.parse_accounts()


__all__ = ["AccountConfigLoader", "load_accounts"]
