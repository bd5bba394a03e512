# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line diagnostics for ManageSieve account configuration.

The CLI never opens a network connection. It validates account files and
shows how the session layer would treat them.

Usage:
    sieve-session accounts accounts.ini
    sieve-session mechanism accounts.ini work -a LOGIN -a PLAIN

Example:
    $ sieve-session mechanism accounts.ini work -a LOGIN -a CRAM-MD5
    work: CRAM-MD5 (advertised: LOGIN, CRAM-MD5)
"""

from __future__ import annotations

import logging
import os
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config_loader import load_accounts
from .exceptions import ConfigError
from .sasl import select_mechanism
from .session import ERROR_SASL

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {escape(message)}")


def _load(config: str):
    try:
        return load_accounts(config)
    except (FileNotFoundError, ConfigError) as exc:
        print_error(str(exc))
        sys.exit(1)


def _tls_mode(host) -> str:
    if not host.tls_enabled:
        return "disabled"
    return "forced" if host.tls_forced else "enabled"


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: $SIEVE_LOG_LEVEL or WARNING)")
def main(log_level: str | None) -> None:
    """ManageSieve session diagnostics."""
    level = (log_level or os.getenv("SIEVE_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


@main.command("accounts")
@click.argument("config", type=click.Path(dir_okay=False))
def accounts_command(config: str) -> None:
    """List the accounts defined in CONFIG."""
    accounts = _load(config)
    if not accounts:
        console.print("[dim]No accounts configured[/dim]")
        return

    table = Table(title="ManageSieve accounts")
    table.add_column("ID", style="cyan")
    table.add_column("Host")
    table.add_column("TLS")
    table.add_column("Username")
    table.add_column("Mechanism")
    table.add_column("Keep-alive")

    for account_id, account in sorted(accounts.items()):
        settings = account.settings
        keep_alive = f"{settings.keep_alive_interval // 1000}s" if settings.keep_alive else "off"
        table.add_row(
            account_id,
            f"{account.host.hostname}:{account.host.port}",
            _tls_mode(account.host),
            account.login.username or "[dim]anonymous[/dim]",
            settings.forced_mechanism or "auto",
            keep_alive,
        )
    console.print(table)


@main.command("mechanism")
@click.argument("config", type=click.Path(dir_okay=False))
@click.argument("account_id")
@click.option(
    "-a", "--advertised", "advertised", multiple=True,
    help="Mechanism advertised by the server, in server order (repeatable)",
)
def mechanism_command(config: str, account_id: str, advertised: tuple[str, ...]) -> None:
    """Show the SASL mechanism ACCOUNT_ID would use against a server."""
    accounts = _load(config)
    account = accounts.get(account_id)
    if account is None:
        print_error(f"Unknown account: {account_id}")
        sys.exit(1)

    if not account.login.has_username():
        console.print(f"{account_id}: anonymous, no SASL exchange")
        return

    forced = account.settings.forced_mechanism
    request_class = select_mechanism(advertised, forced)
    if request_class is None:
        print_error(f"{account_id}: {ERROR_SASL} (advertised: {', '.join(advertised) or 'none'})")
        sys.exit(1)

    source = "forced" if forced else f"advertised: {', '.join(advertised)}"
    console.print(f"{account_id}: [green]{request_class.mechanism}[/green] ({source})")


if __name__ == "__main__":
    main()
