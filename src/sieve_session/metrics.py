# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for ManageSieve sessions.

All metrics use the ``sieve_`` prefix.

Metrics exposed:
    - ``sieve_connects_total``: Counter of connect attempts per account.
    - ``sieve_referrals_total``: Counter of followed referrals per account.
    - ``sieve_failures_total``: Counter of failed sessions per account and reason.
    - ``sieve_sessions_active``: Gauge of sessions held by the pool.
    - ``sieve_channels_open``: Gauge of open channels per account.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class SessionMetrics:
    """Prometheus metrics collector for sessions and the connection pool.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        connects: Counter of connect attempts.
        referrals: Counter of referrals followed.
        failures: Counter of sessions ended by an error, labeled by reason.
        sessions: Gauge of sessions currently registered in the pool.
        channels: Gauge of open channels per account.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A new private
                registry is created when omitted, so several pools can
                coexist in one process.
        """
        self.registry = registry or CollectorRegistry()
        self.connects = Counter(
            "sieve_connects_total",
            "Total connect attempts",
            ["account_id"],
            registry=self.registry,
        )
        self.referrals = Counter(
            "sieve_referrals_total",
            "Total referrals followed",
            ["account_id"],
            registry=self.registry,
        )
        self.failures = Counter(
            "sieve_failures_total",
            "Total sessions ended by an error",
            ["account_id", "reason"],
            registry=self.registry,
        )
        self.sessions = Gauge(
            "sieve_sessions_active",
            "Sessions currently held by the pool",
            registry=self.registry,
        )
        self.channels = Gauge(
            "sieve_channels_open",
            "Open channels per account",
            ["account_id"],
            registry=self.registry,
        )

    def inc_connect(self, account_id: str) -> None:
        self.connects.labels(account_id=account_id or "default").inc()

    def inc_referral(self, account_id: str) -> None:
        self.referrals.labels(account_id=account_id or "default").inc()

    def inc_failure(self, account_id: str, reason: str) -> None:
        """Increment the failure counter.

        Args:
            account_id: The account identifier.
            reason: Short failure class, e.g. ``error.sasl`` or ``bye``.
        """
        self.failures.labels(account_id=account_id or "default", reason=reason).inc()

    def set_sessions(self, value: int) -> None:
        self.sessions.set(value)

    def set_channels(self, account_id: str, value: int) -> None:
        self.channels.labels(account_id=account_id or "default").set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text format."""
        return generate_latest(self.registry)


__all__ = ["SessionMetrics"]
