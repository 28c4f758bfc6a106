"""
Configuration Schema (``market_config.schema``).

Responsibility
--------------
Frozen dataclasses describing one marketplace configuration set: database
connection, job pricing, dispute handling, payment request settings and
logging.  Defaults match the values the platform has always run with.

Architecture position
---------------------
**Config layer** -- pure data.  Imported by ``market_config.loader`` and,
for typing and defaults, by the lifecycle services in ``market_modules``.

Invariants enforced
-------------------
* All monetary percentages are ``Decimal`` (never ``float``).
* ``validate()`` raises ``ConfigurationError`` for out-of-range values;
  the loader calls it before a config is handed out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from market_kernel.exceptions import ConfigurationError

# PayPal payout item statuses after which no new status will be reported.
DEFAULT_TERMINAL_ITEM_STATUSES = (
    "SUCCESS",
    "FAILED",
    "RETURNED",
    "REFUNDED",
    "REVERSED",
    "BLOCKED",
)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    def validate(self) -> None:
        if not self.url:
            raise ConfigurationError("database.url", "must not be empty")
        if self.pool_size < 1:
            raise ConfigurationError("database.pool_size", "must be at least 1")
        if self.max_overflow < 0:
            raise ConfigurationError("database.max_overflow", "cannot be negative")


@dataclass(frozen=True)
class JobsConfig:
    """Job pricing.

    The contractor is paid the accepted bid amount less the platform fee.
    """
    platform_fee_percent: Decimal = Decimal("15")

    def validate(self) -> None:
        if not Decimal("0") <= self.platform_fee_percent <= Decimal("100"):
            raise ConfigurationError(
                "jobs.platform_fee_percent", "must be between 0 and 100",
            )


@dataclass(frozen=True)
class DisputesConfig:
    resolution_window_hours: int = 72
    system_user_id: str = "00000000-0000-0000-0000-000000000000"
    open_comment_body: str = "This job has entered dispute."
    resolve_comment_body: str = "The dispute on this job has been resolved"

    def validate(self) -> None:
        if self.resolution_window_hours < 0:
            raise ConfigurationError(
                "disputes.resolution_window_hours", "cannot be negative",
            )
        if not self.open_comment_body or not self.resolve_comment_body:
            raise ConfigurationError(
                "disputes.comment_body", "system comment bodies must not be empty",
            )


@dataclass(frozen=True)
class PaymentsConfig:
    item_id_prefix: str = "CPR"
    item_id_hex_bytes: int = 10
    status_poll_interval_seconds: int = 60
    rolling_earnings_days: int = 30
    terminal_item_statuses: tuple[str, ...] = DEFAULT_TERMINAL_ITEM_STATUSES

    def validate(self) -> None:
        if not self.item_id_prefix:
            raise ConfigurationError("payments.item_id_prefix", "must not be empty")
        if self.item_id_hex_bytes < 4:
            raise ConfigurationError("payments.item_id_hex_bytes", "must be at least 4")
        if self.status_poll_interval_seconds < 0:
            raise ConfigurationError(
                "payments.status_poll_interval_seconds", "cannot be negative",
            )
        if self.rolling_earnings_days < 1:
            raise ConfigurationError("payments.rolling_earnings_days", "must be at least 1")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def validate(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError("logging.level", f"unknown level {self.level!r}")


@dataclass(frozen=True)
class MarketplaceConfig:
    """One complete configuration set."""
    name: str = "default"
    version: int = 1
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    disputes: DisputesConfig = field(default_factory=DisputesConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""

    def validate(self) -> None:
        for section in (self.database, self.jobs, self.disputes, self.payments, self.logging):
            section.validate()
