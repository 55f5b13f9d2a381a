"""
Configuration management for QLDB Quickstart.

All configuration is done via environment variables, optionally overridden
by command line flags. This module provides typed configuration classes with
validation.

Invariants:
    - All settings have defaults that reproduce the stock quickstart run
      (ledger "MyLedger", table "MyTable", 15 second polls, 3 OCC retries)
    - Credentials are never read here; boto's credential chain owns them

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep validate() in sync with the naming rules enforced by the service
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Ledger names: 1-32 chars, letters, digits and hyphens, not all digits.
LEDGER_NAME_PATTERN = re.compile(r"^(?!^.*--)(?!^[0-9]+$)(?!^-)(?!.*-$)[A-Za-z0-9-]{1,32}$")
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class AwsConfig:
    """AWS client configuration shared by the control and session clients.

    Attributes:
        region: AWS region
        endpoint_url: Custom endpoint for the "qldb" control plane
        session_endpoint_url: Custom endpoint for the "qldb-session" data plane
        connect_timeout: Socket connect timeout in seconds
        read_timeout: Socket read timeout in seconds
    """

    region: str = "us-east-1"
    endpoint_url: str | None = None
    session_endpoint_url: str | None = None
    connect_timeout: int = 10
    read_timeout: int = 60

    @classmethod
    def from_env(cls) -> AwsConfig:
        """Load configuration from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")),
            endpoint_url=os.getenv("QLDB_ENDPOINT_URL"),
            session_endpoint_url=os.getenv("QLDB_SESSION_ENDPOINT_URL"),
            connect_timeout=int(os.getenv("AWS_CONNECT_TIMEOUT", "10")),
            read_timeout=int(os.getenv("AWS_READ_TIMEOUT", "60")),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger provisioning and workflow configuration.

    Attributes:
        ledger_name: Name of the ledger to provision
        table_name: Name of the table created in the ledger
        permissions_mode: Ledger permissions mode (ALLOW_ALL or STANDARD)
        deletion_protection: Create the ledger with deletion protection
        poll_interval_seconds: Delay between DescribeLedger polls
        provisioning_timeout_seconds: Give up waiting for ACTIVE after this long
        table_settle_seconds: Pause after CREATE TABLE before writing
        delete_after_run: Delete the ledger once the workflow finishes
    """

    ledger_name: str = "MyLedger"
    table_name: str = "MyTable"
    permissions_mode: str = "ALLOW_ALL"
    deletion_protection: bool = True
    poll_interval_seconds: float = 15.0
    provisioning_timeout_seconds: float = 900.0
    table_settle_seconds: float = 5.0
    delete_after_run: bool = False

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables."""
        return cls(
            ledger_name=os.getenv("QLDB_LEDGER_NAME", "MyLedger"),
            table_name=os.getenv("QLDB_TABLE_NAME", "MyTable"),
            permissions_mode=os.getenv("QLDB_PERMISSIONS_MODE", "ALLOW_ALL").upper(),
            deletion_protection=_env_bool("QLDB_DELETION_PROTECTION", "true"),
            poll_interval_seconds=float(os.getenv("QLDB_POLL_INTERVAL_SECONDS", "15")),
            provisioning_timeout_seconds=float(
                os.getenv("QLDB_PROVISIONING_TIMEOUT_SECONDS", "900")
            ),
            table_settle_seconds=float(os.getenv("QLDB_TABLE_SETTLE_SECONDS", "5")),
            delete_after_run=_env_bool("QLDB_DELETE_AFTER_RUN", "false"),
        )


@dataclass(frozen=True)
class DriverConfig:
    """Session pool and transaction retry configuration.

    Attributes:
        retry_limit: Maximum retries of a unit of work after the first attempt
        max_concurrent_transactions: Upper bound on pooled sessions in use
        pool_timeout_seconds: Maximum wait for a free session
        backoff_base_ms: Base delay for exponential backoff
        backoff_cap_ms: Maximum delay between retries
    """

    retry_limit: int = 3
    max_concurrent_transactions: int = 10
    pool_timeout_seconds: float = 30.0
    backoff_base_ms: int = 10
    backoff_cap_ms: int = 5000

    @classmethod
    def from_env(cls) -> DriverConfig:
        """Load configuration from environment variables."""
        return cls(
            retry_limit=int(os.getenv("QLDB_RETRY_LIMIT", "3")),
            max_concurrent_transactions=int(os.getenv("QLDB_MAX_CONCURRENT_TRANSACTIONS", "10")),
            pool_timeout_seconds=float(os.getenv("QLDB_POOL_TIMEOUT_SECONDS", "30")),
            backoff_base_ms=int(os.getenv("QLDB_BACKOFF_BASE_MS", "10")),
            backoff_cap_ms=int(os.getenv("QLDB_BACKOFF_CAP_MS", "5000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class QuickstartConfig:
    """Complete quickstart configuration.

    Attributes:
        aws: AWS client configuration
        ledger: Ledger and workflow configuration
        driver: Session pool and retry configuration
        observability: Logging configuration
    """

    aws: AwsConfig = field(default_factory=AwsConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    driver: DriverConfig = field(default_factory=DriverConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> QuickstartConfig:
        """Load complete configuration from environment variables.

        Returns:
            QuickstartConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            aws=AwsConfig.from_env(),
            ledger=LedgerConfig.from_env(),
            driver=DriverConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not LEDGER_NAME_PATTERN.match(self.ledger.ledger_name):
            raise ValueError(
                f"Invalid ledger name '{self.ledger.ledger_name}'. "
                "Use 1-32 letters, digits or single hyphens."
            )
        if not TABLE_NAME_PATTERN.match(self.ledger.table_name):
            raise ValueError(
                f"Invalid table name '{self.ledger.table_name}'. "
                "Use letters, digits and underscores, starting with a letter or underscore."
            )
        if self.ledger.permissions_mode not in ("ALLOW_ALL", "STANDARD"):
            raise ValueError(
                f"Invalid QLDB_PERMISSIONS_MODE '{self.ledger.permissions_mode}'. "
                "Must be one of: ALLOW_ALL, STANDARD"
            )
        if self.ledger.poll_interval_seconds < 0:
            raise ValueError("QLDB_POLL_INTERVAL_SECONDS must not be negative")
        if self.ledger.provisioning_timeout_seconds <= 0:
            raise ValueError("QLDB_PROVISIONING_TIMEOUT_SECONDS must be positive")
        if self.ledger.table_settle_seconds < 0:
            raise ValueError("QLDB_TABLE_SETTLE_SECONDS must not be negative")
        if self.driver.retry_limit < 0:
            raise ValueError("QLDB_RETRY_LIMIT must not be negative")
        if self.driver.max_concurrent_transactions < 1:
            raise ValueError("QLDB_MAX_CONCURRENT_TRANSACTIONS must be at least 1")
        if self.driver.pool_timeout_seconds <= 0:
            raise ValueError("QLDB_POOL_TIMEOUT_SECONDS must be positive")
        if self.driver.backoff_base_ms < 0 or self.driver.backoff_cap_ms < self.driver.backoff_base_ms:
            raise ValueError("QLDB_BACKOFF_CAP_MS must be >= QLDB_BACKOFF_BASE_MS >= 0")

        if self.ledger.poll_interval_seconds > self.ledger.provisioning_timeout_seconds:
            logger.warning(
                "Poll interval exceeds the provisioning timeout; the ledger will be "
                "described only once before giving up."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Quickstart configuration loaded",
            extra={
                "region": self.aws.region,
                "endpoint": self.aws.endpoint_url or "AWS",
                "ledger_name": self.ledger.ledger_name,
                "table_name": self.ledger.table_name,
                "poll_interval_seconds": self.ledger.poll_interval_seconds,
                "provisioning_timeout_seconds": self.ledger.provisioning_timeout_seconds,
                "retry_limit": self.driver.retry_limit,
                "delete_after_run": self.ledger.delete_after_run,
                "log_level": self.observability.log_level,
            },
        )
