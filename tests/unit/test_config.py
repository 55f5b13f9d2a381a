"""
Unit tests for configuration loading and validation.
"""

import dataclasses

import pytest

from qldb_quickstart.config import (
    DriverConfig,
    LedgerConfig,
    QuickstartConfig,
)


class TestFromEnv:
    """Tests for environment loading."""

    def test_defaults_match_stock_run(self, monkeypatch):
        """With no environment, the stock ledger/table names and timings apply."""
        for var in (
            "QLDB_LEDGER_NAME",
            "QLDB_TABLE_NAME",
            "QLDB_POLL_INTERVAL_SECONDS",
            "QLDB_RETRY_LIMIT",
            "QLDB_DELETE_AFTER_RUN",
        ):
            monkeypatch.delenv(var, raising=False)

        config = QuickstartConfig.from_env()

        assert config.ledger.ledger_name == "MyLedger"
        assert config.ledger.table_name == "MyTable"
        assert config.ledger.poll_interval_seconds == 15.0
        assert config.ledger.permissions_mode == "ALLOW_ALL"
        assert config.driver.retry_limit == 3
        assert config.ledger.delete_after_run is False

    def test_environment_overrides(self, monkeypatch):
        """Environment variables populate every section."""
        monkeypatch.setenv("QLDB_LEDGER_NAME", "orders-ledger")
        monkeypatch.setenv("QLDB_TABLE_NAME", "Orders")
        monkeypatch.setenv("QLDB_POLL_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("QLDB_RETRY_LIMIT", "7")
        monkeypatch.setenv("QLDB_DELETE_AFTER_RUN", "TRUE")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = QuickstartConfig.from_env()

        assert config.ledger.ledger_name == "orders-ledger"
        assert config.ledger.table_name == "Orders"
        assert config.ledger.poll_interval_seconds == 2.5
        assert config.driver.retry_limit == 7
        assert config.ledger.delete_after_run is True
        assert config.aws.region == "eu-west-1"
        assert config.observability.log_format == "json"

    def test_invalid_env_raises(self, monkeypatch):
        """Invalid values fail at load time."""
        monkeypatch.setenv("QLDB_LEDGER_NAME", "not a valid name")

        with pytest.raises(ValueError, match="ledger name"):
            QuickstartConfig.from_env()


class TestValidate:
    """Tests for QuickstartConfig.validate()."""

    def make(self, **ledger_changes) -> QuickstartConfig:
        return QuickstartConfig(ledger=dataclasses.replace(LedgerConfig(), **ledger_changes))

    def test_default_config_is_valid(self):
        QuickstartConfig().validate()

    @pytest.mark.parametrize(
        "name",
        ["", "-leading", "trailing-", "double--hyphen", "12345", "a" * 33, "under_score"],
    )
    def test_rejects_bad_ledger_names(self, name):
        with pytest.raises(ValueError):
            self.make(ledger_name=name).validate()

    @pytest.mark.parametrize("name", ["MyLedger", "my-ledger-1", "L"])
    def test_accepts_good_ledger_names(self, name):
        self.make(ledger_name=name).validate()

    @pytest.mark.parametrize("name", ["", "1Table", "bad-name", "has space"])
    def test_rejects_bad_table_names(self, name):
        with pytest.raises(ValueError):
            self.make(table_name=name).validate()

    def test_rejects_unknown_permissions_mode(self):
        with pytest.raises(ValueError, match="PERMISSIONS_MODE"):
            self.make(permissions_mode="OPEN").validate()

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            self.make(provisioning_timeout_seconds=0).validate()

    def test_zero_retry_limit_allowed(self):
        config = QuickstartConfig(driver=DriverConfig(retry_limit=0))
        config.validate()

    def test_negative_retry_limit_rejected(self):
        config = QuickstartConfig(driver=DriverConfig(retry_limit=-1))
        with pytest.raises(ValueError):
            config.validate()

    def test_backoff_cap_below_base_rejected(self):
        config = QuickstartConfig(driver=DriverConfig(backoff_base_ms=100, backoff_cap_ms=10))
        with pytest.raises(ValueError):
            config.validate()
