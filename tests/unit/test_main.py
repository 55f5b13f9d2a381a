"""
Unit tests for the command line entry point.
"""

import asyncio
import json
import logging
import signal
from unittest.mock import MagicMock, patch

import json_log_formatter
import pytest

from qldb_quickstart import main as cli
from qldb_quickstart.config import ObservabilityConfig, QuickstartConfig
from qldb_quickstart.workflow import RunReport, StageOutcome, StageStatus


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def report_with(status: StageStatus) -> RunReport:
    return RunReport(
        ledger_name="MyLedger",
        table_name="MyTable",
        stages=[StageOutcome(name="connect", status=status)],
    )


class TestApplyOverrides:
    """Tests for command line overrides."""

    def test_no_flags_keeps_config(self):
        config = QuickstartConfig()
        args = cli.build_parser().parse_args([])

        assert cli.apply_overrides(config, args) == config

    def test_flags_override(self):
        args = cli.build_parser().parse_args(
            [
                "--ledger-name", "orders",
                "--table-name", "Orders",
                "--region", "eu-west-1",
                "--poll-interval", "1",
                "--timeout", "30",
                "--retry-limit", "5",
                "--delete-after",
                "-v",
            ]
        )

        config = cli.apply_overrides(QuickstartConfig(), args)

        assert config.ledger.ledger_name == "orders"
        assert config.ledger.table_name == "Orders"
        assert config.aws.region == "eu-west-1"
        assert config.ledger.poll_interval_seconds == 1.0
        assert config.ledger.provisioning_timeout_seconds == 30.0
        assert config.driver.retry_limit == 5
        assert config.ledger.delete_after_run is True
        assert config.observability.log_level == "DEBUG"

    def test_invalid_override(self):
        args = cli.build_parser().parse_args(["--table-name", "bad-name"])

        with pytest.raises(ValueError):
            cli.apply_overrides(QuickstartConfig(), args)


class TestMain:
    """Tests for main()."""

    def test_config_error_exits_1(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--ledger-name", "not valid"])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().err

    @pytest.mark.parametrize("status,code", [(StageStatus.SUCCEEDED, 0), (StageStatus.FAILED, 1)])
    def test_exit_code_follows_report(self, status, code, tmp_path, restore_root_logger):
        report_path = tmp_path / "report.json"

        async def fake_run(config, cancel_event):
            return report_with(status)

        with patch.object(cli, "run_quickstart", fake_run):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--report-json", str(report_path)])

        assert exc_info.value.code == code
        data = json.loads(report_path.read_text())
        assert data["stages"][0]["status"] == status.value


class TestSignalHandler:
    """Tests for the SIGINT/SIGTERM handler."""

    def test_first_signal_sets_event(self):
        cancel_event = asyncio.Event()
        task = MagicMock()

        cli.signal_handler(cancel_event, task)(signal.SIGINT)

        assert cancel_event.is_set()
        task.cancel.assert_not_called()

    def test_second_signal_cancels_task(self):
        cancel_event = asyncio.Event()
        task = MagicMock()
        handle_signal = cli.signal_handler(cancel_event, task)

        handle_signal(signal.SIGINT)
        handle_signal(signal.SIGTERM)

        task.cancel.assert_called_once_with()

    def test_aborted_run_exits_130(self, restore_root_logger):
        async def fake_run(config, cancel_event):
            raise asyncio.CancelledError()

        with patch.object(cli, "run_quickstart", fake_run):
            with pytest.raises(SystemExit) as exc_info:
                cli.main([])

        assert exc_info.value.code == 130


class TestSetupLogging:
    """Tests for log formatting."""

    def test_json_format(self, restore_root_logger):
        cli.setup_logging(QuickstartConfig(observability=ObservabilityConfig(log_format="json")))

        assert isinstance(restore_root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format_and_level(self, restore_root_logger):
        cli.setup_logging(QuickstartConfig(observability=ObservabilityConfig(log_level="debug")))

        assert restore_root_logger.level == logging.DEBUG
        assert not isinstance(
            restore_root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter
        )
        assert logging.getLogger("botocore").level == logging.WARNING
