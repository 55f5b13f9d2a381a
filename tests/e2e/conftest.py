"""
E2E test fixtures for QLDB Quickstart.

These tests create and delete a real ledger. They need AWS credentials
with QLDB permissions and take several minutes.
"""

import dataclasses
import os
import uuid

import pytest

from qldb_quickstart.config import QuickstartConfig

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("QLDB_E2E_TESTS", "0") == "1"


@pytest.fixture
def e2e_config() -> QuickstartConfig:
    """Configuration for a throwaway ledger that is deleted after the run."""
    if not E2E_ENABLED:
        pytest.skip("E2E tests disabled. Set QLDB_E2E_TESTS=1 to enable.")

    config = QuickstartConfig.from_env()
    config.ledger = dataclasses.replace(
        config.ledger,
        ledger_name=f"qs-e2e-{uuid.uuid4().hex[:8]}",
        poll_interval_seconds=10,
        deletion_protection=False,
        delete_after_run=True,
    )
    config.validate()
    return config
