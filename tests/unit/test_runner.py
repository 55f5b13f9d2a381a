"""
Unit tests for the retry policy and run_in_transaction().
"""

import pytest
from pyqldb.driver.qldb_driver import QldbDriver

from qldb_quickstart import statements
from qldb_quickstart.config import DriverConfig
from qldb_quickstart.driver import (
    ExponentialBackoff,
    FixedBackoff,
    InMemorySessionClient,
    RetryPolicy,
    run_in_transaction,
)
from qldb_quickstart.errors import (
    InvalidSessionError,
    OccConflictError,
    RetryLimitExceededError,
    StatementError,
    TransactionAbortedError,
    TransientServiceError,
)
from qldb_quickstart.printer import print_documents

LEDGER = "MyLedger"
NO_WAIT = RetryPolicy(retry_limit=3, backoff=FixedBackoff(0))


@pytest.fixture
def client():
    client = InMemorySessionClient()
    client.add_table(LEDGER, "Orders")
    return client


@pytest.fixture
def qldb_driver(client):
    driver = QldbDriver(LEDGER, boto3_session=client.boto3_session())
    yield driver
    driver.close()


def insert_order(txn):
    txn.execute_statement("INSERT INTO Orders VALUE { 'ts': 1700000000000 }")
    return "inserted"


class TestRetryPolicy:
    """Tests for backoff and the pyqldb RetryConfig."""

    def test_exponential_backoff_is_capped(self):
        backoff = ExponentialBackoff(base_ms=10, cap_ms=5000)
        for attempt in range(1, 20):
            assert 0 <= backoff.delay_ms(attempt) <= min(5000, 10 * 2 ** attempt)

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            DriverConfig(retry_limit=5, backoff_base_ms=20, backoff_cap_ms=100)
        )
        assert policy.retry_limit == 5
        assert policy.backoff == ExponentialBackoff(base_ms=20, cap_ms=100)

    def test_retry_config_reports_each_backoff(self):
        seen = []
        config = RetryPolicy(retry_limit=2, backoff=FixedBackoff(7)).to_retry_config(
            lambda attempt, error, txn_id: seen.append((attempt, txn_id))
        )

        assert config.retry_limit == 2
        assert config.custom_backoff(1, ValueError("x"), "txn-1") == 7
        assert seen == [(1, "txn-1")]


class TestRunInTransaction:
    """Tests for the bounded retry loop."""

    @pytest.mark.asyncio
    async def test_no_conflict(self, client, qldb_driver):
        retries = []

        result = await run_in_transaction(
            qldb_driver, insert_order, on_conflict_retry=retries.append, retry_policy=NO_WAIT
        )

        assert result == "inserted"
        assert retries == []
        assert client.commit_count == 1

    @pytest.mark.asyncio
    async def test_conflicts_then_success(self, client, qldb_driver):
        """Two OCC conflicts: the callback sees 1 then 2, one document lands."""
        client.inject_occ_conflicts(2)
        retries = []

        await run_in_transaction(
            qldb_driver, insert_order, on_conflict_retry=retries.append, retry_policy=NO_WAIT
        )

        assert retries == [1, 2]
        assert client.commit_count == 1
        assert len(client.get_documents(LEDGER, "Orders")) == 1

    @pytest.mark.asyncio
    async def test_retry_limit_exceeded(self, client, qldb_driver):
        client.inject_occ_conflicts(10)
        retries = []

        with pytest.raises(RetryLimitExceededError) as exc_info:
            await run_in_transaction(
                qldb_driver, insert_order, on_conflict_retry=retries.append, retry_policy=NO_WAIT
            )

        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_error, OccConflictError)
        assert retries == [1, 2, 3]
        assert client.get_documents(LEDGER, "Orders") == []

    @pytest.mark.asyncio
    async def test_zero_retry_limit(self, client, qldb_driver):
        client.inject_occ_conflicts(1)

        with pytest.raises(RetryLimitExceededError) as exc_info:
            await run_in_transaction(
                qldb_driver, insert_order, retry_policy=RetryPolicy(retry_limit=0, backoff=FixedBackoff(0))
            )
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, client, qldb_driver):
        retries = []
        attempts = []

        def work(txn):
            attempts.append(1)
            statements.execute(txn, "INSERT INTO Missing VALUE { 'a': 1 }")

        with pytest.raises(StatementError) as exc_info:
            await run_in_transaction(
                qldb_driver, work, on_conflict_retry=retries.append, retry_policy=NO_WAIT
            )

        assert exc_info.value.statement == "INSERT INTO Missing VALUE { 'a': 1 }"
        assert len(attempts) == 1
        assert retries == []
        assert client.abort_count == 1

    @pytest.mark.asyncio
    async def test_application_error_aborts_and_propagates(self, client, qldb_driver):
        def work(txn):
            txn.execute_statement("INSERT INTO Orders VALUE { 'ts': 1 }")
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await run_in_transaction(qldb_driver, work, retry_policy=NO_WAIT)

        assert client.abort_count == 1
        assert client.get_documents(LEDGER, "Orders") == []

    @pytest.mark.asyncio
    async def test_transient_commit_failure_aborts_then_retries(self, client, qldb_driver):
        """A 500 at commit closes the open transaction before the replay."""
        client.inject_error("CommitTransaction", "InternalFailure", "Internal error", status=500)
        retries = []

        result = await run_in_transaction(
            qldb_driver, insert_order, on_conflict_retry=retries.append, retry_policy=NO_WAIT
        )

        assert result == "inserted"
        assert retries == [1]
        assert client.abort_count == 1
        assert client.commit_count == 1
        assert len(client.get_documents(LEDGER, "Orders")) == 1

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_budget(self, client, qldb_driver):
        for _ in range(2):
            client.inject_error("CommitTransaction", "ServiceUnavailable", status=503)

        with pytest.raises(RetryLimitExceededError) as exc_info:
            await run_in_transaction(
                qldb_driver, insert_order, retry_policy=RetryPolicy(retry_limit=1, backoff=FixedBackoff(0))
            )

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, TransientServiceError)
        assert client.abort_count == 2

    @pytest.mark.asyncio
    async def test_expired_transaction_is_not_retried(self, client, qldb_driver):
        client.inject_error("CommitTransaction", "InvalidSessionException", "Transaction abc has expired")
        retries = []

        with pytest.raises(InvalidSessionError):
            await run_in_transaction(
                qldb_driver, insert_order, on_conflict_retry=retries.append, retry_policy=NO_WAIT
            )

        assert retries == []

    @pytest.mark.asyncio
    async def test_abort_from_unit_of_work(self, client, qldb_driver):
        def work(txn):
            txn.execute_statement("INSERT INTO Orders VALUE { 'ts': 1 }")
            txn.abort()

        with pytest.raises(TransactionAbortedError):
            await run_in_transaction(qldb_driver, work, retry_policy=NO_WAIT)

        assert client.abort_count == 1
        assert client.commit_count == 0

    @pytest.mark.asyncio
    async def test_results_span_pages(self):
        client = InMemorySessionClient(page_size=2)
        client.add_table(LEDGER, "Orders", [{"ts": n} for n in range(5)])
        qldb_driver = QldbDriver(LEDGER, boto3_session=client.boto3_session())

        count = await run_in_transaction(
            qldb_driver, lambda txn: print_documents(txn.execute_statement("SELECT * FROM Orders"))
        )

        assert count == 5
        assert client.command_counts["FetchPage"] == 2
        qldb_driver.close()

    @pytest.mark.asyncio
    async def test_returned_cursor_is_buffered(self, client, qldb_driver):
        client.add_table(LEDGER, "Orders", [{"ts": 1}, {"ts": 2}])

        cursor = await run_in_transaction(
            qldb_driver, lambda txn: txn.execute_statement("SELECT * FROM Orders")
        )

        assert [doc["ts"] for doc in cursor] == [1, 2]
