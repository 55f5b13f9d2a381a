"""
Ledger driver: session provider and transaction entry point.

LedgerDriver wraps a pyqldb QldbDriver for use from asyncio. pyqldb talks
to the "qldb-session" service through a synchronous boto3 client, so the
QldbDriver is built, used and closed on worker threads. execute_lambda()
is the one call the workflow needs: take a pool slot, run the unit of work
through run_in_transaction(), give the slot back.

Invariants:
    - A pool slot is held for exactly one execute_lambda() call
    - A session found stale on the first attempt is replaced without spending retry budget
    - Units of work are plain functions; they run on a worker thread
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from boto3.session import Session
from botocore.config import Config
from botocore.exceptions import BotoCoreError
from pyqldb.driver.qldb_driver import QldbDriver
from pyqldb.execution.executor import Executor

from ..config import AwsConfig, DriverConfig
from ..errors import DriverClosedError, LedgerConnectionError
from .pool import SessionPool
from .retry import RetryObserver, RetryPolicy
from .runner import run_in_transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerDriver:
    """Pooled access to one ledger.

    Attributes:
        ledger_name: Ledger this driver talks to
        retry_policy: Retry budget applied to every unit of work
        boto3_session: Session the qldb-session client is created from;
            None uses boto3's default session and credential chain

    Example:
        >>> async with LedgerDriver.from_config("MyLedger", config.aws, config.driver) as driver:
        ...     await driver.execute_lambda(lambda txn: txn.execute_statement("CREATE TABLE MyTable"))
    """

    def __init__(
        self,
        ledger_name: str,
        boto3_session: Optional[Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent_transactions: int = 10,
        pool_timeout_seconds: float = 30.0,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client_config: Optional[Config] = None,
    ) -> None:
        self.ledger_name = ledger_name
        self.boto3_session = boto3_session
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrent_transactions = max_concurrent_transactions
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.client_config = client_config
        self._pool = SessionPool(
            max_sessions=max_concurrent_transactions,
            timeout_seconds=pool_timeout_seconds,
        )
        self._driver: Optional[QldbDriver] = None
        self._closed = False

    @classmethod
    def from_config(
        cls,
        ledger_name: str,
        aws: AwsConfig,
        config: DriverConfig,
        boto3_session: Optional[Session] = None,
    ) -> LedgerDriver:
        """Build from the AWS and driver configuration sections."""
        return cls(
            ledger_name,
            boto3_session=boto3_session,
            retry_policy=RetryPolicy.from_config(config),
            max_concurrent_transactions=config.max_concurrent_transactions,
            pool_timeout_seconds=config.pool_timeout_seconds,
            region_name=aws.region,
            endpoint_url=aws.session_endpoint_url,
            client_config=Config(
                connect_timeout=aws.connect_timeout,
                read_timeout=aws.read_timeout,
            ),
        )

    @property
    def pool(self) -> SessionPool:
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._driver is not None and not self._closed

    async def connect(self) -> None:
        """Create the pyqldb driver and its qldb-session client.

        Raises:
            LedgerConnectionError: If the client cannot be created
            DriverClosedError: If the driver was closed
        """
        if self._closed:
            raise DriverClosedError()
        if self._driver is not None:
            return

        loop = asyncio.get_running_loop()
        try:
            self._driver = await loop.run_in_executor(None, self._create_driver)
        except BotoCoreError as e:
            raise LedgerConnectionError(
                f"Failed to create qldb-session client: {e}",
                endpoint=self.endpoint_url,
            ) from e

        logger.info(
            "Ledger driver ready",
            extra={
                "ledger_name": self.ledger_name,
                "retry_limit": self.retry_policy.retry_limit,
                "endpoint": self.endpoint_url or "AWS",
            },
        )

    def _create_driver(self) -> QldbDriver:
        # pyqldb requires the client's connection pool to match its session pool.
        pool_config = Config(max_pool_connections=self.max_concurrent_transactions)
        config = self.client_config.merge(pool_config) if self.client_config else pool_config

        kwargs: dict[str, Any] = {
            "retry_config": self.retry_policy.to_retry_config(),
            "endpoint_url": self.endpoint_url,
            "config": config,
            "max_concurrent_transactions": self.max_concurrent_transactions,
        }
        if self.boto3_session is not None:
            kwargs["boto3_session"] = self.boto3_session
        else:
            kwargs["region_name"] = self.region_name
        return QldbDriver(self.ledger_name, **kwargs)

    async def close(self) -> None:
        """End pooled sessions and refuse further work. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._pool.close()
        if self._driver is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._driver.close)
            logger.debug("Ledger driver closed", extra={"ledger_name": self.ledger_name})

    async def __aenter__(self) -> LedgerDriver:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def execute_lambda(
        self,
        work: Callable[[Executor], T],
        on_retry: Optional[RetryObserver] = None,
    ) -> T:
        """Run a unit of work in a transaction on a pooled session.

        Args:
            work: Function receiving a pyqldb Executor
            on_retry: Called with the retry number before each retry

        Returns:
            Whatever the unit of work returned (stream cursors are buffered)

        Raises:
            RetryLimitExceededError: If the retry budget ran out
            DriverClosedError: If the driver was closed
            LedgerConnectionError: If connect() was never called
            Exception: The first non-retryable error
        """
        if self._closed:
            raise DriverClosedError()
        if self._driver is None:
            raise LedgerConnectionError("Ledger driver is not connected")

        async with self._pool.acquire() as lease:
            return await run_in_transaction(
                self._driver,
                work,
                on_conflict_retry=on_retry,
                retry_policy=self.retry_policy,
                lease=lease,
            )
