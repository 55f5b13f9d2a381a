"""
Transactional operation runner.

run_in_transaction() hands a unit of work to pyqldb's
QldbDriver.execute_lambda() on a worker thread. pyqldb opens the
transaction, commits it with the commit digest and replays the whole unit
of work on OCC conflicts and transient failures. The runner supplies the
retry budget, reports every retry to an observer and translates whatever
escapes into the package's exception types.

Invariants:
    - The unit of work runs at most retry_limit + 1 times
    - on_conflict_retry(n) is called once before the n-th retry, n starting at 1
    - Non-retryable errors propagate on the attempt that raised them
    - Exhausting the budget raises RetryLimitExceededError chained to the last error
    - Cancelling the caller does not interrupt a transaction already on its thread
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, TypeVar

from pyqldb.driver.qldb_driver import QldbDriver
from pyqldb.errors import is_occ_conflict_exception, is_retriable_exception
from pyqldb.execution.executor import Executor

from ..errors import RetryLimitExceededError, classify_driver_error
from .pool import SessionLease
from .retry import RetryObserver, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    driver: QldbDriver,
    work: Callable[[Executor], T],
    on_conflict_retry: Optional[RetryObserver] = None,
    retry_policy: Optional[RetryPolicy] = None,
    lease: Optional[SessionLease] = None,
) -> T:
    """Run a unit of work, retrying it on OCC conflicts and transient errors.

    Args:
        driver: pyqldb driver that provides the pooled session
        work: Function receiving a pyqldb Executor; it runs on a worker thread
        on_conflict_retry: Called with the retry number before each retry
        retry_policy: Retry budget and backoff (defaults to RetryPolicy())
        lease: Pool slot to keep taken until the worker thread finishes

    Returns:
        Whatever the unit of work returned (stream cursors are buffered)

    Raises:
        RetryLimitExceededError: If every attempt failed with a retryable error
        QldbQuickstartError: The translated first non-retryable error
        Exception: Anything else raised by the unit of work
    """
    policy = retry_policy or RetryPolicy()
    retries: List[int] = []

    def on_backoff(retry_attempt: int, error: Exception, transaction_id: Any) -> None:
        retries.append(retry_attempt)
        retry_number = len(retries)
        if is_occ_conflict_exception(error):
            logger.debug(
                "OCC conflict at commit, retrying",
                extra={"retry_attempt": retry_attempt, "transaction_id": transaction_id},
            )
        else:
            logger.warning(
                f"Retrying after {type(error).__name__}: {error}",
                extra={"retry_attempt": retry_attempt, "transaction_id": transaction_id},
            )
        if on_conflict_retry is not None:
            on_conflict_retry(retry_number)

    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(
        None, driver.execute_lambda, work, policy.to_retry_config(on_backoff)
    )
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        future.add_done_callback(_log_abandoned)
        if lease is not None:
            lease.hold_until(future)
        raise
    except Exception as e:
        error = classify_driver_error(e)
        # pyqldb only lets a retryable error escape once the budget is spent.
        if is_retriable_exception(e):
            raise RetryLimitExceededError(len(retries) + 1, error) from e
        if error is e:
            raise
        raise error from e


def _log_abandoned(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(f"Abandoned transaction failed: {error}")
