"""
Bounded async access to the driver's session pool.

pyqldb keeps the sessions themselves. It reuses idle ones, discards any
that saw an InvalidSessionException and caps the number in use at
max_concurrent_transactions, but a thread that finds every session busy is
turned away after one millisecond. SessionPool puts an asyncio.Semaphore
with the same bound in front of it, so coroutines queue for a slot for up
to timeout_seconds instead.

acquire() is an async context manager. The slot is given back on every
exit path, including exceptions and task cancellation. A holder cancelled
while its transaction is still running on a worker thread keeps the slot
until that thread finishes, since pyqldb still has the session checked out.

Invariants:
    - At most max_sessions leases are held at once
    - After close(), acquire() raises DriverClosedError
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..errors import DriverClosedError, SessionPoolEmptyError

logger = logging.getLogger(__name__)


class SessionLease:
    """A slot checked out of the pool."""

    def __init__(self) -> None:
        self._pending: Optional[asyncio.Future] = None

    def hold_until(self, future: asyncio.Future) -> None:
        """Keep the slot taken until ``future`` completes."""
        self._pending = future


class SessionPool:
    """Semaphore-bounded gate in front of pyqldb's session pool.

    Attributes:
        max_sessions: Maximum leases held at once
        timeout_seconds: Maximum wait for a free slot

    Example:
        >>> pool = SessionPool(max_sessions=10)
        >>> async with pool.acquire() as lease:
        ...     await run_in_transaction(qldb_driver, work, lease=lease)
    """

    def __init__(self, max_sessions: int = 10, timeout_seconds: float = 30.0) -> None:
        self.max_sessions = max_sessions
        self.timeout_seconds = timeout_seconds
        self._slots = asyncio.Semaphore(max_sessions)
        self._leased = 0
        self._closed = False

    @property
    def leased_count(self) -> int:
        return self._leased

    @property
    def available_count(self) -> int:
        return self.max_sessions - self._leased

    @property
    def is_closed(self) -> bool:
        return self._closed

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[SessionLease]:
        """Hold a slot for the duration of the block.

        Raises:
            DriverClosedError: If the pool was closed
            SessionPoolEmptyError: If no slot freed up within timeout_seconds
        """
        if self._closed:
            raise DriverClosedError()

        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise SessionPoolEmptyError(self.timeout_seconds)

        self._leased += 1
        lease = SessionLease()
        try:
            yield lease
        finally:
            pending = lease._pending
            if pending is not None and not pending.done():
                pending.add_done_callback(lambda _: self._release())
            else:
                self._release()

    def _release(self) -> None:
        self._leased -= 1
        self._slots.release()

    def close(self) -> None:
        """Refuse new leases. Leases already held are released normally."""
        self._closed = True
        logger.debug("Session pool closed", extra={"leased": self._leased})
