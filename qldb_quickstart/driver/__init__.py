"""
QLDB session data plane for QLDB Quickstart.

Provides:
- LedgerDriver: asyncio front end over pyqldb's QldbDriver
- run_in_transaction(): bounded retry around a unit of work
- SessionPool: async gate in front of pyqldb's session pool
- InMemorySessionClient: offline qldb-session backend for tests

Invariants:
    - Units of work commit atomically or leave no trace
    - Pool slots are released on every exit path
"""

from .driver import LedgerDriver
from .memory import InMemorySessionClient
from .pool import SessionLease, SessionPool
from .retry import ExponentialBackoff, FixedBackoff, RetryPolicy
from .runner import run_in_transaction

__all__ = [
    "LedgerDriver",
    "InMemorySessionClient",
    "SessionPool",
    "SessionLease",
    # Retry
    "RetryPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "run_in_transaction",
]
