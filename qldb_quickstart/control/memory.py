"""
In-memory ledger control plane for testing.

Simulates the asynchronous lifecycle of ledgers: a created ledger reports a
scripted sequence of states on successive describe calls, then stays in the
last one.

Invariants:
    - All data is lost on process exit
    - Raises the same exception types as AwsLedgerControlPlane

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the LedgerControlPlane protocol
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional

from ..errors import (
    LedgerAlreadyExistsError,
    LedgerConnectionError,
    LedgerNotFoundError,
    LedgerStateError,
)
from .base import LedgerDescription, LedgerState, PermissionsMode

logger = logging.getLogger(__name__)


@dataclass
class InMemoryLedger:
    """In-memory ledger record."""

    name: str
    state: LedgerState
    permissions_mode: PermissionsMode
    deletion_protection: bool
    created_at: datetime
    pending_states: Deque[LedgerState] = field(default_factory=deque)
    removed_on_next_describe: bool = False

    def describe(self) -> LedgerDescription:
        return LedgerDescription(
            name=self.name,
            state=self.state,
            arn=f"arn:aws:qldb:us-east-1:000000000000:ledger/{self.name}",
            creation_time=self.created_at,
            deletion_protection=self.deletion_protection,
            permissions_mode=self.permissions_mode,
        )


class InMemoryLedgerControlPlane:
    """In-memory implementation of LedgerControlPlane.

    By default a new ledger reports CREATING on the first
    ``creating_polls`` describe calls and ACTIVE afterwards.

    Example:
        >>> control = InMemoryLedgerControlPlane(creating_polls=2)
        >>> await control.connect()
        >>> await control.create_ledger("MyLedger")
        >>> (await control.describe_ledger("MyLedger")).state
        <LedgerState.CREATING: 'CREATING'>
    """

    def __init__(self, creating_polls: int = 1) -> None:
        """Initialize the in-memory control plane.

        Args:
            creating_polls: Describe calls that report CREATING before ACTIVE
        """
        self.creating_polls = creating_polls
        self._ledgers: Dict[str, InMemoryLedger] = {}
        self._connected = False
        self._failures: Deque[Exception] = deque()
        self.describe_calls: Dict[str, int] = defaultdict(int)
        self.create_calls: Dict[str, int] = defaultdict(int)
        self.delete_calls: Dict[str, int] = defaultdict(int)

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True

    async def close(self) -> None:
        """Close without clearing ledgers."""
        self._connected = False

    def _check(self) -> None:
        if not self._connected:
            raise LedgerConnectionError("Not connected")
        if self._failures:
            raise self._failures.popleft()

    async def create_ledger(
        self,
        name: str,
        permissions_mode: PermissionsMode = PermissionsMode.ALLOW_ALL,
        deletion_protection: bool = True,
    ) -> LedgerDescription:
        self._check()
        self.create_calls[name] += 1

        if name in self._ledgers:
            raise LedgerAlreadyExistsError(
                f"Ledger with name '{name}' already exists", ledger_name=name
            )

        ledger = InMemoryLedger(
            name=name,
            state=LedgerState.CREATING,
            permissions_mode=permissions_mode,
            deletion_protection=deletion_protection,
            created_at=datetime.now(timezone.utc),
        )
        ledger.pending_states.extend([LedgerState.CREATING] * self.creating_polls)
        ledger.pending_states.append(LedgerState.ACTIVE)
        self._ledgers[name] = ledger
        logger.debug("In-memory ledger created", extra={"ledger_name": name})
        return ledger.describe()

    async def describe_ledger(self, name: str) -> LedgerDescription:
        self._check()
        self.describe_calls[name] += 1

        ledger = self._ledgers.get(name)
        if ledger is None:
            raise LedgerNotFoundError(f"Ledger '{name}' not found", ledger_name=name)

        if ledger.removed_on_next_describe and not ledger.pending_states:
            del self._ledgers[name]
            raise LedgerNotFoundError(f"Ledger '{name}' not found", ledger_name=name)

        if ledger.pending_states:
            ledger.state = ledger.pending_states.popleft()
        return ledger.describe()

    async def update_deletion_protection(self, name: str, enabled: bool) -> LedgerDescription:
        self._check()
        ledger = self._ledgers.get(name)
        if ledger is None:
            raise LedgerNotFoundError(f"Ledger '{name}' not found", ledger_name=name)
        ledger.deletion_protection = enabled
        return ledger.describe()

    async def delete_ledger(self, name: str) -> None:
        self._check()
        self.delete_calls[name] += 1

        ledger = self._ledgers.get(name)
        if ledger is None:
            raise LedgerNotFoundError(f"Ledger '{name}' not found", ledger_name=name)
        if ledger.deletion_protection:
            raise LedgerStateError(
                f"Ledger '{name}' has deletion protection enabled",
                ledger_name=name,
                state=ledger.state.value,
            )
        ledger.state = LedgerState.DELETING
        ledger.pending_states.clear()
        ledger.pending_states.append(LedgerState.DELETING)
        ledger.removed_on_next_describe = True

    # Testing helpers

    def add_ledger(
        self,
        name: str,
        state: LedgerState = LedgerState.ACTIVE,
        deletion_protection: bool = True,
    ) -> None:
        """Register an existing ledger in a fixed state (testing helper)."""
        self._ledgers[name] = InMemoryLedger(
            name=name,
            state=state,
            permissions_mode=PermissionsMode.ALLOW_ALL,
            deletion_protection=deletion_protection,
            created_at=datetime.now(timezone.utc),
        )

    def script_states(self, name: str, states: Iterable[LedgerState]) -> None:
        """Set the states returned by the next describe calls (testing helper).

        Creates the ledger if needed. After the script runs out, the last
        state persists.
        """
        ledger = self._ledgers.get(name)
        if ledger is None:
            self.add_ledger(name, state=LedgerState.CREATING)
            ledger = self._ledgers[name]
        ledger.pending_states = deque(states)

    def inject_failure(self, exception: Exception) -> None:
        """Make the next call raise this exception (testing helper)."""
        self._failures.append(exception)

    def ledger_names(self) -> List[str]:
        """Names of ledgers that still exist (testing helper)."""
        return sorted(self._ledgers)

    def get_state(self, name: str) -> Optional[LedgerState]:
        """Current state without counting a describe call (testing helper)."""
        ledger = self._ledgers.get(name)
        return ledger.state if ledger else None
