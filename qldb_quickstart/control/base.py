"""
Base protocol and types for the ledger control plane.

The control plane creates, describes and deletes ledgers. It never touches
ledger data; that goes through the session data plane in ``driver``.

Invariants:
    - describe_ledger() reflects the service's view at call time; no caching
    - Implementations raise QldbQuickstartError subclasses, never botocore errors

How to change safely:
    - Protocol changes require updating all implementations
    - Keep LedgerState values identical to the service's State strings
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable


class LedgerState(Enum):
    """Lifecycle states reported by DescribeLedger."""

    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    DELETING = "DELETING"
    DELETED = "DELETED"

    @property
    def is_terminal_for_create(self) -> bool:
        """Whether a ledger in this state can never become ACTIVE."""
        return self in (LedgerState.DELETING, LedgerState.DELETED)


class PermissionsMode(Enum):
    """Ledger permissions modes."""

    ALLOW_ALL = "ALLOW_ALL"
    STANDARD = "STANDARD"


@dataclass(frozen=True)
class LedgerDescription:
    """Snapshot of a ledger as returned by DescribeLedger.

    Attributes:
        name: Ledger name
        state: Lifecycle state
        arn: Ledger ARN
        creation_time: When the ledger was created
        deletion_protection: Whether deletion protection is on
        permissions_mode: Permissions mode, if reported
    """

    name: str
    state: LedgerState
    arn: Optional[str] = None
    creation_time: Optional[datetime] = None
    deletion_protection: bool = True
    permissions_mode: Optional[PermissionsMode] = None

    @property
    def is_active(self) -> bool:
        return self.state is LedgerState.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and reports."""
        return {
            "name": self.name,
            "state": self.state.value,
            "arn": self.arn,
            "creation_time": self.creation_time.isoformat() if self.creation_time else None,
            "deletion_protection": self.deletion_protection,
            "permissions_mode": self.permissions_mode.value if self.permissions_mode else None,
        }

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> LedgerDescription:
        """Build from a CreateLedger/DescribeLedger/UpdateLedger response."""
        mode = response.get("PermissionsMode")
        return cls(
            name=response["Name"],
            state=LedgerState(response["State"]),
            arn=response.get("Arn"),
            creation_time=response.get("CreationDateTime"),
            deletion_protection=response.get("DeletionProtection", True),
            permissions_mode=PermissionsMode(mode) if mode else None,
        )

    def __str__(self) -> str:
        return f"Ledger({self.name}, {self.state.value})"


@runtime_checkable
class LedgerControlPlane(Protocol):
    """Protocol for ledger control plane backends.

    Example:
        >>> control = AwsLedgerControlPlane(config.aws)
        >>> await control.connect()
        >>> desc = await control.describe_ledger("MyLedger")
        >>> print(desc.state)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Create the underlying client.

        Raises:
            LedgerConnectionError: If the client cannot be created
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying client."""
        ...

    @abstractmethod
    async def create_ledger(
        self,
        name: str,
        permissions_mode: PermissionsMode = PermissionsMode.ALLOW_ALL,
        deletion_protection: bool = True,
    ) -> LedgerDescription:
        """Submit a CreateLedger request.

        Returns immediately; the ledger is usually still CREATING.

        Raises:
            LedgerAlreadyExistsError: If the name is taken
            LedgerConnectionError: On transport or authorization failure
        """
        ...

    @abstractmethod
    async def describe_ledger(self, name: str) -> LedgerDescription:
        """Describe a ledger by name.

        Raises:
            LedgerNotFoundError: If the ledger does not exist
            LedgerConnectionError: On transport or authorization failure
        """
        ...

    @abstractmethod
    async def update_deletion_protection(self, name: str, enabled: bool) -> LedgerDescription:
        """Turn deletion protection on or off."""
        ...

    @abstractmethod
    async def delete_ledger(self, name: str) -> None:
        """Submit a DeleteLedger request.

        Raises:
            LedgerStateError: If deletion protection is still enabled
            LedgerNotFoundError: If the ledger does not exist
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the client is open."""
        ...
