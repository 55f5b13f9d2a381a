"""
Ledger control plane for QLDB Quickstart.

Provides:
- LedgerControlPlane protocol with AWS and in-memory backends
- ProvisioningWaiter: create a ledger and wait for it to become ACTIVE

Invariants:
    - Nothing in this package touches ledger data
    - Waits are bounded and cancellable
"""

from .aws import AwsLedgerControlPlane
from .base import LedgerControlPlane, LedgerDescription, LedgerState, PermissionsMode
from .memory import InMemoryLedgerControlPlane
from .waiter import ProvisioningWaiter

__all__ = [
    # Protocol and types
    "LedgerControlPlane",
    "LedgerDescription",
    "LedgerState",
    "PermissionsMode",
    # Implementations
    "AwsLedgerControlPlane",
    "InMemoryLedgerControlPlane",
    # Waiter
    "ProvisioningWaiter",
]
