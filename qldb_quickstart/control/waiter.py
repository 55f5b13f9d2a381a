"""
Ledger provisioning waiter.

Creates a ledger and polls DescribeLedger on a fixed interval until it
reports ACTIVE. The wait is bounded by a deadline and can be cancelled
through an asyncio.Event, so a stuck provisioning never hangs the caller.

Invariants:
    - ensure_ledger_active() returns only after a describe call saw ACTIVE
    - The ACTIVE check happens before any sleep; an ACTIVE ledger costs one poll
    - DELETING/DELETED while waiting for ACTIVE fails fast
    - An existing ledger is not an error (idempotent create)

How to change safely:
    - Keep the poll interval configurable; tests run it at zero
    - Never swallow LedgerConnectionError here; the workflow decides
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..errors import (
    LedgerAlreadyExistsError,
    LedgerNotFoundError,
    LedgerStateError,
    ProvisioningCancelledError,
    ProvisioningTimeoutError,
)
from .base import LedgerControlPlane, LedgerDescription, LedgerState, PermissionsMode

logger = logging.getLogger(__name__)


class ProvisioningWaiter:
    """Drives a ledger through creation (and optionally deletion).

    Attributes:
        control: Control plane backend
        poll_interval_seconds: Delay between describe calls
        timeout_seconds: Deadline for reaching the target state
        cancel_event: Optional event that aborts any wait when set
        last_poll_count: Describe calls made by the most recent wait

    Example:
        >>> waiter = ProvisioningWaiter(control, poll_interval_seconds=15)
        >>> desc = await waiter.ensure_ledger_active("MyLedger")
        >>> assert desc.state is LedgerState.ACTIVE
    """

    def __init__(
        self,
        control: LedgerControlPlane,
        poll_interval_seconds: float = 15.0,
        timeout_seconds: float = 900.0,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.control = control
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event
        self.last_poll_count = 0

    async def ensure_ledger_active(
        self,
        name: str,
        permissions_mode: PermissionsMode = PermissionsMode.ALLOW_ALL,
        deletion_protection: bool = True,
    ) -> LedgerDescription:
        """Create the ledger if needed and wait for it to become ACTIVE.

        Args:
            name: Ledger name
            permissions_mode: Permissions mode for a new ledger
            deletion_protection: Deletion protection for a new ledger

        Returns:
            The ACTIVE ledger description

        Raises:
            ProvisioningTimeoutError: If ACTIVE was not seen before the deadline
            ProvisioningCancelledError: If cancel_event was set
            LedgerStateError: If the ledger is being deleted
            LedgerConnectionError: On transport or authorization failure
        """
        logger.info("Creating ledger", extra={"ledger_name": name})
        try:
            await self.control.create_ledger(
                name,
                permissions_mode=permissions_mode,
                deletion_protection=deletion_protection,
            )
        except LedgerAlreadyExistsError:
            logger.info(
                "Ledger already exists, waiting for it to be active",
                extra={"ledger_name": name},
            )

        return await self.wait_until_active(name)

    async def wait_until_active(self, name: str) -> LedgerDescription:
        """Poll until the ledger is ACTIVE, without creating it.

        Raises:
            See ensure_ledger_active(). LedgerNotFoundError propagates.
        """
        logger.info("Waiting for ledger to become active...", extra={"ledger_name": name})
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        polls = 0
        self.last_poll_count = 0

        while True:
            self._raise_if_cancelled(name, polls)

            description = await self.control.describe_ledger(name)
            polls += 1
            self.last_poll_count = polls
            logger.info("Ledger description", extra={"ledger": description.to_dict(), "poll": polls})

            if description.is_active:
                logger.info(
                    "Success. Ledger is active and ready to use.",
                    extra={"ledger_name": name, "polls": polls},
                )
                return description

            if description.state.is_terminal_for_create:
                raise LedgerStateError(
                    f"Ledger '{name}' is {description.state.value} and will not become ACTIVE",
                    ledger_name=name,
                    state=description.state.value,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ProvisioningTimeoutError(
                    f"Ledger '{name}' not ACTIVE after {self.timeout_seconds}s",
                    ledger_name=name,
                    timeout_seconds=self.timeout_seconds,
                    polls=polls,
                )

            logger.info("The ledger is still creating. Please wait...", extra={"ledger_name": name})
            if await self._pause(min(self.poll_interval_seconds, remaining)):
                self._raise_if_cancelled(name, polls)

    async def delete_ledger(self, name: str) -> None:
        """Delete the ledger and wait until it is gone.

        Deletion protection is switched off first if needed.

        Raises:
            ProvisioningTimeoutError: If the ledger still exists at the deadline
            ProvisioningCancelledError: If cancel_event was set
        """
        description = await self.control.describe_ledger(name)
        if description.deletion_protection:
            logger.info("Disabling deletion protection", extra={"ledger_name": name})
            await self.control.update_deletion_protection(name, False)

        logger.info("Deleting ledger", extra={"ledger_name": name})
        await self.control.delete_ledger(name)
        await self.wait_until_deleted(name)

    async def wait_until_deleted(self, name: str) -> None:
        """Poll until describe reports DELETED or the ledger is not found."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        polls = 0

        while True:
            self._raise_if_cancelled(name, polls)
            try:
                description = await self.control.describe_ledger(name)
            except LedgerNotFoundError:
                logger.info("Ledger deleted", extra={"ledger_name": name, "polls": polls + 1})
                return
            polls += 1

            if description.state is LedgerState.DELETED:
                logger.info("Ledger deleted", extra={"ledger_name": name, "polls": polls})
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ProvisioningTimeoutError(
                    f"Ledger '{name}' still {description.state.value} after {self.timeout_seconds}s",
                    ledger_name=name,
                    timeout_seconds=self.timeout_seconds,
                    polls=polls,
                )

            logger.info("The ledger is still being deleted. Please wait...", extra={"ledger_name": name})
            await self._pause(min(self.poll_interval_seconds, remaining))

    async def _pause(self, seconds: float) -> bool:
        """Sleep, waking early if cancelled. Returns True when cancelled."""
        if self.cancel_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _raise_if_cancelled(self, name: str, polls: int) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ProvisioningCancelledError(
                f"Provisioning wait for '{name}' cancelled", ledger_name=name, polls=polls
            )
