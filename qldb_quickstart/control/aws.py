"""
AWS QLDB control plane implementation.

Talks to the "qldb" service through aiobotocore.

Invariants:
    - Every botocore error is translated by classify_client_error()
    - The client is opened once in connect() and released in close()

How to change safely:
    - Test against a real account before changing request shapes
    - Keep ledger names out of error messages only if they become sensitive
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import LedgerConnectionError, classify_client_error
from .base import LedgerDescription, PermissionsMode

logger = logging.getLogger(__name__)


class AwsLedgerControlPlane:
    """LedgerControlPlane backed by the QLDB management API.

    Attributes:
        config: AwsConfig instance

    Example:
        >>> control = AwsLedgerControlPlane(AwsConfig(region="eu-west-1"))
        >>> await control.connect()
        >>> await control.create_ledger("MyLedger")
    """

    def __init__(self, config: Any) -> None:
        """Initialize the control plane.

        Args:
            config: AwsConfig instance
        """
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = None

    @property
    def is_connected(self) -> bool:
        """Whether the qldb client is open."""
        return self._client is not None

    async def connect(self) -> None:
        """Open the qldb client.

        Raises:
            LedgerConnectionError: If the client cannot be created
        """
        if self._client is not None:
            return

        try:
            self._session = get_session()

            client_kwargs: dict[str, Any] = {
                "region_name": self.config.region,
                "config": AioConfig(
                    connect_timeout=self.config.connect_timeout,
                    read_timeout=self.config.read_timeout,
                ),
            }
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url

            self._client_ctx = self._session.create_client("qldb", **client_kwargs)
            self._client = await self._client_ctx.__aenter__()
        except BotoCoreError as e:
            raise LedgerConnectionError(
                f"Failed to create qldb client: {e}", endpoint=self.config.endpoint_url
            ) from e

        logger.info(
            "Connected to QLDB control plane",
            extra={"region": self.config.region, "endpoint": self.config.endpoint_url or "AWS"},
        )

    async def close(self) -> None:
        """Close the qldb client."""
        if self._client is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing qldb client: {e}")

        self._client = None
        self._client_ctx = None
        self._session = None

    def _require_client(self) -> Any:
        if self._client is None:
            raise LedgerConnectionError("Not connected to QLDB control plane")
        return self._client

    async def create_ledger(
        self,
        name: str,
        permissions_mode: PermissionsMode = PermissionsMode.ALLOW_ALL,
        deletion_protection: bool = True,
    ) -> LedgerDescription:
        """Submit CreateLedger. See LedgerControlPlane.create_ledger."""
        client = self._require_client()
        try:
            response = await client.create_ledger(
                Name=name,
                PermissionsMode=permissions_mode.value,
                DeletionProtection=deletion_protection,
            )
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, ledger_name=name) from e

        description = LedgerDescription.from_response(response)
        logger.info("CreateLedger accepted", extra={"ledger": description.to_dict()})
        return description

    async def describe_ledger(self, name: str) -> LedgerDescription:
        """Submit DescribeLedger. See LedgerControlPlane.describe_ledger."""
        client = self._require_client()
        try:
            response = await client.describe_ledger(Name=name)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, ledger_name=name) from e
        return LedgerDescription.from_response(response)

    async def update_deletion_protection(self, name: str, enabled: bool) -> LedgerDescription:
        """Submit UpdateLedger with the new DeletionProtection flag."""
        client = self._require_client()
        try:
            response = await client.update_ledger(Name=name, DeletionProtection=enabled)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, ledger_name=name) from e
        return LedgerDescription.from_response(response)

    async def delete_ledger(self, name: str) -> None:
        """Submit DeleteLedger. See LedgerControlPlane.delete_ledger."""
        client = self._require_client()
        try:
            await client.delete_ledger(Name=name)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, ledger_name=name) from e
        logger.info("DeleteLedger accepted", extra={"ledger_name": name})
