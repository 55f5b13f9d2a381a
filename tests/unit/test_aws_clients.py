"""
Unit tests for the aiobotocore-backed control plane.

The botocore client is replaced by an AsyncMock, so these tests check
request shapes, response parsing and error mapping without AWS.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from qldb_quickstart.config import AwsConfig
from qldb_quickstart.control import (
    AwsLedgerControlPlane,
    LedgerState,
    PermissionsMode,
    ProvisioningWaiter,
)
from qldb_quickstart.errors import (
    LedgerAlreadyExistsError,
    LedgerConnectionError,
)


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def ledger_response(state: str) -> dict:
    return {
        "Name": "MyLedger",
        "Arn": "arn:aws:qldb:us-east-1:123456789012:ledger/MyLedger",
        "State": state,
        "CreationDateTime": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "PermissionsMode": "ALLOW_ALL",
        "DeletionProtection": True,
    }


class TestAwsLedgerControlPlane:
    """Tests for AwsLedgerControlPlane."""

    @pytest.fixture
    def control(self):
        control = AwsLedgerControlPlane(AwsConfig(region="us-east-1"))
        control._client = AsyncMock()
        return control

    @pytest.mark.asyncio
    async def test_create_ledger_request(self, control):
        control._client.create_ledger.return_value = ledger_response("CREATING")

        description = await control.create_ledger(
            "MyLedger", permissions_mode=PermissionsMode.ALLOW_ALL
        )

        control._client.create_ledger.assert_awaited_once_with(
            Name="MyLedger", PermissionsMode="ALLOW_ALL", DeletionProtection=True
        )
        assert description.state is LedgerState.CREATING
        assert description.permissions_mode is PermissionsMode.ALLOW_ALL

    @pytest.mark.asyncio
    async def test_describe_ledger(self, control):
        control._client.describe_ledger.return_value = ledger_response("ACTIVE")

        description = await control.describe_ledger("MyLedger")

        assert description.is_active
        assert description.creation_time.year == 2024

    @pytest.mark.asyncio
    async def test_already_exists_is_mapped(self, control):
        control._client.create_ledger.side_effect = client_error(
            "ResourceAlreadyExistsException", "CreateLedger"
        )

        with pytest.raises(LedgerAlreadyExistsError) as exc_info:
            await control.create_ledger("MyLedger")
        assert exc_info.value.ledger_name == "MyLedger"

    @pytest.mark.asyncio
    async def test_access_denied_is_connection_error(self, control):
        control._client.describe_ledger.side_effect = client_error(
            "AccessDeniedException", "DescribeLedger"
        )

        with pytest.raises(LedgerConnectionError):
            await control.describe_ledger("MyLedger")

    @pytest.mark.asyncio
    async def test_endpoint_unreachable(self, control):
        control._client.describe_ledger.side_effect = EndpointConnectionError(
            endpoint_url="https://qldb.us-east-1.amazonaws.com"
        )

        with pytest.raises(LedgerConnectionError):
            await control.describe_ledger("MyLedger")

    @pytest.mark.asyncio
    async def test_update_and_delete(self, control):
        control._client.update_ledger.return_value = {**ledger_response("ACTIVE"), "DeletionProtection": False}

        description = await control.update_deletion_protection("MyLedger", False)
        await control.delete_ledger("MyLedger")

        control._client.update_ledger.assert_awaited_once_with(
            Name="MyLedger", DeletionProtection=False
        )
        control._client.delete_ledger.assert_awaited_once_with(Name="MyLedger")
        assert description.deletion_protection is False

    @pytest.mark.asyncio
    async def test_waiter_with_existing_ledger(self, control):
        control._client.create_ledger.side_effect = client_error(
            "ResourceAlreadyExistsException", "CreateLedger"
        )
        control._client.describe_ledger.side_effect = [
            ledger_response("CREATING"),
            ledger_response("ACTIVE"),
        ]
        waiter = ProvisioningWaiter(control, poll_interval_seconds=0)

        description = await waiter.ensure_ledger_active("MyLedger")

        assert description.is_active
        assert control._client.describe_ledger.await_count == 2

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        control = AwsLedgerControlPlane(AwsConfig())
        with pytest.raises(LedgerConnectionError):
            await control.describe_ledger("MyLedger")

    @pytest.mark.asyncio
    async def test_connect_and_close(self):
        client = AsyncMock()
        client_ctx = MagicMock()
        client_ctx.__aenter__ = AsyncMock(return_value=client)
        client_ctx.__aexit__ = AsyncMock(return_value=None)
        session = MagicMock()
        session.create_client.return_value = client_ctx

        control = AwsLedgerControlPlane(AwsConfig(region="eu-west-1", endpoint_url="http://localhost:4566"))
        with patch("qldb_quickstart.control.aws.get_session", return_value=session):
            await control.connect()

        args, kwargs = session.create_client.call_args
        assert args == ("qldb",)
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["endpoint_url"] == "http://localhost:4566"
        assert control.is_connected

        await control.close()
        client_ctx.__aexit__.assert_awaited_once()
        assert not control.is_connected
