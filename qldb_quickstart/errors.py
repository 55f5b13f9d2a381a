"""
Error types for QLDB Quickstart.

This module defines all exception types raised by the package and the
mapping from botocore and pyqldb errors onto them:
- QldbQuickstartError: Base exception
- LedgerConnectionError: Transport or authorization failure (unrecoverable)
- OccConflictError: Optimistic concurrency conflict at commit (retryable)
- TransientServiceError: Throttling or 5xx from the service (retryable)
- StatementError: Remote statement execution failure
- Ledger*Error: Provisioning failures

Invariants:
    - All errors inherit from QldbQuickstartError
    - Errors carry a stable code for programmatic handling
    - Wrapped botocore and pyqldb errors are chained with ``raise ... from``
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
)
from pyqldb import errors as pyqldb_errors
from pyqldb.driver.qldb_driver import POOL_TIMEOUT_SECONDS


class QldbQuickstartError(Exception):
    """Base exception for all QLDB Quickstart errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "QLDB_ERROR"
        self.details = details or {}


class LedgerConnectionError(QldbQuickstartError):
    """Failed to reach or authenticate against the service.

    Raised when:
    - The endpoint is unreachable
    - No credentials are available
    - Credentials are rejected or expired
    """

    def __init__(self, message: str, endpoint: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"endpoint": endpoint})
        self.endpoint = endpoint


class LedgerServiceError(QldbQuickstartError):
    """Unclassified error returned by the service."""

    def __init__(self, message: str, service_code: Optional[str] = None) -> None:
        super().__init__(message, code="SERVICE_ERROR", details={"service_code": service_code})
        self.service_code = service_code


class TransientServiceError(QldbQuickstartError):
    """Throttling, capacity or 5xx error. Safe to retry."""

    def __init__(self, message: str, service_code: Optional[str] = None) -> None:
        super().__init__(message, code="TRANSIENT_ERROR", details={"service_code": service_code})
        self.service_code = service_code


class LedgerAlreadyExistsError(QldbQuickstartError):
    """CreateLedger was called for a name that already exists."""

    def __init__(self, message: str, ledger_name: Optional[str] = None) -> None:
        super().__init__(message, code="LEDGER_EXISTS", details={"ledger_name": ledger_name})
        self.ledger_name = ledger_name


class LedgerNotFoundError(QldbQuickstartError):
    """The named ledger does not exist."""

    def __init__(self, message: str, ledger_name: Optional[str] = None) -> None:
        super().__init__(message, code="LEDGER_NOT_FOUND", details={"ledger_name": ledger_name})
        self.ledger_name = ledger_name


class LedgerStateError(QldbQuickstartError):
    """The ledger is in a state that does not allow the requested transition.

    Raised when:
    - The ledger is DELETING/DELETED while waiting for ACTIVE
    - The service reports ResourceInUseException
    """

    def __init__(
        self,
        message: str,
        ledger_name: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="LEDGER_STATE",
            details={"ledger_name": ledger_name, "state": state},
        )
        self.ledger_name = ledger_name
        self.state = state


class ProvisioningTimeoutError(QldbQuickstartError):
    """The ledger did not reach the expected state within the deadline."""

    def __init__(self, message: str, ledger_name: str, timeout_seconds: float, polls: int) -> None:
        super().__init__(
            message,
            code="PROVISIONING_TIMEOUT",
            details={
                "ledger_name": ledger_name,
                "timeout_seconds": timeout_seconds,
                "polls": polls,
            },
        )
        self.ledger_name = ledger_name
        self.timeout_seconds = timeout_seconds
        self.polls = polls


class ProvisioningCancelledError(QldbQuickstartError):
    """The provisioning wait was cancelled by the caller."""

    def __init__(self, message: str, ledger_name: str, polls: int) -> None:
        super().__init__(
            message,
            code="PROVISIONING_CANCELLED",
            details={"ledger_name": ledger_name, "polls": polls},
        )
        self.ledger_name = ledger_name
        self.polls = polls


class OccConflictError(QldbQuickstartError):
    """Commit rejected because another transaction touched the same data."""

    def __init__(self, message: str, transaction_id: Optional[str] = None) -> None:
        super().__init__(message, code="OCC_CONFLICT", details={"transaction_id": transaction_id})
        self.transaction_id = transaction_id


class InvalidSessionError(QldbQuickstartError):
    """The session token is no longer valid. The session must be discarded."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_SESSION")


class StatementError(QldbQuickstartError):
    """A statement failed to execute on the service.

    Covers syntax errors, unknown tables and other BadRequest responses.
    """

    def __init__(self, message: str, statement: Optional[str] = None) -> None:
        super().__init__(message, code="STATEMENT_ERROR", details={"statement": statement})
        self.statement = statement


class TransactionAbortedError(QldbQuickstartError):
    """The unit of work aborted the transaction on purpose. Never retried."""

    def __init__(self, message: str = "Transaction aborted by unit of work") -> None:
        super().__init__(message, code="TRANSACTION_ABORTED")


class RetryLimitExceededError(QldbQuickstartError):
    """A unit of work kept failing with retryable errors.

    Attributes:
        attempts: Total attempts made, including the first one
        last_error: The error raised by the final attempt
    """

    def __init__(self, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"Transaction failed after {attempts} attempts: {last_error}",
            code="RETRY_LIMIT_EXCEEDED",
            details={"attempts": attempts, "last_error": str(last_error)},
        )
        self.attempts = attempts
        self.last_error = last_error


class SessionPoolEmptyError(QldbQuickstartError):
    """No session became available within the pool timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"No session available after {timeout_seconds}s",
            code="POOL_EMPTY",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class DriverClosedError(QldbQuickstartError):
    """The driver or pool was used after close()."""

    def __init__(self) -> None:
        super().__init__("Driver has been closed", code="DRIVER_CLOSED")


class ResultClosedError(QldbQuickstartError):
    """A single-pass result was iterated a second time or after its transaction ended."""

    def __init__(self, message: str = "Result has already been consumed") -> None:
        super().__init__(message, code="RESULT_CLOSED")


_AUTH_CODES = frozenset(
    {
        "AccessDeniedException",
        "UnrecognizedClientException",
        "ExpiredTokenException",
        "InvalidSignatureException",
        "InvalidClientTokenId",
        "MissingAuthenticationTokenException",
    }
)

_TRANSIENT_CODES = frozenset(
    {
        "CapacityExceededException",
        "RateExceededException",
        "LimitExceededException",
        "ThrottlingException",
    }
)


def classify_client_error(
    error: Exception,
    ledger_name: Optional[str] = None,
    statement: Optional[str] = None,
) -> QldbQuickstartError:
    """Map a botocore error onto the package's exception hierarchy.

    Args:
        error: The botocore exception
        ledger_name: Ledger the call referred to, for context
        statement: Statement being executed, for context

    Returns:
        The matching QldbQuickstartError (not raised)
    """
    if isinstance(error, EndpointConnectionError):
        return LedgerConnectionError(f"Failed to connect to QLDB endpoint: {error}")
    if isinstance(error, NoCredentialsError):
        return LedgerConnectionError(f"No AWS credentials available: {error}")
    if not isinstance(error, ClientError):
        if isinstance(error, BotoCoreError):
            return LedgerConnectionError(f"AWS client error: {error}")
        return LedgerServiceError(str(error))

    err = error.response.get("Error", {})
    code = err.get("Code", "")
    message = err.get("Message", str(error))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code == "OccConflictException":
        return OccConflictError(message)
    if code == "InvalidSessionException":
        return InvalidSessionError(message)
    if code == "BadRequestException":
        return StatementError(message, statement=statement)
    if code == "ResourceAlreadyExistsException":
        return LedgerAlreadyExistsError(message, ledger_name=ledger_name)
    if code == "ResourceNotFoundException":
        return LedgerNotFoundError(message, ledger_name=ledger_name)
    if code == "ResourceInUseException":
        return LedgerStateError(message, ledger_name=ledger_name)
    if code in _AUTH_CODES:
        return LedgerConnectionError(f"Not authorized: {message}")
    if code in _TRANSIENT_CODES or status in (500, 503):
        return TransientServiceError(message, service_code=code)
    return LedgerServiceError(message, service_code=code)


def classify_driver_error(error: Exception) -> Exception:
    """Map an error escaping pyqldb's QldbDriver onto the package's hierarchy.

    Errors raised by the unit of work itself (anything that is neither a
    botocore nor a pyqldb error) are returned unchanged.
    """
    if isinstance(error, QldbQuickstartError):
        return error
    if isinstance(error, (ClientError, BotoCoreError)):
        return classify_client_error(error)
    if isinstance(error, pyqldb_errors.DriverClosedError):
        return DriverClosedError()
    if isinstance(error, pyqldb_errors.ResultClosedError):
        return ResultClosedError(str(error))
    if isinstance(error, pyqldb_errors.SessionPoolEmptyError):
        return SessionPoolEmptyError(POOL_TIMEOUT_SECONDS)
    if isinstance(error, pyqldb_errors.LambdaAbortedError):
        return TransactionAbortedError()
    if isinstance(error, pyqldb_errors.IllegalStateError):
        return QldbQuickstartError(str(error), code="ILLEGAL_STATE")
    return error
