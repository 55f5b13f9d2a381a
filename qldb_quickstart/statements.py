"""
Statement formatting and execution.

Statements are plain PartiQL strings submitted as-is; there is no
client-side validation. A malformed statement or a missing table comes back
from the service as StatementError.
"""

from __future__ import annotations

import math
import time
from decimal import Decimal
from typing import Any, Mapping

from botocore.exceptions import ClientError
from pyqldb.cursor.stream_cursor import StreamCursor
from pyqldb.errors import is_bad_request_exception
from pyqldb.execution.executor import Executor

from .errors import classify_client_error

TIMESTAMP_FIELD = "mytabledate"


def create_table(table_name: str) -> str:
    return f"CREATE TABLE {table_name}"


def select_all(table_name: str) -> str:
    return f"SELECT * FROM {table_name}"


def insert_document(table_name: str, document: Mapping[str, Any]) -> str:
    """INSERT statement for one document given as a flat mapping."""
    return f"INSERT INTO {table_name} VALUE {format_document(document)}"


def format_document(document: Mapping[str, Any]) -> str:
    """Render a flat mapping as an Ion struct literal.

    >>> format_document({"mytabledate": 1700000000000})
    "{ 'mytabledate': 1700000000000 }"
    """
    fields = ", ".join(f"{_quote(key)}: {_literal(value)}" for key, value in document.items())
    return "{ " + fields + " }"


def timestamp_document(now_ms: int | None = None) -> dict[str, int]:
    """The quickstart's single-attribute document: insertion time in epoch ms."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return {TIMESTAMP_FIELD: now_ms}


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "+inf" if value > 0 else "-inf"
        text = repr(value)
        return text if "e" in text else text + "e0"
    if isinstance(value, str):
        return _quote(value)
    raise TypeError(f"Unsupported document value type: {type(value).__name__}")


def execute(transaction: Executor, statement: str) -> StreamCursor:
    """Submit a statement in an open transaction.

    Raises:
        StatementError: If the service rejected the statement
        ClientError: Anything else, left for the retry loop to judge
    """
    try:
        return transaction.execute_statement(statement)
    except ClientError as e:
        if is_bad_request_exception(e):
            raise classify_client_error(e, statement=statement) from e
        raise
