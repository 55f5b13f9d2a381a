"""
In-memory qldb-session backend for testing.

InMemorySessionClient stands in for the boto3 "qldb-session" client that
pyqldb drives. It answers send_command() the way the service does and
implements just enough of a ledger to run the quickstart offline:
CREATE TABLE, INSERT INTO ... VALUE and SELECT * FROM, with writes buffered
per transaction and applied at commit.

Invariants:
    - All data is lost on process exit
    - Nothing a transaction wrote is visible to others before commit
    - A conflicted or aborted transaction leaves no trace
    - Failures are botocore ClientErrors shaped like the service's own

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep responses in the shape pyqldb reads from the real client
"""

from __future__ import annotations

import itertools
import logging
import re
import threading
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from amazon.ion.simpleion import dumps, loads
from boto3.session import Session
from botocore.exceptions import ClientError

from ..control.base import LedgerState

logger = logging.getLogger(__name__)

_CREATE_TABLE = re.compile(r"^\s*CREATE\s+TABLE\s+([A-Za-z_][A-Za-z0-9_]*)\s*$", re.IGNORECASE)
_INSERT = re.compile(
    r"^\s*INSERT\s+INTO\s+([A-Za-z_][A-Za-z0-9_]*)\s+VALUE\s+(.+?)\s*$",
    re.IGNORECASE | re.DOTALL,
)
_SELECT_ALL = re.compile(r"^\s*SELECT\s+\*\s+FROM\s+([A-Za-z_][A-Za-z0-9_]*)\s*$", re.IGNORECASE)


def service_error(code: str, message: str = "", status: int = 400) -> ClientError:
    """A SendCommand ClientError as the service returns it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "SendCommand",
    )


@dataclass
class InMemoryTransaction:
    """Buffered state of an open transaction."""

    transaction_id: str
    created_tables: List[str] = field(default_factory=list)
    inserts: List[tuple] = field(default_factory=list)


@dataclass
class InMemorySession:
    """Server side view of a session."""

    ledger_name: str
    transaction: Optional[InMemoryTransaction] = None


class InMemoryBoto3Session(Session):
    """boto3 Session whose qldb-session client is an InMemorySessionClient."""

    def __init__(self, backend: InMemorySessionClient) -> None:
        super().__init__(region_name="us-east-1")
        self._backend = backend

    def client(self, service_name: str, **kwargs: Any) -> InMemorySessionClient:
        return self._backend


class InMemorySessionClient:
    """In-memory replacement for the boto3 qldb-session client.

    Attributes:
        page_size: Values per result page
        control: Optional control plane; when given, sessions can only be
            started on ledgers it reports ACTIVE

    Example:
        >>> client = InMemorySessionClient()
        >>> driver = LedgerDriver("MyLedger", client.boto3_session())
    """

    def __init__(self, page_size: int = 200, control: Any = None) -> None:
        self.page_size = page_size
        self.control = control
        self._lock = threading.Lock()
        self._tables: Dict[str, Dict[str, List[Any]]] = {}
        self._sessions: Dict[str, InMemorySession] = {}
        self._pages: Dict[str, List[bytes]] = {}
        self._occ_conflicts = 0
        self._failures: Dict[str, Deque[ClientError]] = defaultdict(deque)
        self._doc_ids = itertools.count(1)
        self._handlers = {
            "StartSession": self._start_session,
            "StartTransaction": self._start_transaction,
            "ExecuteStatement": self._execute_statement,
            "FetchPage": self._fetch_page,
            "CommitTransaction": self._commit_transaction,
            "AbortTransaction": self._abort_transaction,
            "EndSession": self._end_session,
        }
        self.command_counts: Dict[str, int] = defaultdict(int)
        self.executed_statements: List[str] = []
        self.commit_count = 0
        self.abort_count = 0
        self.sessions_started = 0

    def boto3_session(self) -> InMemoryBoto3Session:
        """A boto3 Session to hand to LedgerDriver or QldbDriver."""
        return InMemoryBoto3Session(self)

    def send_command(self, **request: Any) -> Dict[str, Any]:
        """Handle one SendCommand request.

        Raises:
            ClientError: With the service's error code and HTTP status
        """
        command = next(key for key in request if key != "SessionToken")
        with self._lock:
            self.command_counts[command] += 1
            if self._failures[command]:
                raise self._failures[command].popleft()
            response = self._handlers[command](request.get("SessionToken"), request[command])
        response["ResponseMetadata"] = {
            "HTTPStatusCode": 200,
            "HTTPHeaders": {"x-amzn-requestid": uuid.uuid4().hex},
        }
        return response

    def _session(self, token: Optional[str]) -> InMemorySession:
        session = self._sessions.get(token or "")
        if session is None:
            raise service_error("InvalidSessionException", "Session token is not valid")
        return session

    def _transaction(self, session: InMemorySession, transaction_id: str) -> InMemoryTransaction:
        txn = session.transaction
        if txn is None or txn.transaction_id != transaction_id:
            raise service_error(
                "InvalidSessionException", f"Transaction {transaction_id} is not open on this session"
            )
        return txn

    def _start_session(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        ledger_name = body["LedgerName"]
        if self.control is not None and self.control.get_state(ledger_name) is not LedgerState.ACTIVE:
            raise service_error("BadRequestException", f"Ledger '{ledger_name}' is not ACTIVE")
        token = uuid.uuid4().hex
        self._sessions[token] = InMemorySession(ledger_name=ledger_name)
        self._tables.setdefault(ledger_name, {})
        self.sessions_started += 1
        return {"StartSession": {"SessionToken": token}}

    def _start_transaction(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        session = self._session(token)
        if session.transaction is not None:
            raise service_error("BadRequestException", "Transaction already open on this session")
        transaction_id = uuid.uuid4().hex[:22]
        session.transaction = InMemoryTransaction(transaction_id=transaction_id)
        return {"StartTransaction": {"TransactionId": transaction_id}}

    def _execute_statement(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        session = self._session(token)
        txn = self._transaction(session, body["TransactionId"])
        statement = body["Statement"]
        if body.get("Parameters"):
            raise service_error("BadRequestException", "Statement parameters are not supported")
        self.executed_statements.append(statement)

        values = self._run(self._tables[session.ledger_name], txn, statement)
        return {"ExecuteStatement": {"FirstPage": self._paginate([dumps(v) for v in values])}}

    def _run(self, tables: Dict[str, List[Any]], txn: InMemoryTransaction, statement: str) -> List[Any]:
        visible = set(tables) | set(txn.created_tables)

        match = _CREATE_TABLE.match(statement)
        if match:
            name = match.group(1)
            if name in visible:
                raise service_error("BadRequestException", f"Table '{name}' already exists")
            txn.created_tables.append(name)
            return [{"tableId": uuid.uuid4().hex[:22]}]

        match = _INSERT.match(statement)
        if match:
            name, document_text = match.groups()
            if name not in visible:
                raise service_error("BadRequestException", f"No such variable named '{name}'")
            try:
                document = loads(document_text)
            except Exception as e:
                raise service_error("BadRequestException", f"Syntax error in document: {e}") from e
            txn.inserts.append((name, document))
            return [{"documentId": f"doc{next(self._doc_ids):06d}"}]

        match = _SELECT_ALL.match(statement)
        if match:
            name = match.group(1)
            if name not in visible:
                raise service_error("BadRequestException", f"No such variable named '{name}'")
            rows = list(tables.get(name, []))
            rows.extend(doc for table, doc in txn.inserts if table == name)
            return rows

        raise service_error("BadRequestException", "Syntax error: unsupported statement")

    def _paginate(self, values: List[bytes]) -> Dict[str, Any]:
        first, rest = values[: self.page_size], values[self.page_size :]
        page: Dict[str, Any] = {"Values": [{"IonBinary": v} for v in first]}
        if rest:
            token = uuid.uuid4().hex
            self._pages[token] = rest
            page["NextPageToken"] = token
        return page

    def _fetch_page(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        self._transaction(self._session(token), body["TransactionId"])
        remaining = self._pages.pop(body["NextPageToken"], None)
        if remaining is None:
            raise service_error("BadRequestException", "Unknown page token")
        return {"FetchPage": {"Page": self._paginate(remaining)}}

    def _commit_transaction(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        session = self._session(token)
        txn = self._transaction(session, body["TransactionId"])
        session.transaction = None

        if self._occ_conflicts > 0:
            self._occ_conflicts -= 1
            raise service_error("OccConflictException", "Optimistic concurrency control failure")

        tables = self._tables[session.ledger_name]
        for name in txn.created_tables:
            tables[name] = []
        for name, document in txn.inserts:
            tables[name].append(document)
        self.commit_count += 1
        # pyqldb compares the returned digest with the one it computed.
        return {
            "CommitTransaction": {
                "TransactionId": txn.transaction_id,
                "CommitDigest": body["CommitDigest"],
            }
        }

    def _abort_transaction(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        session = self._session(token)
        if session.transaction is not None:
            session.transaction = None
            self.abort_count += 1
        return {"AbortTransaction": {}}

    def _end_session(self, token: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        self._sessions.pop(token or "", None)
        return {"EndSession": {}}

    # Testing helpers

    def inject_occ_conflicts(self, count: int) -> None:
        """Make the next ``count`` commits fail with an OCC conflict (testing helper)."""
        self._occ_conflicts = count

    def inject_error(self, command: str, code: str, message: str = "", status: int = 400) -> None:
        """Make the next ``command`` fail with this service error (testing helper)."""
        self._failures[command].append(service_error(code, message, status))

    def expire_sessions(self) -> None:
        """Invalidate every open session token (testing helper)."""
        self._sessions.clear()

    @property
    def open_session_count(self) -> int:
        """Sessions started and not yet ended (testing helper)."""
        return len(self._sessions)

    def get_documents(self, ledger_name: str, table_name: str) -> List[Any]:
        """Committed documents of a table (testing helper)."""
        return list(self._tables.get(ledger_name, {}).get(table_name, []))

    def table_names(self, ledger_name: str) -> List[str]:
        """Committed tables of a ledger (testing helper)."""
        return sorted(self._tables.get(ledger_name, {}))

    def add_table(self, ledger_name: str, table_name: str, documents: Optional[List[Any]] = None) -> None:
        """Create a committed table directly (testing helper)."""
        self._tables.setdefault(ledger_name, {})[table_name] = list(documents or [])
