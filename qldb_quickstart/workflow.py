"""
The quickstart workflow.

Runs the stages in order:

    connect -> provision_ledger -> create_table -> insert_document -> query_table
    [-> delete_ledger]

Each stage produces a StageOutcome instead of raising. The RunReport
aggregates them and decides whether the run passed.

Invariants:
    - No table or document stage runs unless provision_ledger succeeded
    - A failed table/document stage does not stop the stages after it
    - A transport/authorization failure skips every remaining stage
    - Cancellation (CancelledError) is never turned into an outcome
    - Once cancel_event is set, every stage not yet started is skipped
      with error_code CANCELLED

How to change safely:
    - New stages must be independent: they may not rely on a previous
      table/document stage having succeeded
    - Keep stage names stable; they appear in JSON reports
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from pyqldb.execution.executor import Executor

from . import statements
from .config import QuickstartConfig
from .control.base import LedgerControlPlane, PermissionsMode
from .control.waiter import ProvisioningWaiter
from .driver.driver import LedgerDriver
from .errors import QldbQuickstartError
from .printer import print_documents

logger = logging.getLogger(__name__)

CONNECT = "connect"
PROVISION_LEDGER = "provision_ledger"
CREATE_TABLE = "create_table"
INSERT_DOCUMENT = "insert_document"
QUERY_TABLE = "query_table"
DELETE_LEDGER = "delete_ledger"


class StageStatus(str, Enum):
    """Outcome of one stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageOutcome(BaseModel):
    """Result of one workflow stage."""

    name: str = Field(..., description="Stage name")
    status: StageStatus = Field(..., description="Stage status")
    duration_ms: int = Field(0, description="Wall time spent in the stage")
    error_code: Optional[str] = Field(None, description="Error code if failed or skipped")
    error_message: Optional[str] = Field(None, description="Error message if failed or skipped")
    detail: Dict[str, Any] = Field(default_factory=dict, description="Stage specific data")

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCEEDED


class RunReport(BaseModel):
    """All stage outcomes of one run."""

    ledger_name: str
    table_name: str
    stages: List[StageOutcome] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.stages) and all(stage.succeeded for stage in self.stages)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def stage(self, name: str) -> Optional[StageOutcome]:
        for outcome in self.stages:
            if outcome.name == name:
                return outcome
        return None

    def log_summary(self) -> None:
        for outcome in self.stages:
            logger.info(
                f"Stage {outcome.name}: {outcome.status.value}",
                extra={"stage": outcome.name, "duration_ms": outcome.duration_ms},
            )
        logger.info("Run %s", "succeeded" if self.success else "failed")


StageFunc = Callable[[], Awaitable[Dict[str, Any]]]


class Quickstart:
    """Orchestrates one quickstart run.

    Attributes:
        config: Complete configuration
        control: Ledger control plane
        driver: Ledger driver for the configured ledger
        waiter: Provisioning waiter (shares the cancel event)

    Example:
        >>> quickstart = Quickstart(config, control, driver)
        >>> report = await quickstart.run()
        >>> sys.exit(report.exit_code)
    """

    def __init__(
        self,
        config: QuickstartConfig,
        control: LedgerControlPlane,
        driver: LedgerDriver,
        cancel_event: Optional[asyncio.Event] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self.config = config
        self.control = control
        self.driver = driver
        self.cancel_event = cancel_event or asyncio.Event()
        self.waiter = ProvisioningWaiter(
            control,
            poll_interval_seconds=config.ledger.poll_interval_seconds,
            timeout_seconds=config.ledger.provisioning_timeout_seconds,
            cancel_event=self.cancel_event,
        )
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    @property
    def ledger_name(self) -> str:
        return self.config.ledger.ledger_name

    @property
    def table_name(self) -> str:
        return self.config.ledger.table_name

    async def run(self) -> RunReport:
        """Run every stage and return the report. Never raises for stage failures."""
        report = RunReport(ledger_name=self.ledger_name, table_name=self.table_name)
        stages: List[tuple[str, StageFunc]] = [
            (CONNECT, self.connect),
            (PROVISION_LEDGER, self.provision_ledger),
            (CREATE_TABLE, self.create_table),
            (INSERT_DOCUMENT, self.insert_document),
            (QUERY_TABLE, self.query_table),
        ]
        if self.config.ledger.delete_after_run:
            stages.append((DELETE_LEDGER, self.delete_ledger))

        skip_reason: Optional[str] = None
        skip_code = "SKIPPED"
        try:
            for name, func in stages:
                if skip_code != "CANCELLED" and self.cancel_event.is_set():
                    logger.warning("Run cancelled, skipping remaining stages", extra={"stage": name})
                    skip_reason = "run cancelled"
                    skip_code = "CANCELLED"
                if skip_reason is not None:
                    report.stages.append(
                        StageOutcome(
                            name=name,
                            status=StageStatus.SKIPPED,
                            error_code=skip_code,
                            error_message=skip_reason,
                        )
                    )
                    continue

                outcome = await self._run_stage(name, func)
                report.stages.append(outcome)

                if outcome.succeeded:
                    continue
                if outcome.error_code == "CONNECTION_ERROR":
                    skip_reason = f"{name} failed with a connection error"
                elif name in (CONNECT, PROVISION_LEDGER):
                    skip_reason = f"{name} failed; ledger is not ACTIVE"
        finally:
            await self.close()

        report.log_summary()
        return report

    async def _run_stage(self, name: str, func: StageFunc) -> StageOutcome:
        logger.info(f"Starting stage {name}", extra={"stage": name, "ledger_name": self.ledger_name})
        start = time.monotonic()
        try:
            detail = await func()
        except QldbQuickstartError as e:
            logger.error(
                f"Stage {name} failed: {e}",
                exc_info=True,
                extra={"stage": name, "error_code": e.code},
            )
            return StageOutcome(
                name=name,
                status=StageStatus.FAILED,
                duration_ms=_elapsed_ms(start),
                error_code=e.code,
                error_message=e.message,
                detail=dict(e.details),
            )
        except Exception as e:
            logger.error(f"Stage {name} failed unexpectedly: {e}", exc_info=True, extra={"stage": name})
            return StageOutcome(
                name=name,
                status=StageStatus.FAILED,
                duration_ms=_elapsed_ms(start),
                error_code="UNEXPECTED_ERROR",
                error_message=str(e),
            )

        logger.info(f"Stage {name} succeeded", extra={"stage": name, "detail": detail})
        return StageOutcome(
            name=name,
            status=StageStatus.SUCCEEDED,
            duration_ms=_elapsed_ms(start),
            detail=detail,
        )

    # Stages

    async def connect(self) -> Dict[str, Any]:
        await self.control.connect()
        await self.driver.connect()
        return {}

    async def provision_ledger(self) -> Dict[str, Any]:
        description = await self.waiter.ensure_ledger_active(
            self.ledger_name,
            permissions_mode=PermissionsMode(self.config.ledger.permissions_mode),
            deletion_protection=self.config.ledger.deletion_protection,
        )
        return {"ledger": description.to_dict(), "polls": self.waiter.last_poll_count}

    async def create_table(self) -> Dict[str, Any]:
        logger.info(f"Creating the '{self.table_name}' table...")

        def work(txn: Executor) -> None:
            statements.execute(txn, statements.create_table(self.table_name))

        _, retries = await self._execute(work)
        logger.info(f"{self.table_name} table created successfully.")

        settle = self.config.ledger.table_settle_seconds
        if settle > 0:
            try:
                await asyncio.wait_for(self.cancel_event.wait(), timeout=settle)
            except asyncio.TimeoutError:
                pass
        return {"table": self.table_name, "retries": retries}

    async def insert_document(self) -> Dict[str, Any]:
        document = statements.timestamp_document(self._clock_ms())

        def work(txn: Executor) -> None:
            statements.execute(txn, statements.insert_document(self.table_name, document))

        _, retries = await self._execute(work)
        return {"document": document, "retries": retries}

    async def query_table(self) -> Dict[str, Any]:
        logger.info("Fetching data back out", extra={"table": self.table_name})

        def work(txn: Executor) -> int:
            return print_documents(statements.execute(txn, statements.select_all(self.table_name)))

        count, retries = await self._execute(work)
        return {"documents": count, "retries": retries}

    async def delete_ledger(self) -> Dict[str, Any]:
        await self.waiter.delete_ledger(self.ledger_name)
        return {"ledger_name": self.ledger_name}

    async def _execute(
        self, work: Callable[[Executor], Any]
    ) -> tuple[Any, int]:
        """Run a unit of work through the driver. Returns (result, retries)."""
        retries: List[int] = []

        def on_retry(attempt: int) -> None:
            retries.append(attempt)
            logger.info("Retrying due to OCC conflict...", extra={"retry_attempt": attempt})

        result = await self.driver.execute_lambda(work, on_retry=on_retry)
        return result, len(retries)

    async def close(self) -> None:
        try:
            await self.driver.close()
        finally:
            await self.control.close()


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
