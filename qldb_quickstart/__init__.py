"""
QLDB Quickstart - provision a ledger and run a first round of transactions.

This package drives Amazon QLDB end to end:
- Control plane (create/describe/delete ledgers) via the "qldb" service
- Data plane (sessions, transactions, statements) via pyqldb and the
  "qldb-session" service
- A small sequential workflow that reports an explicit outcome per stage

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌──────────────────┐
    │  Workflow   │────▶│ ProvisioningWaiter│────▶│ LedgerControlPlane│
    │ (stages)    │     └──────────────────┘     └──────────────────┘
    └──────┬──────┘
           │            ┌──────────────────┐     ┌──────────────────┐
           └───────────▶│   LedgerDriver   │────▶│   SessionPool    │
                        │ (execute_lambda) │     └────────┬─────────┘
                        └────────┬─────────┘              │
                                 │                        ▼
                                 │               ┌──────────────────┐
                                 └──────────────▶│ pyqldb QldbDriver│
                                                 │ (qldb-session)   │
                                                 └──────────────────┘

Invariants:
    - No table or document statement runs before the ledger is ACTIVE
    - A unit of work commits atomically or has no visible effect
    - Pool slots are always released when a transaction block exits
    - OCC conflicts and transient failures are retried a bounded number of times

How to change safely:
    - New control plane backends must implement the protocol in control/base.py
    - Keep the in-memory backends behaviorally aligned with the AWS ones
"""

from ._version import __version__

__all__ = ["__version__"]
