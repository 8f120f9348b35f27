"""Reconciliation core: ledger-confirmed, idempotent application of notifications.

Flow per notification:
1) deduplicate on the idempotency key
2) park it if its partition is held by an open quarantine
3) confirm the implied state against the ledger (``handlers``)
4) commit mirror, activity record, aggregates and watermark together (``engine``)
5) publish after commit
"""

from __future__ import annotations

from .engine import ReconcileOutcome, ReconcileStats, ReconciliationEngine
from .handlers import Payout, ReconcilePlan, build_plan
from .locks import PartitionLocks
from .maintenance import check_aggregates, rebuild_aggregates
from .retry import Backoff
from .runner import ReconciliationRunner

__all__ = [
    "Backoff",
    "PartitionLocks",
    "Payout",
    "ReconcileOutcome",
    "ReconcilePlan",
    "ReconcileStats",
    "ReconciliationEngine",
    "ReconciliationRunner",
    "build_plan",
    "check_aggregates",
    "rebuild_aggregates",
]
