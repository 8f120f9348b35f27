"""Error taxonomy shared by the ledger adapters and the reconciliation engine.

Transient faults (``UnreachableSource``, ``StoreWriteFailure``) are retried inside
the engine and never escape it. ``InvalidReference`` and ``InvariantViolation``
quarantine the offending notification. Synchronous read paths (the ledger client
used directly by an API layer) propagate all of them as typed failures.
"""

from __future__ import annotations

from enum import StrEnum


class Fault(StrEnum):
    UNREACHABLE_SOURCE = "unreachable_source"
    INVALID_REFERENCE = "invalid_reference"
    INVARIANT_VIOLATION = "invariant_violation"
    STORE_WRITE_FAILURE = "store_write_failure"
    HELD = "held"


class EscrowSyncError(RuntimeError):
    """Base class for domain failures."""

    fault: Fault | None = None
    transient: bool = False


class UnreachableSource(EscrowSyncError):
    """The ledger could not be queried (connection, timeout, lagging node)."""

    fault = Fault.UNREACHABLE_SOURCE
    transient = True


class InvalidReference(EscrowSyncError):
    """A referenced agreement, milestone or credential does not exist."""

    fault = Fault.INVALID_REFERENCE


class InvariantViolation(EscrowSyncError):
    """Applying a notification would break a local invariant (e.g. a backward transition)."""

    fault = Fault.INVARIANT_VIOLATION


class StoreWriteFailure(EscrowSyncError):
    """The durable store rejected or timed out a write."""

    fault = Fault.STORE_WRITE_FAILURE
    transient = True


class DuplicateNotification(EscrowSyncError):
    """The idempotency key is already recorded. Not a failure; used to short-circuit."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"Notification {idempotency_key} already applied")
        self.idempotency_key = idempotency_key


__all__ = [
    "DuplicateNotification",
    "EscrowSyncError",
    "Fault",
    "InvalidReference",
    "InvariantViolation",
    "StoreWriteFailure",
    "UnreachableSource",
]
