"""Reconciliation engine: turns one notification into one atomic commit.

For every notification the engine deduplicates on the idempotency key, refuses to
touch partitions held by an open quarantine, asks the matching handler for a
ledger-confirmed plan and applies that plan (mirror refresh, activity record,
profile aggregates, partition watermark) in a single unit of work. Publication
happens strictly after the commit and can never fail a reconcile call.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.errors import DuplicateNotification, EscrowSyncError, Fault
from escrowsync.domain.model import QuarantineEntry
from escrowsync.domain.notifications import notification_from_dict
from escrowsync.domain.projection import AggregateProjector

from .handlers import build_plan
from .locks import PartitionLocks
from .retry import Backoff

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from escrowsync.config.sync import ReconcileSettings
    from escrowsync.domain.model import ActivityRecord, Agreement
    from escrowsync.domain.notifications import Notification
    from escrowsync.domain.ports import IndexUnitOfWork, LedgerClient, Publisher

    from .handlers import ReconcilePlan

log = getLogger(__name__)


class ReconcileOutcome(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    QUARANTINED = "quarantined"
    HELD = "held"


class ReconcileStats:
    """In-memory counters for one engine instance."""

    __slots__ = ("applied", "duplicate", "held", "quarantined", "retries")

    def __init__(self) -> None:
        self.applied = 0
        self.duplicate = 0
        self.quarantined = 0
        self.held = 0
        self.retries = 0

    def record(self, outcome: ReconcileOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.__slots__}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReconciliationEngine:
    """Single entry point for applying ledger notifications to the local store."""

    def __init__(
        self,
        *,
        ledger: LedgerClient,
        unit_of_work_factory: Callable[[], IndexUnitOfWork],
        settings: ReconcileSettings,
        publisher: Publisher | None = None,
        projector: AggregateProjector | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._unit_of_work_factory = unit_of_work_factory
        self._settings = settings
        self._publisher = publisher
        self._projector = projector or AggregateProjector()
        self._clock = clock
        self._sleep = sleep
        self._locks = PartitionLocks()
        self._backoff = Backoff(
            initial=settings.backoff_factor,
            maximum=settings.max_backoff_wait,
        )
        self.stats = ReconcileStats()

    async def reconcile(self, notification: Notification) -> ReconcileOutcome:
        """Apply ``notification`` at most once; safe to call with duplicates and in any order."""

        async with self._locks.hold(notification.partition):
            outcome = await self._process(notification, releasing=False)
        self.stats.record(outcome)
        return outcome

    async def retry_quarantined(self, partition: str) -> list[ReconcileOutcome]:
        """Re-run the open quarantine entries of ``partition`` in ledger order.

        Stops at the first entry that is quarantined again, so later notifications
        are never applied ahead of it. The partition is released once no open
        entries remain.
        """

        outcomes: list[ReconcileOutcome] = []
        async with self._locks.hold(partition):
            with self._unit_of_work_factory() as uow:
                entries = list(uow.repositories.quarantine.open_for_partition(partition))
            for entry in sorted(entries, key=lambda item: (item.position, item.log_index)):
                notification = notification_from_dict(entry.notification)
                outcome = await self._process(notification, releasing=True)
                self.stats.record(outcome)
                outcomes.append(outcome)
                if outcome is ReconcileOutcome.QUARANTINED:
                    break
            released = self._release_if_clear(partition)
        log.info(
            "Retried %s quarantined notification(s) for %s; released=%s",
            len(outcomes),
            partition,
            released,
        )
        return outcomes

    async def _process(self, notification: Notification, *, releasing: bool) -> ReconcileOutcome:
        early = self._precheck(notification, releasing=releasing)
        if early is not None:
            return early

        attempt = 0
        while True:
            attempt += 1
            try:
                plan = await build_plan(
                    notification,
                    self._ledger,
                    fee_bps=self._settings.platform_fee_bps,
                )
                agreement = self._commit(plan, notification, releasing=releasing)
            except DuplicateNotification:
                return ReconcileOutcome.DUPLICATE
            except EscrowSyncError as exc:
                if exc.transient and attempt < self._settings.max_attempts:
                    delay = self._backoff.delay(attempt)
                    log.info(
                        "Transient %s for %s (attempt %s/%s); retrying in %.2fs",
                        exc.fault,
                        notification.idempotency_key,
                        attempt,
                        self._settings.max_attempts,
                        delay,
                    )
                    self.stats.retries += 1
                    await self._sleep(delay)
                    continue
                fault = exc.fault or Fault.INVARIANT_VIOLATION
                self._quarantine(notification, fault, str(exc), attempt)
                return ReconcileOutcome.QUARANTINED
            except Exception as exc:  # noqa: BLE001
                log.exception("Unexpected failure reconciling %s", notification.idempotency_key)
                self._quarantine(notification, Fault.INVARIANT_VIOLATION, repr(exc), attempt)
                return ReconcileOutcome.QUARANTINED
            self._publish(plan.record, agreement)
            return ReconcileOutcome.APPLIED

    def _precheck(self, notification: Notification, *, releasing: bool) -> ReconcileOutcome | None:
        key = notification.idempotency_key
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            entry = repositories.quarantine.get(key)
            if repositories.activities.exists(key):
                if entry is not None and entry.is_open:
                    entry.resolve(self._clock())
                    uow.commit()
                return ReconcileOutcome.DUPLICATE
            if releasing:
                return None
            if entry is not None and entry.is_open:
                return ReconcileOutcome.QUARANTINED
            watermark = repositories.progress.watermark(notification.partition)
            if not watermark.held:
                return None
            repositories.quarantine.add(
                QuarantineEntry(
                    idempotency_key=key,
                    partition=notification.partition,
                    position=notification.position,
                    log_index=notification.log_index,
                    type=notification.type,
                    fault=Fault.HELD,
                    message=f"Partition {notification.partition} is held by an open quarantine",
                    notification=notification.to_dict(),
                    attempts=0,
                    created_at=self._clock(),
                )
            )
            uow.commit()
        log.info("Parked %s behind held partition %s", key, notification.partition)
        return ReconcileOutcome.HELD

    def _commit(
        self,
        plan: ReconcilePlan,
        notification: Notification,
        *,
        releasing: bool,
    ) -> Agreement | None:
        """Apply ``plan`` in one unit of work; return a detached copy of the mirror."""

        record = plan.record
        at = self._clock()
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            if repositories.activities.exists(record.idempotency_key):
                raise DuplicateNotification(record.idempotency_key)

            agreement: Agreement | None = None
            if plan.snapshot is not None:
                agreement = repositories.agreements.get(plan.snapshot.id)
                if agreement is None:
                    log.info("Backfilling agreement %s from the ledger", plan.snapshot.id)
                    agreement = plan.snapshot.copy()
                    agreement.refreshed_at = at
                    agreement.last_position = notification.position
                    repositories.agreements.add(agreement)
                else:
                    agreement.apply_snapshot(
                        plan.snapshot,
                        position=notification.position,
                        refreshed_at=at,
                    )
                if plan.payout is not None:
                    milestone = agreement.milestone(plan.payout.milestone_index)
                    if milestone is not None and milestone.paid_amount is None:
                        milestone.record_payout(
                            paid_amount=plan.payout.paid_amount,
                            platform_fee=plan.payout.platform_fee,
                        )

            record.recorded_at = at
            record.processed = True
            repositories.activities.add(record)
            self._projector.apply(record, repositories.profiles, at=at)

            watermark = repositories.progress.watermark(notification.partition)
            if watermark.advance(notification.position, releasing=releasing):
                watermark.updated_at = at

            entry = repositories.quarantine.get(record.idempotency_key)
            if entry is not None and entry.is_open:
                entry.resolve(at)

            uow.commit()
            return agreement.copy() if agreement is not None else None

    def _quarantine(
        self,
        notification: Notification,
        fault: Fault,
        message: str,
        attempts: int,
    ) -> None:
        at = self._clock()
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            entry = repositories.quarantine.get(notification.idempotency_key)
            if entry is None:
                repositories.quarantine.add(
                    QuarantineEntry(
                        idempotency_key=notification.idempotency_key,
                        partition=notification.partition,
                        position=notification.position,
                        log_index=notification.log_index,
                        type=notification.type,
                        fault=fault,
                        message=message,
                        notification=notification.to_dict(),
                        attempts=attempts,
                        created_at=at,
                    )
                )
            else:
                entry.fault = fault
                entry.message = message
                entry.attempts += attempts
            watermark = repositories.progress.watermark(notification.partition)
            watermark.held = True
            watermark.updated_at = at
            uow.commit()
        log.warning(
            "Quarantined %s %s (%s) at position %s after %s attempt(s): %s",
            notification.type,
            notification.idempotency_key,
            fault,
            notification.position,
            attempts,
            message,
        )

    def _release_if_clear(self, partition: str) -> bool:
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            if repositories.quarantine.open_for_partition(partition):
                return False
            watermark = repositories.progress.watermark(partition)
            watermark.held = False
            watermark.updated_at = self._clock()
            uow.commit()
        return True

    def _publish(self, record: ActivityRecord, agreement: Agreement | None) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(record, agreement)
        except Exception:  # noqa: BLE001
            log.warning("Publication of %s failed", record.idempotency_key, exc_info=True)


__all__ = ["ReconcileOutcome", "ReconcileStats", "ReconciliationEngine"]
