"""Per-notification handlers: confirm against the ledger, then describe the mutation.

Handlers never touch the store. Each one re-queries the ledger (the payload only
supplies identifiers and deltas), checks that the ledger has caught up with what the
notification implies, and returns a ``ReconcilePlan`` the engine commits atomically.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.amounts import split_payment
from escrowsync.domain.errors import InvalidReference, InvariantViolation, UnreachableSource
from escrowsync.domain.model import (
    ActivityPayload,
    ActivityRecord,
    AgreementStatus,
    MilestoneStatus,
    agreement_reachable,
)
from escrowsync.domain.notifications import (
    AgreementAccepted,
    AgreementActivated,
    AgreementCancelled,
    AgreementCompleted,
    AgreementCreated,
    AgreementDisputed,
    AgreementFinalized,
    CredentialIssued,
    MilestoneApproved,
    MilestonePaid,
    MilestoneSubmitted,
)

if TYPE_CHECKING:
    from escrowsync.domain.model import Agreement, Milestone
    from escrowsync.domain.notifications import Notification
    from escrowsync.domain.ports.ledger import LedgerClient

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Payout:
    milestone_index: int
    paid_amount: int
    platform_fee: int


@dataclass(slots=True)
class ReconcilePlan:
    record: ActivityRecord
    snapshot: Agreement | None = None
    payout: Payout | None = None


async def build_plan(
    notification: Notification,
    ledger: LedgerClient,
    *,
    fee_bps: int,
) -> ReconcilePlan:
    """Dispatch ``notification`` to its handler."""

    match notification:
        case CredentialIssued():
            return _credential_plan(notification)
        case AgreementCreated():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.PENDING)
            _check_creation(notification, snapshot)
            return _plan(
                notification,
                snapshot,
                initiator=snapshot.company,
                payload=ActivityPayload(
                    amount=str(notification.total_amount),
                    external_ref=snapshot.metadata_ref,
                ),
            )
        case AgreementAccepted():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.ACTIVE)
            if notification.talent != snapshot.talent:
                raise InvariantViolation(
                    f"Agreement {snapshot.id} accepted by {notification.talent}, "
                    f"ledger talent is {snapshot.talent}"
                )
            return _plan(notification, snapshot, initiator=snapshot.talent)
        case AgreementActivated():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.ACTIVE)
            return _plan(notification, snapshot, initiator=None)
        case MilestoneSubmitted():
            snapshot, milestone = await _confirmed_milestone(
                notification, ledger, notification.milestone_index, MilestoneStatus.SUBMITTED
            )
            return _plan(
                notification,
                snapshot,
                initiator=snapshot.talent,
                payload=ActivityPayload(
                    milestone_index=milestone.index,
                    external_ref=notification.deliverable_ref or milestone.deliverable_ref,
                ),
            )
        case MilestoneApproved():
            snapshot, milestone = await _confirmed_milestone(
                notification, ledger, notification.milestone_index, MilestoneStatus.APPROVED
            )
            return _plan(
                notification,
                snapshot,
                initiator=snapshot.company,
                payload=ActivityPayload(milestone_index=milestone.index),
            )
        case MilestonePaid():
            snapshot, milestone = await _confirmed_milestone(
                notification, ledger, notification.milestone_index, MilestoneStatus.PAID
            )
            payout = _payout(notification, milestone, fee_bps=fee_bps)
            plan = _plan(
                notification,
                snapshot,
                initiator=snapshot.company,
                payload=ActivityPayload(
                    milestone_index=milestone.index,
                    amount=str(payout.paid_amount),
                ),
            )
            plan.payout = payout
            return plan
        case AgreementDisputed():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.DISPUTED)
            return _plan(
                notification,
                snapshot,
                initiator=notification.initiator,
                payload=ActivityPayload(reason=notification.reason),
            )
        case AgreementCompleted():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.COMPLETED)
            return _plan(notification, snapshot, initiator=None)
        case AgreementFinalized():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.FINALIZED)
            return _plan(notification, snapshot, initiator=None)
        case AgreementCancelled():
            snapshot = await _confirmed_agreement(notification, ledger, AgreementStatus.CANCELLED)
            return _plan(
                notification,
                snapshot,
                initiator=notification.initiator or snapshot.company,
                payload=ActivityPayload(reason=notification.reason),
            )


def _plan(
    notification: Notification,
    snapshot: Agreement,
    *,
    initiator: str | None,
    payload: ActivityPayload | None = None,
) -> ReconcilePlan:
    record = ActivityRecord(
        idempotency_key=notification.idempotency_key,
        agreement_id=snapshot.id,
        position=notification.position,
        log_index=notification.log_index,
        type=notification.type,
        company=snapshot.company,
        talent=snapshot.talent,
        initiator=initiator,
        timestamp=notification.timestamp,
        payload=payload or ActivityPayload(),
    )
    return ReconcilePlan(record=record, snapshot=snapshot)


def _credential_plan(notification: CredentialIssued) -> ReconcilePlan:
    record = ActivityRecord(
        idempotency_key=notification.idempotency_key,
        agreement_id=notification.agreement_id,
        position=notification.position,
        log_index=notification.log_index,
        type=notification.type,
        company=notification.issuer,
        talent=notification.recipient,
        initiator=notification.issuer,
        timestamp=notification.timestamp,
        payload=ActivityPayload(
            token_id=notification.token_id,
            skill_name=notification.skill_name,
        ),
    )
    return ReconcilePlan(record=record)


async def _confirmed_agreement(
    notification: Notification,
    ledger: LedgerClient,
    implied: AgreementStatus,
) -> Agreement:
    agreement_id = _agreement_id(notification)
    snapshot = await ledger.fetch_agreement(agreement_id)
    snapshot.check_escrow()
    if agreement_reachable(implied, snapshot.status):
        return snapshot
    if agreement_reachable(snapshot.status, implied):
        # The node we asked has not seen the block that emitted the notification yet.
        raise UnreachableSource(
            f"Ledger reports agreement {agreement_id} as {snapshot.status}, "
            f"{notification.type} implies {implied}"
        )
    raise InvariantViolation(
        f"{notification.type} implies {implied} but agreement {agreement_id} is "
        f"{snapshot.status} on the ledger"
    )


async def _confirmed_milestone(
    notification: Notification,
    ledger: LedgerClient,
    index: int,
    implied: MilestoneStatus,
) -> tuple[Agreement, Milestone]:
    agreement_id = _agreement_id(notification)
    snapshot = await ledger.fetch_agreement(agreement_id)
    milestone = snapshot.milestone(index)
    if milestone is None:
        log.info(
            "Milestone %s/%s out of range (%s known); refetching",
            agreement_id,
            index,
            snapshot.milestone_count,
        )
        snapshot = await ledger.fetch_agreement(agreement_id)
        milestone = snapshot.milestone(index)
        if milestone is None:
            raise InvalidReference(
                f"Agreement {agreement_id} has {snapshot.milestone_count} milestones, "
                f"{notification.type} references index {index}"
            )
    snapshot.check_escrow()
    if milestone.status.rank < implied.rank:
        raise UnreachableSource(
            f"Ledger reports milestone {agreement_id}/{index} as {milestone.status}, "
            f"{notification.type} implies {implied}"
        )
    return snapshot, milestone


def _check_creation(notification: AgreementCreated, snapshot: Agreement) -> None:
    expected = (notification.company, notification.talent, notification.total_amount)
    actual = (snapshot.company, snapshot.talent, snapshot.total_amount)
    if expected != actual:
        raise InvariantViolation(
            f"Creation of agreement {snapshot.id} does not match the ledger: "
            f"{expected} != {actual}"
        )


def _payout(notification: MilestonePaid, milestone: Milestone, *, fee_bps: int) -> Payout:
    if notification.amount is None:
        split = split_payment(milestone.amount, fee_bps=fee_bps)
        paid = split.talent_amount
    else:
        paid = notification.amount
    if paid > milestone.amount:
        raise InvariantViolation(
            f"Milestone {milestone.agreement_id}/{milestone.index} paid {paid}, "
            f"more than its amount {milestone.amount}"
        )
    return Payout(
        milestone_index=milestone.index,
        paid_amount=paid,
        platform_fee=milestone.amount - paid,
    )


def _agreement_id(notification: Notification) -> int:
    if notification.agreement_id is None:
        raise InvalidReference(
            f"{notification.type} {notification.idempotency_key} has no agreement"
        )
    return notification.agreement_id


__all__ = ["Payout", "ReconcilePlan", "build_plan"]
