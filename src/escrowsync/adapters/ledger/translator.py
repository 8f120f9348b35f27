"""Translate validated gateway payloads into domain objects."""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.errors import InvalidReference
from escrowsync.domain.model import Agreement, AgreementStatus, Milestone, MilestoneStatus
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
    from collections.abc import Sequence

    from escrowsync.domain.notifications import Notification

    from .schema import AgreementPayload, MilestonePayload, NotificationArgs, NotificationPayload

log = getLogger(__name__)


def _timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def parse_milestone(agreement_id: int, index: int, payload: MilestonePayload) -> Milestone:
    return Milestone(
        agreement_id=agreement_id,
        index=index,
        description=payload.description,
        amount=payload.amount,
        deadline=_timestamp(payload.deadline),
        status=MilestoneStatus.from_code(payload.status),
        deliverable_ref=payload.deliverable_ref,
    )


def parse_agreement(payload: AgreementPayload) -> Agreement:
    return Agreement(
        id=payload.id,
        company=payload.company,
        talent=payload.talent,
        title=payload.title,
        total_amount=payload.total_amount,
        metadata_ref=payload.metadata_ref,
        start_at=_timestamp(payload.start_at),
        end_at=_timestamp(payload.end_at),
        status=AgreementStatus.from_code(payload.status),
        company_approved=payload.company_approved,
        talent_approved=payload.talent_approved,
        milestones=[
            parse_milestone(payload.id, index, milestone)
            for index, milestone in enumerate(payload.milestones)
        ],
    )


def parse_notifications(payloads: Sequence[NotificationPayload]) -> list[Notification]:
    """Translate a block range of notifications.

    A transaction that emits several notifications gets ``:<log_index>`` appended to
    its hash so every notification keeps a distinct idempotency key. Ranges always
    cover whole blocks, so the suffixing is stable across replay and live delivery.
    """

    per_transaction = Counter(payload.transaction_hash for payload in payloads)
    notifications: list[Notification] = []
    for payload in payloads:
        shared = per_transaction[payload.transaction_hash] > 1
        try:
            notifications.append(parse_notification(payload, shared_transaction=shared))
        except InvalidReference as exc:
            # Without an agreement id there is no partition to quarantine into.
            log.error("Dropping malformed notification at %s: %s", payload.block_number, exc)
    notifications.sort(key=lambda item: item.sort_key)
    return notifications


def parse_notification(
    payload: NotificationPayload, *, shared_transaction: bool = False
) -> Notification:
    key = payload.transaction_hash
    if shared_transaction:
        key = f"{key}:{payload.log_index}"
    base = {
        "idempotency_key": key,
        "position": payload.block_number,
        "log_index": payload.log_index,
        "timestamp": datetime.fromtimestamp(payload.timestamp, tz=UTC),
    }
    args = payload.args
    match payload.type:
        case "AgreementCreated":
            return AgreementCreated(
                **base,
                agreement_id=_require(args.agreement_id, "contractId", payload),
                company=_require(args.company, "company", payload),
                talent=_require(args.talent, "talent", payload),
                total_amount=_require(args.total_amount, "totalAmount", payload),
            )
        case "AgreementAccepted":
            return AgreementAccepted(
                **base,
                agreement_id=_agreement_id(args, payload),
                talent=_require(args.talent, "talent", payload),
            )
        case "AgreementActivated":
            return AgreementActivated(**base, agreement_id=_agreement_id(args, payload))
        case "MilestoneSubmitted":
            return MilestoneSubmitted(
                **base,
                agreement_id=_agreement_id(args, payload),
                milestone_index=_require(args.milestone_index, "milestoneIndex", payload),
                deliverable_ref=args.deliverable_ref,
            )
        case "MilestoneApproved":
            return MilestoneApproved(
                **base,
                agreement_id=_agreement_id(args, payload),
                milestone_index=_require(args.milestone_index, "milestoneIndex", payload),
            )
        case "MilestonePaid":
            return MilestonePaid(
                **base,
                agreement_id=_agreement_id(args, payload),
                milestone_index=_require(args.milestone_index, "milestoneIndex", payload),
                amount=args.amount,
            )
        case "AgreementDisputed":
            return AgreementDisputed(
                **base,
                agreement_id=_agreement_id(args, payload),
                initiator=_require(args.initiator, "initiator", payload),
                reason=args.reason,
            )
        case "AgreementCompleted":
            return AgreementCompleted(**base, agreement_id=_agreement_id(args, payload))
        case "AgreementFinalized":
            return AgreementFinalized(**base, agreement_id=_agreement_id(args, payload))
        case "AgreementCancelled":
            return AgreementCancelled(
                **base,
                agreement_id=_agreement_id(args, payload),
                initiator=args.initiator,
                reason=args.reason,
            )
        case "CredentialIssued":
            return CredentialIssued(
                **base,
                agreement_id=args.agreement_id,
                token_id=_require(args.token_id, "tokenId", payload),
                issuer=_require(args.issuer, "issuer", payload),
                recipient=_require(args.recipient, "recipient", payload),
                skill_name=args.skill_name or "",
            )
        case _:
            raise InvalidReference(
                f"Unknown notification type {payload.type!r} in {payload.transaction_hash}"
            )


def _agreement_id(args: NotificationArgs, payload: NotificationPayload) -> int:
    return _require(args.agreement_id, "contractId", payload)


def _require[T](value: T | None, name: str, payload: NotificationPayload) -> T:
    if value is None:
        raise InvalidReference(
            f"{payload.type} in {payload.transaction_hash} is missing argument {name!r}"
        )
    return value


__all__ = ["parse_agreement", "parse_milestone", "parse_notification", "parse_notifications"]
