"""Aggregate projector: folds committed activity into party profile aggregates.

``deltas_for`` is a pure function of one record, so the live path (apply each
record as it commits) and the replay path (fold the whole log from empty profiles)
produce the same aggregates by construction. The engine only projects a record in
the same unit of work that first inserts it, which keeps projection at most once
per record.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.model import (
    Credential,
    NotificationType,
    PartyRole,
    ReputationSnapshot,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from escrowsync.domain.model import ActivityRecord
    from escrowsync.domain.ports.persistence import ProfileRepository

log = getLogger(__name__)

TOTAL_CONTRACTS = "total_contracts"
COMPLETED_CONTRACTS = "completed_contracts"
DISPUTED_CONTRACTS = "disputed_contracts"
CANCELLED_CONTRACTS = "cancelled_contracts"
FINALIZED_CONTRACTS = "finalized_contracts"
TOTAL_EARNED = "total_earned"
TOTAL_SPENT = "total_spent"

COUNTER_FIELDS = frozenset(
    {
        TOTAL_CONTRACTS,
        COMPLETED_CONTRACTS,
        DISPUTED_CONTRACTS,
        CANCELLED_CONTRACTS,
        FINALIZED_CONTRACTS,
    }
)
AMOUNT_FIELDS = frozenset({TOTAL_EARNED, TOTAL_SPENT})

_BOTH_PARTIES_COUNTER: dict[NotificationType, str] = {
    NotificationType.AGREEMENT_COMPLETED: COMPLETED_CONTRACTS,
    NotificationType.AGREEMENT_DISPUTED: DISPUTED_CONTRACTS,
    NotificationType.AGREEMENT_CANCELLED: CANCELLED_CONTRACTS,
    NotificationType.AGREEMENT_FINALIZED: FINALIZED_CONTRACTS,
}


@dataclass(frozen=True, slots=True)
class ProfileDelta:
    address: str
    role: PartyRole
    counters: dict[str, int] = field(default_factory=dict)
    amounts: dict[str, int] = field(default_factory=dict)
    credential: Credential | None = None


def deltas_for(record: ActivityRecord) -> tuple[ProfileDelta, ...]:
    """Return the profile changes implied by ``record``."""

    if record.type is NotificationType.CREDENTIAL_ISSUED:
        payload = record.payload
        if record.talent is None or payload.token_id is None:
            return ()
        credential = Credential(
            token_id=payload.token_id,
            recipient=record.talent,
            issuer=record.company or "",
            skill_name=payload.skill_name or "",
            issued_at=record.timestamp,
        )
        return (ProfileDelta(record.talent, PartyRole.TALENT, credential=credential),)

    if record.company is None or record.talent is None:
        return ()

    company: dict[str, int] = {}
    talent: dict[str, int] = {}
    company_amounts: dict[str, int] = {}
    talent_amounts: dict[str, int] = {}

    match record.type:
        case NotificationType.AGREEMENT_CREATED:
            company[TOTAL_CONTRACTS] = 1
            talent[TOTAL_CONTRACTS] = 1
            company_amounts[TOTAL_SPENT] = record.payload.amount_value
        case NotificationType.MILESTONE_PAID:
            talent_amounts[TOTAL_EARNED] = record.payload.amount_value
        case kind if kind in _BOTH_PARTIES_COUNTER:
            counter = _BOTH_PARTIES_COUNTER[kind]
            company[counter] = 1
            talent[counter] = 1
        case _:
            pass

    return (
        ProfileDelta(record.company, PartyRole.COMPANY, company, company_amounts),
        ProfileDelta(record.talent, PartyRole.TALENT, talent, talent_amounts),
    )


class AggregateProjector:
    """Applies record deltas through the store's atomic increment operations."""

    def apply(self, record: ActivityRecord, profiles: ProfileRepository, *, at: datetime) -> None:
        for delta in deltas_for(record):
            profiles.ensure(delta.address, delta.role, at=at)
            counters = {name: value for name, value in delta.counters.items() if value}
            if counters:
                profiles.increment(delta.address, counters, at=at)
            amounts = {name: value for name, value in delta.amounts.items() if value}
            if amounts:
                profiles.add_amounts(delta.address, amounts, at=at)
            if delta.credential is not None and not profiles.add_credential(delta.credential):
                log.warning(
                    "Credential %s already bound; ignoring re-issue to %s",
                    delta.credential.token_id,
                    delta.address,
                )


def fold_profiles(records: Iterable[ActivityRecord]) -> dict[str, ReputationSnapshot]:
    """Fold the activity log from empty profiles in ledger order."""

    snapshots: dict[str, ReputationSnapshot] = {}
    bound_tokens: set[int] = set()
    for record in sorted(records, key=lambda item: item.sort_key):
        for delta in deltas_for(record):
            current = snapshots.get(delta.address, ReputationSnapshot())
            changes: dict[str, object] = {}
            for name, value in delta.counters.items():
                changes[name] = getattr(current, name) + value
            for name, value in delta.amounts.items():
                changes[name] = getattr(current, name) + value
            credential = delta.credential
            if credential is not None and credential.token_id not in bound_tokens:
                bound_tokens.add(credential.token_id)
                changes["credential_tokens"] = tuple(
                    sorted((*current.credential_tokens, credential.token_id))
                )
            snapshots[delta.address] = replace(current, **changes)  # type: ignore[arg-type]
    return snapshots


@dataclass(frozen=True, slots=True)
class AggregateMismatch:
    address: str
    expected: ReputationSnapshot | None
    actual: ReputationSnapshot | None


def compare_aggregates(
    expected: dict[str, ReputationSnapshot],
    actual: dict[str, ReputationSnapshot],
) -> list[AggregateMismatch]:
    mismatches: list[AggregateMismatch] = []
    for address in sorted(expected.keys() | actual.keys()):
        want = expected.get(address)
        have = actual.get(address)
        if want != have:
            mismatches.append(AggregateMismatch(address=address, expected=want, actual=have))
    return mismatches


__all__ = [
    "AMOUNT_FIELDS",
    "COUNTER_FIELDS",
    "AggregateMismatch",
    "AggregateProjector",
    "ProfileDelta",
    "compare_aggregates",
    "deltas_for",
    "fold_profiles",
]
