"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Mapping


class AgreementStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    FINALIZED = "finalized"

    @classmethod
    def from_code(cls, code: int) -> AgreementStatus:
        try:
            return _AGREEMENT_STATUS_BY_CODE[code]
        except KeyError:
            raise ValueError(f"Unknown agreement status code: {code}") from None

    @property
    def is_terminal(self) -> bool:
        return not AGREEMENT_TRANSITIONS[self]


class MilestoneStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PAID = "paid"

    @classmethod
    def from_code(cls, code: int) -> MilestoneStatus:
        members = list(cls)
        if not 0 <= code < len(members):
            raise ValueError(f"Unknown milestone status code: {code}")
        return members[code]

    @property
    def rank(self) -> int:
        return list(MilestoneStatus).index(self)


class NotificationType(StrEnum):
    AGREEMENT_CREATED = "AgreementCreated"
    AGREEMENT_ACCEPTED = "AgreementAccepted"
    AGREEMENT_ACTIVATED = "AgreementActivated"
    MILESTONE_SUBMITTED = "MilestoneSubmitted"
    MILESTONE_APPROVED = "MilestoneApproved"
    MILESTONE_PAID = "MilestonePaid"
    AGREEMENT_DISPUTED = "AgreementDisputed"
    AGREEMENT_COMPLETED = "AgreementCompleted"
    AGREEMENT_FINALIZED = "AgreementFinalized"
    AGREEMENT_CANCELLED = "AgreementCancelled"
    CREDENTIAL_ISSUED = "CredentialIssued"


class PartyRole(StrEnum):
    COMPANY = "company"
    TALENT = "talent"
    BOTH = "both"

    def merge(self, other: PartyRole) -> PartyRole:
        return self if self is other else PartyRole.BOTH


class QuarantineStatus(StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"


_AGREEMENT_STATUS_BY_CODE: Final[Mapping[int, AgreementStatus]] = {
    0: AgreementStatus.PENDING,
    1: AgreementStatus.ACTIVE,
    2: AgreementStatus.COMPLETED,
    3: AgreementStatus.DISPUTED,
    4: AgreementStatus.CANCELLED,
    5: AgreementStatus.FINALIZED,
}

AGREEMENT_TRANSITIONS: Final[Mapping[AgreementStatus, frozenset[AgreementStatus]]] = {
    AgreementStatus.PENDING: frozenset({AgreementStatus.ACTIVE, AgreementStatus.CANCELLED}),
    AgreementStatus.ACTIVE: frozenset({AgreementStatus.COMPLETED, AgreementStatus.DISPUTED}),
    AgreementStatus.COMPLETED: frozenset({AgreementStatus.FINALIZED, AgreementStatus.DISPUTED}),
    AgreementStatus.DISPUTED: frozenset(),
    AgreementStatus.CANCELLED: frozenset(),
    AgreementStatus.FINALIZED: frozenset(),
}


def agreement_reachable(current: AgreementStatus, target: AgreementStatus) -> bool:
    """Return whether ``target`` is ``current`` or lies ahead of it in the lifecycle.

    Intermediate states may be skipped: a mirror that missed the activation can jump
    straight from pending to completed once the ledger reports it.
    """

    if current is target:
        return True
    frontier = set(AGREEMENT_TRANSITIONS[current])
    seen: set[AgreementStatus] = set()
    while frontier:
        status = frontier.pop()
        if status is target:
            return True
        seen.add(status)
        frontier.update(AGREEMENT_TRANSITIONS[status] - seen)
    return False
