"""Agreement and milestone mirrors.

The ledger owns canonical agreement state. Local instances are a cache that is only
ever refreshed from a ledger snapshot, and only ever forward.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from escrowsync.domain.errors import InvariantViolation
from escrowsync.domain.model.enums import AgreementStatus, MilestoneStatus, agreement_reachable

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(eq=False, kw_only=True)
class Milestone:
    agreement_id: int
    index: int
    description: str
    amount: int
    deadline: datetime | None = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    deliverable_ref: str | None = None

    # Derived locally when the payout notification is applied.
    paid_amount: int | None = None
    platform_fee: int | None = None

    def check_advance(self, status: MilestoneStatus) -> None:
        if status.rank < self.status.rank:
            raise InvariantViolation(
                f"Milestone {self.agreement_id}/{self.index} cannot move back from "
                f"{self.status} to {status}"
            )

    def advance_to(self, status: MilestoneStatus) -> bool:
        """Move forward to ``status``; return whether anything changed."""

        self.check_advance(status)
        changed = status is not self.status
        self.status = status
        return changed

    def record_payout(self, *, paid_amount: int, platform_fee: int) -> None:
        if paid_amount < 0 or platform_fee < 0 or paid_amount + platform_fee != self.amount:
            raise InvariantViolation(
                f"Payout {paid_amount} + fee {platform_fee} does not match milestone "
                f"{self.agreement_id}/{self.index} amount {self.amount}"
            )
        self.paid_amount = paid_amount
        self.platform_fee = platform_fee

    def copy(self) -> Milestone:
        return Milestone(
            agreement_id=self.agreement_id,
            index=self.index,
            description=self.description,
            amount=self.amount,
            deadline=self.deadline,
            status=self.status,
            deliverable_ref=self.deliverable_ref,
            paid_amount=self.paid_amount,
            platform_fee=self.platform_fee,
        )


@dataclass(eq=False, kw_only=True)
class Agreement:
    id: int
    company: str
    talent: str
    title: str
    total_amount: int
    metadata_ref: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    status: AgreementStatus = AgreementStatus.PENDING
    company_approved: bool = False
    talent_approved: bool = False
    refreshed_at: datetime | None = None
    last_position: int = 0

    milestones: list[Milestone] = field(default_factory=list["Milestone"], repr=False)

    @property
    def parties(self) -> tuple[str, str]:
        return (self.company, self.talent)

    @property
    def milestone_count(self) -> int:
        return len(self.milestones)

    def milestone(self, index: int) -> Milestone | None:
        for milestone in self.milestones:
            if milestone.index == index:
                return milestone
        return None

    def check_escrow(self) -> None:
        """Escrowed value must equal the sum of milestone amounts."""

        milestone_total = sum(milestone.amount for milestone in self.milestones)
        if milestone_total != self.total_amount:
            raise InvariantViolation(
                f"Agreement {self.id} escrows {self.total_amount} but milestones sum to "
                f"{milestone_total}"
            )

    def check_snapshot(self, snapshot: Agreement) -> None:
        """Raise if ``snapshot`` cannot be applied on top of this mirror."""

        if snapshot.id != self.id:
            raise ValueError(f"Snapshot for agreement {snapshot.id} applied to {self.id}")
        if snapshot.parties != self.parties:
            raise InvariantViolation(f"Agreement {self.id} parties changed on the ledger")
        if snapshot.total_amount != self.total_amount:
            raise InvariantViolation(f"Agreement {self.id} escrow total changed on the ledger")
        if not agreement_reachable(self.status, snapshot.status):
            raise InvariantViolation(
                f"Agreement {self.id} cannot move back from {self.status} to {snapshot.status}"
            )
        if snapshot.milestone_count < self.milestone_count:
            raise InvariantViolation(f"Agreement {self.id} lost milestones on the ledger")
        for incoming in snapshot.milestones:
            existing = self.milestone(incoming.index)
            if existing is not None:
                existing.check_advance(incoming.status)

    def apply_snapshot(self, snapshot: Agreement, *, position: int, refreshed_at: datetime) -> None:
        """Refresh this mirror from a ledger snapshot, validating before mutating."""

        self.check_snapshot(snapshot)
        self.title = snapshot.title
        self.metadata_ref = snapshot.metadata_ref
        self.start_at = snapshot.start_at
        self.end_at = snapshot.end_at
        self.status = snapshot.status
        self.company_approved = snapshot.company_approved
        self.talent_approved = snapshot.talent_approved
        self.refreshed_at = refreshed_at
        self.last_position = max(self.last_position, position)
        for incoming in snapshot.milestones:
            existing = self.milestone(incoming.index)
            if existing is None:
                self.milestones.append(incoming.copy())
                continue
            existing.advance_to(incoming.status)
            existing.description = incoming.description
            existing.deadline = incoming.deadline
            existing.deliverable_ref = incoming.deliverable_ref

    def copy(self) -> Agreement:
        return Agreement(
            id=self.id,
            company=self.company,
            talent=self.talent,
            title=self.title,
            total_amount=self.total_amount,
            metadata_ref=self.metadata_ref,
            start_at=self.start_at,
            end_at=self.end_at,
            status=self.status,
            company_approved=self.company_approved,
            talent_approved=self.talent_approved,
            refreshed_at=self.refreshed_at,
            last_position=self.last_position,
            milestones=[milestone.copy() for milestone in self.milestones],
        )
