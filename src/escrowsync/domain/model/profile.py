"""Off-chain party profiles and their reputation aggregates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from escrowsync.domain.model.enums import PartyRole

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class ReputationSnapshot:
    """Value view of a profile aggregate; equality is what replay checks compare."""

    rating: float = 0.0
    total_contracts: int = 0
    completed_contracts: int = 0
    disputed_contracts: int = 0
    cancelled_contracts: int = 0
    finalized_contracts: int = 0
    total_earned: int = 0
    total_spent: int = 0
    credential_tokens: tuple[int, ...] = ()


@dataclass(eq=False, kw_only=True)
class Credential:
    """Soulbound credential: bound to ``recipient`` for good."""

    token_id: int
    recipient: str
    issuer: str
    skill_name: str
    issued_at: datetime | None = None


@dataclass(eq=False, kw_only=True)
class PartyProfile:
    address: str
    role: PartyRole
    display_name: str | None = None

    rating: float = 0.0
    total_contracts: int = 0
    completed_contracts: int = 0
    disputed_contracts: int = 0
    cancelled_contracts: int = 0
    finalized_contracts: int = 0
    total_earned: int = 0
    total_spent: int = 0
    version: int = 0

    created_at: datetime | None = None
    updated_at: datetime | None = None

    credentials: list[Credential] = field(default_factory=list["Credential"], repr=False)

    @property
    def completion_rate(self) -> float:
        if self.total_contracts == 0:
            return 0.0
        return self.completed_contracts / self.total_contracts * 100

    def reputation(self) -> ReputationSnapshot:
        return ReputationSnapshot(
            rating=self.rating,
            total_contracts=self.total_contracts,
            completed_contracts=self.completed_contracts,
            disputed_contracts=self.disputed_contracts,
            cancelled_contracts=self.cancelled_contracts,
            finalized_contracts=self.finalized_contracts,
            total_earned=self.total_earned,
            total_spent=self.total_spent,
            credential_tokens=tuple(sorted(c.token_id for c in self.credentials)),
        )
