"""Append-only activity log entries, one per distinct ledger notification."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from escrowsync.domain.model.enums import NotificationType


@dataclass(frozen=True, slots=True, kw_only=True)
class ActivityPayload:
    """Type-specific notification data. Amounts are exact decimal strings."""

    milestone_index: int | None = None
    amount: str | None = None
    external_ref: str | None = None
    reason: str | None = None
    token_id: int | None = None
    skill_name: str | None = None

    @property
    def amount_value(self) -> int:
        return int(self.amount) if self.amount is not None else 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "milestoneIndex": self.milestone_index,
            "amount": self.amount,
            "externalRef": self.external_ref,
            "reason": self.reason,
            "tokenId": self.token_id,
            "skillName": self.skill_name,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityPayload:
        return cls(
            milestone_index=data.get("milestoneIndex"),
            amount=data.get("amount"),
            external_ref=data.get("externalRef"),
            reason=data.get("reason"),
            token_id=data.get("tokenId"),
            skill_name=data.get("skillName"),
        )


@dataclass(eq=False, kw_only=True)
class ActivityRecord:
    """Durable, deduplicated projection of one ledger notification.

    Created exactly once per idempotency key and never updated afterwards, except
    for ``processed``, which is set in the same commit that projects the record onto
    profile aggregates.
    """

    idempotency_key: str
    agreement_id: int | None
    position: int
    log_index: int
    type: NotificationType
    company: str | None
    talent: str | None
    initiator: str | None
    timestamp: datetime
    payload: ActivityPayload = field(default_factory=ActivityPayload)
    processed: bool = False
    recorded_at: datetime | None = None
    id: int | None = None

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (self.position, self.log_index, self.idempotency_key)

    @property
    def involved_addresses(self) -> tuple[str, ...]:
        seen: list[str] = []
        for address in (self.company, self.talent, self.initiator):
            if address is not None and address not in seen:
                seen.append(address)
        return tuple(seen)
