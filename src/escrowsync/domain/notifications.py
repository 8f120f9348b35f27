"""Closed set of ledger notifications as a tagged union.

Every notification names the partition it belongs to and carries an idempotency key
(the transaction hash, suffixed with the log index when a transaction emits more than
one notification). Consumers dispatch with ``match`` over the concrete classes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

from escrowsync.domain.model.enums import NotificationType
from escrowsync.domain.model.sync_state import CREDENTIALS_PARTITION, agreement_partition


@dataclass(frozen=True, slots=True, kw_only=True)
class BaseNotification:
    TYPE: ClassVar[NotificationType]

    agreement_id: int | None
    idempotency_key: str
    position: int
    log_index: int = 0
    timestamp: datetime

    @property
    def type(self) -> NotificationType:
        return self.TYPE

    @property
    def partition(self) -> str:
        if self.agreement_id is None:
            return CREDENTIALS_PARTITION
        return agreement_partition(self.agreement_id)

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (self.position, self.log_index, self.idempotency_key)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.TYPE.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementCreated(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_CREATED

    agreement_id: int
    company: str
    talent: str
    total_amount: int


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementAccepted(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_ACCEPTED

    agreement_id: int
    talent: str


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementActivated(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_ACTIVATED

    agreement_id: int


@dataclass(frozen=True, slots=True, kw_only=True)
class MilestoneSubmitted(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.MILESTONE_SUBMITTED

    agreement_id: int
    milestone_index: int
    deliverable_ref: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class MilestoneApproved(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.MILESTONE_APPROVED

    agreement_id: int
    milestone_index: int


@dataclass(frozen=True, slots=True, kw_only=True)
class MilestonePaid(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.MILESTONE_PAID

    agreement_id: int
    milestone_index: int
    amount: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementDisputed(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_DISPUTED

    agreement_id: int
    initiator: str
    reason: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementCompleted(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_COMPLETED

    agreement_id: int


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementFinalized(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_FINALIZED

    agreement_id: int


@dataclass(frozen=True, slots=True, kw_only=True)
class AgreementCancelled(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.AGREEMENT_CANCELLED

    agreement_id: int
    initiator: str | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class CredentialIssued(BaseNotification):
    TYPE: ClassVar[NotificationType] = NotificationType.CREDENTIAL_ISSUED

    agreement_id: int | None = None
    token_id: int
    issuer: str
    recipient: str
    skill_name: str


type Notification = (
    AgreementCreated
    | AgreementAccepted
    | AgreementActivated
    | MilestoneSubmitted
    | MilestoneApproved
    | MilestonePaid
    | AgreementDisputed
    | AgreementCompleted
    | AgreementFinalized
    | AgreementCancelled
    | CredentialIssued
)


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Live-mode marker: every notification at or below ``position`` has been yielded."""

    position: int


type FeedItem = Notification | Checkpoint


NOTIFICATION_CLASSES: Final[dict[NotificationType, type[BaseNotification]]] = {
    cls.TYPE: cls
    for cls in (
        AgreementCreated,
        AgreementAccepted,
        AgreementActivated,
        MilestoneSubmitted,
        MilestoneApproved,
        MilestonePaid,
        AgreementDisputed,
        AgreementCompleted,
        AgreementFinalized,
        AgreementCancelled,
        CredentialIssued,
    )
}


def notification_from_dict(data: dict[str, Any]) -> Notification:
    """Rebuild a notification from ``BaseNotification.to_dict`` output."""

    cls = NOTIFICATION_CLASSES[NotificationType(data["type"])]
    names = {f.name for f in fields(cls)}
    values = {key: value for key, value in data.items() if key in names}
    timestamp = values["timestamp"]
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    values["timestamp"] = timestamp
    return cls(**values)  # type: ignore[return-value]


__all__ = [
    "NOTIFICATION_CLASSES",
    "AgreementActivated",
    "AgreementAccepted",
    "AgreementCancelled",
    "AgreementCompleted",
    "AgreementCreated",
    "AgreementDisputed",
    "AgreementFinalized",
    "BaseNotification",
    "Checkpoint",
    "CredentialIssued",
    "FeedItem",
    "MilestoneApproved",
    "MilestonePaid",
    "MilestoneSubmitted",
    "Notification",
    "notification_from_dict",
]
