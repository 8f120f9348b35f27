"""Progress markers and the quarantine side-log."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from escrowsync.domain.model.enums import QuarantineStatus

if TYPE_CHECKING:
    from datetime import datetime

    from escrowsync.domain.errors import Fault
    from escrowsync.domain.model.enums import NotificationType

CREDENTIALS_PARTITION = "credentials"


def agreement_partition(agreement_id: int) -> str:
    return f"agreement:{agreement_id}"


@dataclass(eq=False, kw_only=True)
class Watermark:
    """Highest position fully processed for one partition."""

    partition: str
    position: int = -1
    held: bool = False
    updated_at: datetime | None = None

    def advance(self, position: int, *, releasing: bool = False) -> bool:
        """Move forward to ``position`` unless an open quarantine pins the partition.

        ``releasing`` is set while quarantined entries are re-applied in order, which
        is the only way a held partition makes progress.
        """

        if (self.held and not releasing) or position <= self.position:
            return False
        self.position = position
        return True


@dataclass(eq=False, kw_only=True)
class FeedCursor:
    """Replay resumes from ``position + 1``; every range below it has been reconciled."""

    name: str
    position: int = -1
    updated_at: datetime | None = None


@dataclass(eq=False, kw_only=True)
class QuarantineEntry:
    idempotency_key: str
    partition: str
    position: int
    log_index: int
    type: NotificationType
    fault: Fault
    message: str
    notification: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1
    status: QuarantineStatus = QuarantineStatus.OPEN
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.status is QuarantineStatus.OPEN

    def resolve(self, at: datetime) -> None:
        self.status = QuarantineStatus.RESOLVED
        self.resolved_at = at
