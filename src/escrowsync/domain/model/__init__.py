"""Domain model for the escrow agreement indexer."""

from __future__ import annotations

from .activity import ActivityPayload, ActivityRecord
from .agreement import Agreement, Milestone
from .enums import (
    AGREEMENT_TRANSITIONS,
    AgreementStatus,
    MilestoneStatus,
    NotificationType,
    PartyRole,
    QuarantineStatus,
    agreement_reachable,
)
from .profile import Credential, PartyProfile, ReputationSnapshot
from .sync_state import (
    CREDENTIALS_PARTITION,
    FeedCursor,
    QuarantineEntry,
    Watermark,
    agreement_partition,
)

__all__ = [
    "AGREEMENT_TRANSITIONS",
    "CREDENTIALS_PARTITION",
    "ActivityPayload",
    "ActivityRecord",
    "Agreement",
    "AgreementStatus",
    "Credential",
    "FeedCursor",
    "Milestone",
    "MilestoneStatus",
    "NotificationType",
    "PartyProfile",
    "PartyRole",
    "QuarantineEntry",
    "QuarantineStatus",
    "ReputationSnapshot",
    "Watermark",
    "agreement_partition",
    "agreement_reachable",
]
