"""Ports for persisting the local mirror, the activity log and progress markers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from escrowsync.domain.model import (
        ActivityRecord,
        Agreement,
        Credential,
        FeedCursor,
        PartyProfile,
        PartyRole,
        QuarantineEntry,
        ReputationSnapshot,
        Watermark,
    )


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class AgreementRepository(Repository["Agreement"], Protocol):
    def get(self, agreement_id: int) -> Agreement | None: ...

    def list_for_party(self, address: str) -> Sequence[Agreement]: ...


@runtime_checkable
class ActivityRepository(Repository["ActivityRecord"], Protocol):
    def exists(self, idempotency_key: str) -> bool: ...

    def for_agreement(self, agreement_id: int) -> Sequence[ActivityRecord]: ...

    def all_ordered(self) -> Sequence[ActivityRecord]: ...

    def latest_position(self) -> int | None: ...


@runtime_checkable
class ProfileRepository(Protocol):
    """Aggregate fields are mutated in place by the store, never read-modify-written."""

    def get(self, address: str) -> PartyProfile | None: ...

    def ensure(self, address: str, role: PartyRole, *, at: datetime) -> None: ...

    def increment(self, address: str, counters: dict[str, int], *, at: datetime) -> None: ...

    def add_amounts(self, address: str, amounts: dict[str, int], *, at: datetime) -> None: ...

    def add_credential(self, credential: Credential) -> bool: ...

    def snapshot(self) -> dict[str, ReputationSnapshot]: ...

    def reset_aggregates(self) -> None: ...


@runtime_checkable
class QuarantineRepository(Repository["QuarantineEntry"], Protocol):
    def get(self, idempotency_key: str) -> QuarantineEntry | None: ...

    def open_for_partition(self, partition: str) -> Sequence[QuarantineEntry]: ...

    def list(self, *, include_resolved: bool = False) -> Sequence[QuarantineEntry]: ...


@runtime_checkable
class ProgressRepository(Protocol):
    def watermark(self, partition: str) -> Watermark: ...

    def cursor(self, name: str) -> FeedCursor: ...


__all__ = [
    "ActivityRepository",
    "AgreementRepository",
    "ProfileRepository",
    "ProgressRepository",
    "QuarantineRepository",
    "Repository",
]
