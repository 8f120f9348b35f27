"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, or_, select, update

from escrowsync.adapters.sqlalchemy.mappings import (
    activity_record_table,
    agreement_table,
    party_profile_table,
    quarantine_entry_table,
)
from escrowsync.domain.errors import StoreWriteFailure
from escrowsync.domain.model import (
    ActivityRecord,
    Agreement,
    Credential,
    FeedCursor,
    PartyProfile,
    QuarantineEntry,
    QuarantineStatus,
    Watermark,
)
from escrowsync.domain.projection import AMOUNT_FIELDS, COUNTER_FIELDS

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.orm import Session

    from escrowsync.domain.model import PartyRole, ReputationSnapshot

MAX_CAS_ATTEMPTS = 5

_SYNC_EVALUATE = {"synchronize_session": "evaluate"}


class SqlAlchemyAgreementRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Agreement) -> None:
        self.session.add(entity)

    def get(self, agreement_id: int) -> Agreement | None:
        return self.session.get(Agreement, agreement_id)

    def list_for_party(self, address: str) -> Sequence[Agreement]:
        stmt = (
            select(Agreement)
            .where(or_(agreement_table.c.company == address, agreement_table.c.talent == address))
            .order_by(agreement_table.c.id)
        )
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyActivityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ActivityRecord) -> None:
        self.session.add(entity)

    def exists(self, idempotency_key: str) -> bool:
        stmt = (
            select(activity_record_table.c.id)
            .where(activity_record_table.c.idempotency_key == idempotency_key)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def for_agreement(self, agreement_id: int) -> Sequence[ActivityRecord]:
        stmt = (
            select(ActivityRecord)
            .where(activity_record_table.c.agreement_id == agreement_id)
            .order_by(*_log_order())
        )
        return self.session.execute(stmt).scalars().all()

    def all_ordered(self) -> Sequence[ActivityRecord]:
        stmt = select(ActivityRecord).order_by(*_log_order())
        return self.session.execute(stmt).scalars().all()

    def latest_position(self) -> int | None:
        stmt = select(func.max(activity_record_table.c.position))
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyProfileRepository:
    """Profile aggregates are only ever changed with in-database arithmetic.

    Counters use ``col = col + n``. Amount totals are decimal strings, which SQL cannot
    add exactly, so they are updated with a compare-and-swap on ``version``.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, address: str) -> PartyProfile | None:
        return self.session.get(PartyProfile, address)

    def ensure(self, address: str, role: PartyRole, *, at: datetime) -> None:
        profile = self.session.get(PartyProfile, address)
        if profile is None:
            self.session.add(PartyProfile(address=address, role=role, created_at=at, updated_at=at))
            self.session.flush()
            return
        merged = profile.role.merge(role)
        if merged is not profile.role:
            profile.role = merged
            profile.updated_at = at

    def increment(self, address: str, counters: dict[str, int], *, at: datetime) -> None:
        unknown = set(counters) - COUNTER_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile counters: {sorted(unknown)}")
        values: dict[str, object] = {
            name: _profile_attr(name) + amount for name, amount in counters.items()
        }
        values["updated_at"] = at
        stmt = (
            update(PartyProfile)
            .where(_profile_attr("address") == address)
            .values(values)
            .execution_options(**_SYNC_EVALUATE)
        )
        self.session.execute(stmt)

    def add_amounts(self, address: str, amounts: dict[str, int], *, at: datetime) -> None:
        unknown = set(amounts) - AMOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile amounts: {sorted(unknown)}")
        columns = [party_profile_table.c[name] for name in sorted(amounts)]
        for _attempt in range(MAX_CAS_ATTEMPTS):
            row = self.session.execute(
                select(party_profile_table.c.version, *columns).where(
                    party_profile_table.c.address == address
                )
            ).one()
            version = row.version
            values: dict[str, object] = {
                column.name: getattr(row, column.name) + amounts[column.name] for column in columns
            }
            values["version"] = version + 1
            values["updated_at"] = at
            stmt = (
                update(PartyProfile)
                .where(_profile_attr("address") == address)
                .where(_profile_attr("version") == version)
                .values(values)
                .execution_options(**_SYNC_EVALUATE)
            )
            if self.session.execute(stmt).rowcount == 1:
                return
        raise StoreWriteFailure(f"Concurrent updates kept changing profile {address}")

    def add_credential(self, credential: Credential) -> bool:
        if self.session.get(Credential, credential.token_id) is not None:
            return False
        self.session.add(credential)
        return True

    def snapshot(self) -> dict[str, ReputationSnapshot]:
        profiles = self.session.execute(select(PartyProfile)).scalars().all()
        return {profile.address: profile.reputation() for profile in profiles}

    def reset_aggregates(self) -> None:
        values: dict[str, object] = dict.fromkeys(COUNTER_FIELDS, 0)
        values.update(dict.fromkeys(AMOUNT_FIELDS, 0))
        values["version"] = _profile_attr("version") + 1
        stmt = update(PartyProfile).values(values).execution_options(**_SYNC_EVALUATE)
        self.session.execute(stmt)
        self.session.execute(delete(Credential))
        # Loaded profiles still hold their old credential collections.
        self.session.expire_all()


class SqlAlchemyQuarantineRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: QuarantineEntry) -> None:
        self.session.add(entity)

    def get(self, idempotency_key: str) -> QuarantineEntry | None:
        stmt = select(QuarantineEntry).where(
            quarantine_entry_table.c.idempotency_key == idempotency_key
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def open_for_partition(self, partition: str) -> Sequence[QuarantineEntry]:
        stmt = (
            select(QuarantineEntry)
            .where(quarantine_entry_table.c.partition == partition)
            .where(quarantine_entry_table.c.status == QuarantineStatus.OPEN)
            .order_by(quarantine_entry_table.c.position, quarantine_entry_table.c.log_index)
        )
        return self.session.execute(stmt).scalars().all()

    def list(self, *, include_resolved: bool = False) -> Sequence[QuarantineEntry]:
        stmt = select(QuarantineEntry).order_by(
            quarantine_entry_table.c.partition,
            quarantine_entry_table.c.position,
            quarantine_entry_table.c.log_index,
        )
        if not include_resolved:
            stmt = stmt.where(quarantine_entry_table.c.status == QuarantineStatus.OPEN)
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyProgressRepository:
    """Watermarks and cursors are created on first access."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def watermark(self, partition: str) -> Watermark:
        watermark = self.session.get(Watermark, partition)
        if watermark is None:
            watermark = Watermark(partition=partition)
            self.session.add(watermark)
        return watermark

    def cursor(self, name: str) -> FeedCursor:
        cursor = self.session.get(FeedCursor, name)
        if cursor is None:
            cursor = FeedCursor(name=name)
            self.session.add(cursor)
        return cursor


def _profile_attr(name: str) -> Any:
    # Mapped attributes rather than table columns, so the session can evaluate the
    # update against loaded profiles.
    return getattr(PartyProfile, name)


def _log_order() -> tuple[object, ...]:
    return (
        activity_record_table.c.position,
        activity_record_table.c.log_index,
        activity_record_table.c.idempotency_key,
    )


__all__ = [
    "SqlAlchemyActivityRepository",
    "SqlAlchemyAgreementRepository",
    "SqlAlchemyProfileRepository",
    "SqlAlchemyProgressRepository",
    "SqlAlchemyQuarantineRepository",
]
