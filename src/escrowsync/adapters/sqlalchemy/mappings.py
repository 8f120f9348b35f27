"""SQLAlchemy mapping metadata for the escrow index."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    orm,
)
from sqlalchemy.orm import configure_mappers, foreign, relationship

from escrowsync.domain.errors import Fault
from escrowsync.domain.model import (
    ActivityPayload,
    ActivityRecord,
    Agreement,
    AgreementStatus,
    Credential,
    FeedCursor,
    Milestone,
    MilestoneStatus,
    NotificationType,
    PartyProfile,
    PartyRole,
    QuarantineEntry,
    QuarantineStatus,
    Watermark,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

ADDRESS_LENGTH = 42


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class AmountType(TypeDecorator[int]):
    """Exact base-unit integers stored as decimal strings.

    Ledger amounts exceed 64 bits and SQLite's NUMERIC affinity goes through floats.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value: int | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> int | None:
        _ = dialect
        if value is None:
            return None
        return int(value)


class ActivityPayloadType(TypeDecorator[ActivityPayload]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: ActivityPayload | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value.to_dict(), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> ActivityPayload:
        _ = dialect
        if not value:
            return ActivityPayload()
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return ActivityPayload()
        return ActivityPayload.from_dict(cast(dict[str, Any], loaded))


class JSONDocument(TypeDecorator[dict[str, Any]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: dict[str, Any] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, Any]:
        _ = dialect
        if not value:
            return {}
        loaded = json.loads(value)
        return cast(dict[str, Any], loaded) if isinstance(loaded, dict) else {}


def _enum(enum_cls: type[StrEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Ledger mirror ---------------------------------------------------------------

agreement_table = Table(
    "agreement",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("company", String(ADDRESS_LENGTH), nullable=False, index=True),
    Column("talent", String(ADDRESS_LENGTH), nullable=False, index=True),
    Column("title", String, nullable=False, default=""),
    Column("total_amount", AmountType, nullable=False),
    Column("metadata_ref", String, nullable=True),
    Column("start_at", UTCDateTime, nullable=True),
    Column("end_at", UTCDateTime, nullable=True),
    Column("status", _enum(AgreementStatus, "agreement_status"), nullable=False),
    Column("company_approved", Boolean, nullable=False, default=False),
    Column("talent_approved", Boolean, nullable=False, default=False),
    Column("refreshed_at", UTCDateTime, nullable=True),
    Column("last_position", Integer, nullable=False, default=0),
)

milestone_table = Table(
    "milestone",
    mapper_registry.metadata,
    Column(
        "agreement_id",
        Integer,
        ForeignKey("agreement.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("milestone_index", Integer, key="index", primary_key=True, autoincrement=False),
    Column("description", String, nullable=False, default=""),
    Column("amount", AmountType, nullable=False),
    Column("deadline", UTCDateTime, nullable=True),
    Column("status", _enum(MilestoneStatus, "milestone_status"), nullable=False),
    Column("deliverable_ref", String, nullable=True),
    Column("paid_amount", AmountType, nullable=True),
    Column("platform_fee", AmountType, nullable=True),
)

# Activity log ----------------------------------------------------------------

activity_record_table = Table(
    "activity_record",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("idempotency_key", String(80), nullable=False, unique=True),
    Column("agreement_id", Integer, nullable=True, index=True),
    Column("position", Integer, nullable=False),
    Column("log_index", Integer, nullable=False, default=0),
    Column("type", _enum(NotificationType, "notification_type"), nullable=False),
    Column("company", String(ADDRESS_LENGTH), nullable=True),
    Column("talent", String(ADDRESS_LENGTH), nullable=True),
    Column("initiator", String(ADDRESS_LENGTH), nullable=True),
    Column("timestamp", UTCDateTime, nullable=False),
    Column("payload", ActivityPayloadType, nullable=False),
    Column("processed", Boolean, nullable=False, default=False),
    Column("recorded_at", UTCDateTime, nullable=True),
    Index("ix_activity_record_order", "position", "log_index"),
)

# Profiles --------------------------------------------------------------------

party_profile_table = Table(
    "party_profile",
    mapper_registry.metadata,
    Column("address", String(ADDRESS_LENGTH), primary_key=True),
    Column("role", _enum(PartyRole, "party_role"), nullable=False),
    Column("display_name", String, nullable=True),
    Column("rating", Float, nullable=False, default=0.0),
    Column("total_contracts", Integer, nullable=False, default=0),
    Column("completed_contracts", Integer, nullable=False, default=0),
    Column("disputed_contracts", Integer, nullable=False, default=0),
    Column("cancelled_contracts", Integer, nullable=False, default=0),
    Column("finalized_contracts", Integer, nullable=False, default=0),
    Column("total_earned", AmountType, nullable=False, default=0),
    Column("total_spent", AmountType, nullable=False, default=0),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", UTCDateTime, nullable=True),
    Column("updated_at", UTCDateTime, nullable=True),
)

credential_table = Table(
    "credential",
    mapper_registry.metadata,
    Column("token_id", Integer, primary_key=True, autoincrement=False),
    Column("recipient", String(ADDRESS_LENGTH), nullable=False, index=True),
    Column("issuer", String(ADDRESS_LENGTH), nullable=False),
    Column("skill_name", String, nullable=False, default=""),
    Column("issued_at", UTCDateTime, nullable=True),
)

# Progress and quarantine -----------------------------------------------------

quarantine_entry_table = Table(
    "quarantine_entry",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("idempotency_key", String(80), nullable=False, unique=True),
    Column("partition", String(64), nullable=False),
    Column("position", Integer, nullable=False),
    Column("log_index", Integer, nullable=False, default=0),
    Column("type", _enum(NotificationType, "notification_type"), nullable=False),
    Column("fault", _enum(Fault, "fault"), nullable=False),
    Column("message", Text, nullable=False, default=""),
    Column("notification", JSONDocument, nullable=False),
    Column("attempts", Integer, nullable=False, default=1),
    Column("status", _enum(QuarantineStatus, "quarantine_status"), nullable=False),
    Column("created_at", UTCDateTime, nullable=True),
    Column("resolved_at", UTCDateTime, nullable=True),
    Index("ix_quarantine_entry_partition_status", "partition", "status"),
)

watermark_table = Table(
    "watermark",
    mapper_registry.metadata,
    Column("partition", String(64), primary_key=True),
    Column("position", Integer, nullable=False, default=-1),
    Column("held", Boolean, nullable=False, default=False),
    Column("updated_at", UTCDateTime, nullable=True),
)

feed_cursor_table = Table(
    "feed_cursor",
    mapper_registry.metadata,
    Column("name", String(64), primary_key=True),
    Column("position", Integer, nullable=False, default=-1),
    Column("updated_at", UTCDateTime, nullable=True),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(
        Agreement,
        agreement_table,
        properties={
            "milestones": relationship(
                Milestone,
                cascade="all, delete-orphan",
                order_by=milestone_table.c.index,
                lazy="selectin",
            ),
        },
    )

    mapper_registry.map_imperatively(Milestone, milestone_table)

    mapper_registry.map_imperatively(ActivityRecord, activity_record_table)

    mapper_registry.map_imperatively(
        PartyProfile,
        party_profile_table,
        properties={
            "credentials": relationship(
                Credential,
                primaryjoin=party_profile_table.c.address == foreign(credential_table.c.recipient),
                order_by=credential_table.c.token_id,
                lazy="selectin",
            ),
        },
    )

    mapper_registry.map_imperatively(Credential, credential_table)

    mapper_registry.map_imperatively(QuarantineEntry, quarantine_entry_table)

    mapper_registry.map_imperatively(Watermark, watermark_table)

    mapper_registry.map_imperatively(FeedCursor, feed_cursor_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)


__all__ = [
    "AmountType",
    "UTCDateTime",
    "activity_record_table",
    "agreement_table",
    "create_all_tables",
    "credential_table",
    "feed_cursor_table",
    "mapper_registry",
    "milestone_table",
    "party_profile_table",
    "quarantine_entry_table",
    "start_mappers",
    "watermark_table",
]
