"""SQLAlchemy adapter package for escrowsync."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyActivityRepository,
    SqlAlchemyAgreementRepository,
    SqlAlchemyProfileRepository,
    SqlAlchemyProgressRepository,
    SqlAlchemyQuarantineRepository,
)
from .unit_of_work import SqlAlchemyIndexUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyActivityRepository",
    "SqlAlchemyAgreementRepository",
    "SqlAlchemyIndexUnitOfWork",
    "SqlAlchemyProfileRepository",
    "SqlAlchemyProgressRepository",
    "SqlAlchemyQuarantineRepository",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
