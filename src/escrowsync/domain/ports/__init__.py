"""Ports connecting the reconciliation core to its collaborators."""

from __future__ import annotations

from .feed import NotificationFeed
from .ledger import LedgerClient, PartyFilter
from .persistence import (
    ActivityRepository,
    AgreementRepository,
    ProfileRepository,
    ProgressRepository,
    QuarantineRepository,
)
from .publication import PublicationEvent, Publisher
from .unit_of_work import IndexRepositories, IndexUnitOfWork, RepositoryCollection, UnitOfWork

__all__ = [
    "ActivityRepository",
    "AgreementRepository",
    "IndexRepositories",
    "IndexUnitOfWork",
    "LedgerClient",
    "NotificationFeed",
    "PartyFilter",
    "ProfileRepository",
    "ProgressRepository",
    "PublicationEvent",
    "Publisher",
    "QuarantineRepository",
    "RepositoryCollection",
    "UnitOfWork",
]
