"""Operator maintenance over the activity log."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.projection import AggregateProjector, compare_aggregates, fold_profiles

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrowsync.domain.ports import IndexUnitOfWork
    from escrowsync.domain.projection import AggregateMismatch

log = getLogger(__name__)


def check_aggregates(
    unit_of_work_factory: Callable[[], IndexUnitOfWork],
) -> list[AggregateMismatch]:
    """Compare live profile aggregates with a fold of the full activity log."""

    with unit_of_work_factory() as uow:
        repositories = uow.repositories
        expected = fold_profiles(repositories.activities.all_ordered())
        actual = repositories.profiles.snapshot()
    mismatches = compare_aggregates(expected, actual)
    for mismatch in mismatches:
        log.warning(
            "Aggregate mismatch for %s: expected %s, found %s",
            mismatch.address,
            mismatch.expected,
            mismatch.actual,
        )
    return mismatches


def rebuild_aggregates(
    unit_of_work_factory: Callable[[], IndexUnitOfWork],
    *,
    projector: AggregateProjector | None = None,
) -> int:
    """Zero every aggregate and re-project the activity log in ledger order.

    Runs in a single unit of work, so a failure leaves the previous aggregates
    untouched. Returns the number of records projected.
    """

    projector = projector or AggregateProjector()
    at = datetime.now(UTC)
    with unit_of_work_factory() as uow:
        repositories = uow.repositories
        repositories.profiles.reset_aggregates()
        records = sorted(repositories.activities.all_ordered(), key=lambda item: item.sort_key)
        for record in records:
            projector.apply(record, repositories.profiles, at=at)
            record.processed = True
        uow.commit()
    log.info("Rebuilt aggregates from %s activity record(s)", len(records))
    return len(records)


__all__ = ["check_aggregates", "rebuild_aggregates"]
