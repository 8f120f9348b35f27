"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.adapters.ledger import JsonRpcLedgerClient, LedgerNotificationFeed
from escrowsync.adapters.publication import ChannelHub
from escrowsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyIndexUnitOfWork,
    is_started,
    shutdown,
    startup,
)
from escrowsync.config import get_ledger_config, get_reconcile_settings
from escrowsync.domain.ports.unit_of_work import IndexUnitOfWork
from escrowsync.domain.reconciliation import (
    ReconciliationEngine,
    ReconciliationRunner,
    check_aggregates,
    rebuild_aggregates,
)

if TYPE_CHECKING:
    from escrowsync.config import LedgerConfig, ReconcileSettings
    from escrowsync.domain.model import QuarantineEntry
    from escrowsync.domain.ports import LedgerClient, NotificationFeed, PartyFilter, Publisher
    from escrowsync.domain.projection import AggregateMismatch
    from escrowsync.domain.reconciliation import ReconcileOutcome

UnitOfWorkFactory = Callable[[], IndexUnitOfWork]

log = getLogger(__name__)


@dataclass(slots=True)
class Indexer:
    """Wired-up reconciliation stack; close it with ``aclose``."""

    ledger: LedgerClient
    feed: NotificationFeed
    engine: ReconciliationEngine
    runner: ReconciliationRunner
    publisher: Publisher | None
    unit_of_work_factory: UnitOfWorkFactory
    settings: ReconcileSettings

    async def aclose(self) -> None:
        await self.feed.aclose()
        await self.ledger.aclose()


def ensure_store() -> None:
    if not is_started():
        startup()


def close_store() -> None:
    if is_started():
        shutdown()


def build_indexer(
    *,
    ledger_config: LedgerConfig | None = None,
    settings: ReconcileSettings | None = None,
    ledger: LedgerClient | None = None,
    feed: NotificationFeed | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    publisher: Publisher | None = None,
) -> Indexer:
    """Build the indexer from configuration, letting callers swap any collaborator."""

    effective_settings = settings or get_reconcile_settings()
    if unit_of_work_factory is None:
        ensure_store()
        unit_of_work_factory = SqlAlchemyIndexUnitOfWork
    if ledger is None or feed is None:
        config = ledger_config or get_ledger_config()
        client = JsonRpcLedgerClient(config)
        if feed is None:
            feed = LedgerNotificationFeed(
                client,
                config,
                max_range=effective_settings.replay_batch_size,
                owns_client=ledger is not None,
            )
        ledger = ledger or client
    effective_publisher = publisher if publisher is not None else ChannelHub()
    engine = ReconciliationEngine(
        ledger=ledger,
        unit_of_work_factory=unit_of_work_factory,
        settings=effective_settings,
        publisher=effective_publisher,
    )
    runner = ReconciliationRunner(
        engine=engine,
        feed=feed,
        unit_of_work_factory=unit_of_work_factory,
        settings=effective_settings,
    )
    return Indexer(
        ledger=ledger,
        feed=feed,
        engine=engine,
        runner=runner,
        publisher=effective_publisher,
        unit_of_work_factory=unit_of_work_factory,
        settings=effective_settings,
    )


async def run_indexer(indexer: Indexer, *, follow: bool = True) -> int:
    """Catch up to the ledger head, then follow live notifications until stopped.

    Returns the feed cursor position reached.
    """

    log.info(
        "Starting indexer: workers=%s, replay_batch=%s, follow=%s",
        indexer.settings.workers,
        indexer.settings.replay_batch_size,
        follow,
    )
    try:
        position = await indexer.runner.catch_up()
        if follow and not indexer.runner.stopping:
            await indexer.runner.follow()
            position = indexer.runner.cursor_position()
    finally:
        await indexer.aclose()
    log.info("Indexer stopped at position %s: %s", position, indexer.engine.stats.as_dict())
    return position


async def retry_quarantine(indexer: Indexer, partition: str) -> list[ReconcileOutcome]:
    try:
        return await indexer.engine.retry_quarantined(partition)
    finally:
        await indexer.aclose()


def list_quarantine(
    *,
    include_resolved: bool = False,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> list[QuarantineEntry]:
    if unit_of_work_factory is None:
        ensure_store()
        unit_of_work_factory = SqlAlchemyIndexUnitOfWork
    with unit_of_work_factory() as uow:
        return list(uow.repositories.quarantine.list(include_resolved=include_resolved))


def rebuild_profile_aggregates(
    *,
    check_only: bool = False,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> list[AggregateMismatch]:
    """Check aggregates against the activity log and, unless ``check_only``, rebuild them.

    Returns the mismatches found before any rebuild.
    """

    if unit_of_work_factory is None:
        ensure_store()
        unit_of_work_factory = SqlAlchemyIndexUnitOfWork
    mismatches = check_aggregates(unit_of_work_factory)
    if not check_only and mismatches:
        rebuild_aggregates(unit_of_work_factory)
    return mismatches


async def list_party_agreements(
    address: str,
    *,
    role: PartyFilter = "both",
    ledger: LedgerClient | None = None,
) -> list[int]:
    client = ledger or JsonRpcLedgerClient(get_ledger_config())
    try:
        return sorted(await client.fetch_party_agreements(address, role))
    finally:
        if ledger is None:
            await client.aclose()


async def verify_signature(
    message: str,
    signature: str,
    address: str,
    *,
    ledger: LedgerClient | None = None,
) -> bool:
    client = ledger or JsonRpcLedgerClient(get_ledger_config())
    try:
        return await client.verify_signed_message(message, signature, address)
    finally:
        if ledger is None:
            await client.aclose()


__all__ = [
    "Indexer",
    "UnitOfWorkFactory",
    "build_indexer",
    "close_store",
    "ensure_store",
    "list_party_agreements",
    "list_quarantine",
    "rebuild_profile_aggregates",
    "retry_quarantine",
    "run_indexer",
    "verify_signature",
]
