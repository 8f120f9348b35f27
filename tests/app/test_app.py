from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import update

from escrowsync.adapters.publication import ChannelHub
from escrowsync.app import (
    build_indexer,
    list_party_agreements,
    list_quarantine,
    rebuild_profile_aggregates,
    retry_quarantine,
    run_indexer,
    verify_signature,
)
from escrowsync.domain.model import AgreementStatus, PartyProfile
from escrowsync.domain.notifications import Checkpoint
from escrowsync.domain.reconciliation import ReconcileOutcome
from tests.helpers import notifications as make
from tests.helpers.agreements import COMPANY, TALENT, make_agreement, with_status
from tests.helpers.feeds import ScriptedFeed

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrowsync.adapters.sqlalchemy.unit_of_work import SqlAlchemyIndexUnitOfWork
    from escrowsync.app import Indexer
    from escrowsync.config import ReconcileSettings
    from tests.helpers.ledger import FakeLedger
    from tests.helpers.publication import RecordingPublisher

    UowFactory = Callable[[], SqlAlchemyIndexUnitOfWork]


def _indexer(
    ledger: FakeLedger,
    feed: ScriptedFeed,
    unit_of_work_factory: UowFactory,
    settings: ReconcileSettings,
    publisher: RecordingPublisher | None = None,
) -> Indexer:
    return build_indexer(
        settings=settings,
        ledger=ledger,
        feed=feed,
        unit_of_work_factory=unit_of_work_factory,
        publisher=publisher,
    )


def test_run_indexer_catches_up_and_closes(
    ledger: FakeLedger,
    unit_of_work_factory: UowFactory,
    settings: ReconcileSettings,
    publisher: RecordingPublisher,
    caplog: pytest.LogCaptureFixture,
) -> None:
    ledger.put(make_agreement())
    created = make.created(position=3)
    feed = ScriptedFeed([created], head=5)
    indexer = _indexer(ledger, feed, unit_of_work_factory, settings, publisher)

    with caplog.at_level(logging.INFO, logger="escrowsync.app"):
        position = asyncio.run(run_indexer(indexer, follow=False))

    assert position == 5
    assert publisher.keys == [created.idempotency_key]
    assert feed.subscribed_from == []
    assert feed.closed
    assert ledger.closed
    assert "Indexer stopped at position 5: {'applied': 1" in caplog.text


def test_run_indexer_follows_the_live_stream(
    ledger: FakeLedger,
    unit_of_work_factory: UowFactory,
    settings: ReconcileSettings,
) -> None:
    ledger.put(with_status(make_agreement(), AgreementStatus.ACTIVE))
    live = [make.created(position=3), make.activated(position=4), Checkpoint(4)]
    feed = ScriptedFeed(live=live)
    indexer = _indexer(ledger, feed, unit_of_work_factory, settings)

    position = asyncio.run(run_indexer(indexer))

    assert position == 4
    assert feed.subscribed_from == [1]
    assert isinstance(indexer.publisher, ChannelHub)
    assert indexer.engine.stats.applied == 2


def test_retry_quarantine_releases_a_fixed_partition(
    ledger: FakeLedger,
    unit_of_work_factory: UowFactory,
    settings: ReconcileSettings,
) -> None:
    feed = ScriptedFeed()
    indexer = _indexer(ledger, feed, unit_of_work_factory, settings)
    outcome = asyncio.run(indexer.engine.reconcile(make.created(position=3)))
    assert outcome is ReconcileOutcome.QUARANTINED
    (entry,) = list_quarantine(unit_of_work_factory=unit_of_work_factory)
    assert entry.partition == "agreement:1"

    ledger.put(make_agreement())
    outcomes = asyncio.run(retry_quarantine(indexer, "agreement:1"))

    assert outcomes == [ReconcileOutcome.APPLIED]
    assert list_quarantine(unit_of_work_factory=unit_of_work_factory) == []
    resolved = list_quarantine(include_resolved=True, unit_of_work_factory=unit_of_work_factory)
    assert [item.idempotency_key for item in resolved] == [entry.idempotency_key]
    assert ledger.closed


def test_rebuild_profile_aggregates_only_rebuilds_on_drift(
    ledger: FakeLedger,
    unit_of_work_factory: UowFactory,
    settings: ReconcileSettings,
) -> None:
    ledger.put(make_agreement())
    indexer = _indexer(ledger, ScriptedFeed(), unit_of_work_factory, settings)
    asyncio.run(indexer.engine.reconcile(make.created(position=3)))
    assert rebuild_profile_aggregates(unit_of_work_factory=unit_of_work_factory) == []

    with unit_of_work_factory() as uow:
        uow.session.execute(
            update(PartyProfile).where(PartyProfile.address == TALENT).values(total_contracts=9)
        )
        uow.commit()

    checked = rebuild_profile_aggregates(check_only=True, unit_of_work_factory=unit_of_work_factory)
    assert [mismatch.address for mismatch in checked] == [TALENT]
    assert rebuild_profile_aggregates(unit_of_work_factory=unit_of_work_factory) == checked
    assert rebuild_profile_aggregates(unit_of_work_factory=unit_of_work_factory) == []


def test_list_party_agreements_sorts_ids(ledger: FakeLedger) -> None:
    ledger.put(make_agreement(4))
    ledger.put(make_agreement(2))
    ledger.put(make_agreement(3, company=TALENT, talent=COMPANY))

    both = asyncio.run(list_party_agreements(TALENT.upper().replace("0X", "0x"), ledger=ledger))
    talent_only = asyncio.run(list_party_agreements(TALENT, role="talent", ledger=ledger))

    assert both == [2, 3, 4]
    assert talent_only == [2, 4]
    assert not ledger.closed


def test_verify_signature_checks_the_claimed_signer(ledger: FakeLedger) -> None:
    ledger.signatures[("hello", "0xsig")] = TALENT

    assert asyncio.run(verify_signature("hello", "0xsig", TALENT, ledger=ledger))
    assert not asyncio.run(verify_signature("hello", "0xsig", COMPANY, ledger=ledger))
