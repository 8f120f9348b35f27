from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from escrowsync.adapters.sqlalchemy import create_all_tables, start_mappers
from escrowsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyIndexUnitOfWork,
    shutdown,
    startup,
)
from escrowsync.config import ReconcileSettings
from escrowsync.domain.reconciliation import ReconciliationEngine
from tests.helpers.ledger import FakeLedger
from tests.helpers.publication import RecordingPublisher

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # One shared connection so every session sees the same in-memory database.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    start_mappers()
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def unit_of_work_factory(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyIndexUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyIndexUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def settings() -> ReconcileSettings:
    return ReconcileSettings(
        replay_batch_size=10,
        workers=2,
        max_attempts=3,
        backoff_factor=0.5,
        max_backoff_wait=4.0,
        shutdown_grace_seconds=1.0,
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], Awaitable[None]]:
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep


@pytest.fixture
def engine(
    ledger: FakeLedger,
    unit_of_work_factory: Callable[[], SqlAlchemyIndexUnitOfWork],
    settings: ReconcileSettings,
    publisher: RecordingPublisher,
    fake_sleep: Callable[[float], Awaitable[None]],
) -> ReconciliationEngine:
    return ReconciliationEngine(
        ledger=ledger,
        unit_of_work_factory=unit_of_work_factory,
        settings=settings,
        publisher=publisher,
        sleep=fake_sleep,
    )
