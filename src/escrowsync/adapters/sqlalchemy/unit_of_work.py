"""SQLAlchemy-backed unit of work for the reconciliation engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from escrowsync.adapters.sqlalchemy.mappings import create_all_tables, start_mappers
from escrowsync.adapters.sqlalchemy.repositories import (
    SqlAlchemyActivityRepository,
    SqlAlchemyAgreementRepository,
    SqlAlchemyProfileRepository,
    SqlAlchemyProgressRepository,
    SqlAlchemyQuarantineRepository,
)
from escrowsync.config.storage import get_database_config
from escrowsync.domain.errors import StoreWriteFailure
from escrowsync.domain.ports.unit_of_work import IndexRepositories, RepositoryCollection

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call escrowsync.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def create_database_engine(database_uri: str, *, timeout_seconds: float) -> Engine:
    """Create an engine whose writes give up after ``timeout_seconds``."""

    if database_uri.startswith("sqlite"):
        # sqlite3 busy timeout: how long a writer waits for the database lock.
        return create_engine(
            database_uri,
            future=True,
            connect_args={"timeout": timeout_seconds},
        )
    return create_engine(database_uri, future=True, pool_timeout=timeout_seconds)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, metadata, and session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    if engine is None:
        config = get_database_config()
        engine = create_database_engine(
            database_uri or config.uri,
            timeout_seconds=config.timeout_seconds,
        )
    start_mappers()
    create_all_tables(engine)
    _STATE.engine = engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections.

    Database errors raised inside the block or on commit surface as
    ``StoreWriteFailure`` after the session has been rolled back.
    """

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.session.close()
            self.session = None
        if isinstance(exc_value, SQLAlchemyError):
            raise StoreWriteFailure(f"Store operation failed: {exc_value}") from exc_value
        return False

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreWriteFailure(f"Commit failed: {exc}") from exc

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyIndexUnitOfWork(BaseSqlAlchemyUnitOfWork[IndexRepositories]):
    """Unit of work covering everything one reconciliation commit touches."""

    def _build_repositories(self, session: Session) -> IndexRepositories:
        return IndexRepositories(
            agreements=SqlAlchemyAgreementRepository(session),
            activities=SqlAlchemyActivityRepository(session),
            profiles=SqlAlchemyProfileRepository(session),
            quarantine=SqlAlchemyQuarantineRepository(session),
            progress=SqlAlchemyProgressRepository(session),
        )


if TYPE_CHECKING:
    from escrowsync.domain.ports.unit_of_work import IndexUnitOfWork

    _uow_check: IndexUnitOfWork = SqlAlchemyIndexUnitOfWork()
