from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import DomainError, PersistenceError
from app.db.base import Base

log = logging.getLogger(__name__)


class Database:
    """Engine + session factory for one process.

    Built by the app factory (or a worker job) and disposed on shutdown, so
    nothing connects at import time.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, autoflush=False)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "Database":
        return cls(create_engine(url, echo=echo, pool_pre_ping=True))

    def session(self) -> Session:
        return self.session_factory()

    def create_all(self) -> None:
        # Registers every model on Base.metadata.
        import app.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, action: str) -> Iterator[Session]:
    """Roll back on any failure; storage errors surface as PersistenceError."""
    try:
        yield db
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("persistence failure during %s", action)
        raise PersistenceError(f"{action} failed") from e
