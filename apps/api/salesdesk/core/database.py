from __future__ import annotations

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from salesdesk.core.config import get_settings
from salesdesk.core.errors import OperationFailedError


logger = logging.getLogger("salesdesk.db")


class Base(DeclarativeBase):
    pass


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    return create_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)


SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal(bind=get_engine())
    try:
        yield session
    finally:
        session.close()


@contextmanager
def atomic(session: Session, operation: str) -> Iterator[None]:
    """Commit everything done inside the block, or roll all of it back.

    Database failures surface as ``OperationFailedError``; any other exception
    is re-raised unchanged after the rollback.
    """

    try:
        yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("transaction_rolled_back", extra={"action": operation, "error": str(exc)})
        raise OperationFailedError(f"{operation} failed; no changes were saved") from exc
    except Exception:
        session.rollback()
        raise
