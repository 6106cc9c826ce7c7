import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from errors import InvalidTransitionError, PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all portal tables."""


def create_db_engine(url: str, **kwargs):
    """Create an engine, allowing SQLite connections to cross FastAPI's threadpool."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=settings.database_echo, **kwargs)


engine = create_db_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db(bind=None):
    """Create all tables on the given engine (defaults to the configured one)."""
    # Register the mapped classes before creating the schema
    import orm  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding one session per request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def transaction(session: Session, operation: str) -> Iterator[Session]:
    """
    Run a read-modify-write sequence as one all-or-nothing unit.

    Commits on success and rolls back on any error. Lost optimistic-lock races
    surface as InvalidTransitionError, other storage failures as PersistenceError.
    """
    try:
        yield session
        session.commit()
    except StaleDataError as e:
        session.rollback()
        logger.warning(f"Concurrent update detected during {operation}: {e}")
        raise InvalidTransitionError(
            "The record was modified concurrently, please retry"
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"Persistence failure during {operation}")
        raise PersistenceError(f"{operation} failed: {e}") from e
    except Exception:
        session.rollback()
        raise
