import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.core.errors import InternalError, InvalidOperationError, RoomServiceError

settings = get_settings()

logger = logging.getLogger(__name__)

# Seat claims are settled by row-level constraints, so every request needs its
# own connection; keep a warm pool and let bursts overflow.
engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    WebSocket handlers open one of these per lookup instead of holding a
    connection for the whole lifetime of the socket.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def write_transaction(
    db: Session, operation: str, *, conflict_detail: str = "Seat is already taken"
) -> Iterator[Session]:
    """Run a state mutation and its audit record as one commit.

    Domain errors roll back and propagate unchanged. A unique constraint
    violation means a concurrent request claimed the same row first and is
    reported as a conflict; any other database failure is logged and
    surfaced as :class:`InternalError`.
    """
    try:
        yield db
        db.commit()
    except RoomServiceError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.info("Conflicting write during %s: %s", operation, exc.orig)
        raise InvalidOperationError(conflict_detail) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database failure during %s", operation)
        raise InternalError(f"Failed to {operation.replace('_', ' ')}") from exc
