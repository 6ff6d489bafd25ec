import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from dairyx.core.config import settings
from dairyx.core.errors import DomainError, InternalError, translate_integrity_error

logger = logging.getLogger(__name__)


def build_engine(database_uri: str, echo: bool = False) -> AsyncEngine:
    """Async engine; SQLite connections get foreign keys and a busy timeout"""
    new_engine = create_async_engine(database_uri, echo=echo, future=True)

    if database_uri.startswith("sqlite"):
        @event.listens_for(new_engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return new_engine


def build_sessionmaker(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.DATABASE_URI, echo=settings.SQL_ECHO)

SessionLocal = build_sessionmaker(engine)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    One logical operation = one transaction.

    Commits when the block exits cleanly. On any error the whole block is
    rolled back and storage errors are translated into domain errors, so
    callers never see a half-applied operation or a raw driver message.
    """
    try:
        yield db
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Constraint violation rolled back: {e.orig}")
        raise translate_integrity_error(e) from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Storage failure rolled back: {e}")
        raise InternalError("Database error") from e
    except BaseException:
        await db.rollback()
        raise
