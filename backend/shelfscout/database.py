import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from shelfscout.core.config import settings

logger = logging.getLogger(__name__)

logger.info("Shelfscout database: %s", settings.get_masked_database_url())

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def attach_slow_query_logging(target_engine, threshold_ms: float) -> None:
    """Warn about statements slower than threshold_ms (enabled in DEBUG)."""

    @event.listens_for(target_engine, "before_cursor_execute")
    def _before(conn, cursor, statement, parameters, context, executemany):
        context._shelfscout_started = time.perf_counter()

    @event.listens_for(target_engine, "after_cursor_execute")
    def _after(conn, cursor, statement, parameters, context, executemany):
        started = getattr(context, "_shelfscout_started", None)
        if started is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms >= threshold_ms:
            logger.warning(f"SLOW_QUERY: {elapsed_ms:.2f}ms - {statement.splitlines()[0].strip()[:100]}")


if settings.DEBUG:
    attach_slow_query_logging(engine, settings.SLOW_QUERY_THRESHOLD_MS)


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Create missing tables for local SQLite databases.

    Other databases are managed with `alembic upgrade head`; create_all never
    alters existing tables, so it is only a development shortcut.
    """
    if not IS_SQLITE:
        logger.info("Skipping create_all for %s; run Alembic migrations instead", engine.dialect.name)
        return

    from shelfscout import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)
