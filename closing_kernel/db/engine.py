"""
Module: closing_kernel.db.engine
Responsibility: build engines and session factories, and provide the
    transactional scope every closing unit of work runs in.
Architecture position: Kernel > DB.  May import from db/base.py and models
    (create_tables/drop_tables need the complete metadata).  Holds no
    module-level engine: the runtime built by closing_config.bridges owns it.

Invariants enforced:
    - PostgreSQL connections run at READ COMMITTED; processors take
      SELECT ... FOR UPDATE on the closing rows they write.
    - SQLite connections may be shared across worker threads and wait up to
      ``pool_timeout`` seconds for the database write lock.
    - Sessions from build_session_factory() do not expire on commit, so the
      DTOs a coordinator builds after commit never trigger a reload.

Failure modes:
    - session_scope() re-raises whatever the unit of work raised after a
      rollback; nothing from that unit is visible to other sessions.

Audit relevance:
    One session_scope() is one committed closing, one recalculated day or
    one recalculated month.  A failure rolls back exactly that unit.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from closing_kernel.db.base import Base
from closing_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def build_engine(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Engine for ``database_url``.

    Args:
        database_url: SQLAlchemy URL, e.g. ``postgresql://closing@db/closing``
            or ``sqlite:///closing.db``.
        echo: Log every SQL statement.
        pool_size: Pooled connections kept open (server databases).
        max_overflow: Extra connections allowed beyond ``pool_size``.
        pool_timeout: Seconds to wait for a pooled connection; for SQLite the
            busy timeout on the database lock.
        pool_recycle: Seconds after which a pooled connection is replaced.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    logger.info(
        "engine_built",
        extra={
            "dialect": engine.dialect.name,
            "database": url.database,
            "pool_size": pool_size,
            "echo": echo,
        },
    )
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Commit on normal exit, roll back and re-raise on error, always close.

    Usage:
        with session_scope(runtime.session_factory) as session:
            DailyClosingService(session, ...).close_day(...)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create every closing table that does not exist yet."""
    import closing_kernel.models  # noqa: F401  (registers all tables)

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    import closing_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"
