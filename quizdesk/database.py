"""
Database engine, session factory and FastAPI session dependency
"""
import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from quizdesk.config import settings
from quizdesk.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite gets a busy timeout and foreign keys switched on so that local runs
    and tests honour the same cascade rules as PostgreSQL.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 15},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


engine = get_engine(settings.DATABASE_URL)
SessionLocal = get_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """
    Yield a database session for one request and close it afterwards
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def storage_errors(db: Session, action: str) -> Iterator[None]:
    """
    Roll back and surface connection-level failures as a retryable domain error.

    Constraint violations (IntegrityError) are left to the caller, which knows
    which domain conflict they mean.
    """
    try:
        yield
    except OperationalError as e:
        db.rollback()
        logger.error(f"Storage failure while trying to {action}: {str(e)}")
        raise TransientStorageError() from e


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet"""
    # Register every model on Base.metadata before create_all
    import quizdesk.models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Database schema ensured")
