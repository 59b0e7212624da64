"""
Database session management for the library backend.

A ``DatabaseManager`` owns one engine and hands out short-lived sessions.
It is created explicitly (usually from ``LibraryConfig``) and passed to the
dispatcher; there is no process-wide store handle.

Transaction handling:

1. ``session_scope()`` is the only way operations touch the database. It
   commits on success, rolls back on any exception and always closes.
2. SQLite connections start every transaction with ``BEGIN IMMEDIATE`` so
   writers serialize on the database lock; a second writer waits up to
   ``busy_timeout`` seconds instead of failing.
3. Other backends run at READ COMMITTED and rely on ``SELECT ... FOR UPDATE``
   row locks taken by the repositories.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import LibraryConfig
from ..errors import InternalError
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Manages the engine and sessions for one database.

    - Engine creation tuned per backend (SQLite locking, PostgreSQL pooling)
    - Session factory with explicit transactions
    - Schema creation for development and tests
    """

    def __init__(self, database_url: str, busy_timeout: float = 30.0, echo: bool = False):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL
            busy_timeout: Seconds a SQLite writer waits for the lock
            echo: Log emitted SQL
        """
        self.database_url = database_url
        self.busy_timeout = busy_timeout
        self.echo = echo
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @classmethod
    def from_config(cls, config: LibraryConfig) -> "DatabaseManager":
        return cls(
            config.get_database_url(),
            busy_timeout=config.sqlite_busy_timeout,
            echo=config.debug,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.is_sqlite:
                self._engine = self._create_sqlite_engine()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    isolation_level="READ COMMITTED",
                    echo=self.echo,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    def _create_sqlite_engine(self) -> Engine:
        in_memory = self.database_url in ("sqlite://", "sqlite:///:memory:")
        kwargs = {}
        if in_memory:
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool

        engine = create_engine(
            self.database_url,
            connect_args={"check_same_thread": False, "timeout": self.busy_timeout},
            echo=self.echo,
            **kwargs,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            # Hand transaction control to SQLAlchemy so BEGIN below is ours
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new session; callers own closing it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        ```python
        with db.session_scope() as session:
            CirculationRepository(session).issue_book(member_id, barcode)
        # committed here, or rolled back if the block raised
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed")
        except Exception:
            session.rollback()
            logger.debug("Database transaction rolled back")
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the schema.

        Args:
            drop_existing: Drop all tables first
        """
        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=self.engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, converting driver failures into ``InternalError``.

    The original exception is logged in full; callers only see ``error_msg``.
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed: %s", error_msg)
        raise InternalError(error_msg) from e


def safe_flush(session: Session, operation: str) -> None:
    """Flush pending writes, converting driver failures into ``InternalError``."""
    try:
        session.flush()
    except SQLAlchemyError as e:
        logger.exception("Flush failed during '%s'", operation)
        raise InternalError(f"Database operation '{operation}' failed") from e
