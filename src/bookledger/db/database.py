"""Database connection, transaction and book operations.

The ``Database`` object owns the SQLAlchemy engine and its connection pool.
One process-wide instance is created by ``init_db()`` at startup and torn
down by ``close_db()``; components receive it as a handle.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import LedgerError, StoreOperationError, TransactionError
from .models import Base, Book
from .schemas import BookCreate

logger = logging.getLogger(__name__)

# SQLSTATE codes PostgreSQL uses for serialization failure and deadlock
SERIALIZATION_FAILURE_CODES = frozenset({"40001", "40P01"})

SQLITE_BUSY_TIMEOUT_MS = 5000


def is_serialization_failure(exc: BaseException) -> bool:
    """Check whether a store error means "retry the whole transaction"."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in SERIALIZATION_FAILURE_CODES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig).lower()


def translate_error(exc: SQLAlchemyError, operation: str) -> LedgerError:
    """Map a SQLAlchemy error raised by a statement to the ledger taxonomy."""
    if is_serialization_failure(exc):
        return TransactionError(
            f"Serialization failure during {operation}",
            retryable=True,
            details={"operation": operation},
        )
    return StoreOperationError(operation, {"error": str(exc)})


class Database:
    """Database connection and operations manager."""

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        """Initialize database connection.

        Args:
            url: SQLAlchemy database URL. If None, uses BOOKLEDGER_DATABASE_URL
                 or the default SQLite file.
            echo: Log every SQL statement. If None, uses BOOKLEDGER_ECHO_SQL.
        """
        config = get_config()
        if url is None:
            url = config.database_url
        if echo is None:
            echo = config.echo_sql

        self.url = make_url(url)
        self._is_sqlite = self.url.get_backend_name() == "sqlite"
        self._is_memory = self._is_sqlite and self.url.database in (None, "", ":memory:")

        if self._is_memory:
            # A single shared connection so every session sees the same database
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        elif self._is_sqlite:
            db_path = Path(self.url.database).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.url = self.url.set(database=str(db_path))
            self.engine = create_engine(
                self.url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(self.url, echo=echo, pool_pre_ping=True)

        if self._is_sqlite:
            self._install_sqlite_hooks()

        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @property
    def db_path(self) -> Optional[Path]:
        """Path of the SQLite database file, if there is one."""
        if self._is_sqlite and not self._is_memory:
            return Path(self.url.database)
        return None

    def _install_sqlite_hooks(self) -> None:
        """Take over BEGIN from pysqlite so serializable transactions lock up front.

        pysqlite only opens a transaction before the first write, which lets
        two connections both read "no active checkout" before either inserts.
        ``BEGIN IMMEDIATE`` takes the write lock at the start instead.
        """

        @event.listens_for(self.engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(self.engine, "begin")
        def _on_begin(conn):
            if conn.get_execution_options().get("isolation_level") == "SERIALIZABLE":
                conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                conn.exec_driver_sql("BEGIN")

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import checkout models to register them with Base
        from ..checkout.models import ActiveCheckout, ReturnedCheckout  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self, serializable: bool = False) -> Generator[Session, None, None]:
        """Run a unit of work in one transaction.

        The transaction commits when the block exits normally and rolls back
        on any exception, which is then re-raised. The session's connection
        goes back to the pool on both paths. Failures to begin or commit are
        raised as ``TransactionError``.

        Args:
            serializable: Run under SERIALIZABLE isolation
        """
        session = self.SessionLocal()
        try:
            try:
                if serializable:
                    session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
                else:
                    session.connection()
            except SQLAlchemyError as e:
                logger.error("Could not begin transaction", exc_info=True)
                raise TransactionError(
                    "Could not begin transaction",
                    retryable=is_serialization_failure(e),
                ) from e

            yield session

            try:
                session.commit()
            except SQLAlchemyError as e:
                retryable = is_serialization_failure(e)
                if retryable:
                    logger.warning("Serialization failure on commit: %s", e.orig)
                else:
                    logger.error("Could not commit transaction", exc_info=True)
                raise TransactionError(
                    "Could not commit transaction", retryable=retryable
                ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Book Operations
    # ========================================================================

    def create_book(self, book: BookCreate, session: Optional[Session] = None) -> Book:
        """Create a new book record."""

        def _create(s: Session) -> Book:
            db_book = Book(
                title=book.title,
                author=book.author,
                isbn=book.isbn,
                description=book.description,
                owner_id=book.owner_id,
            )
            s.add(db_book)
            s.flush()
            return db_book

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                db_book = _create(s)
                s.refresh(db_book)
                s.expunge(db_book)
                return db_book

    def get_book(self, book_id: str, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ID."""

        def _get(s: Session) -> Optional[Book]:
            return s.get(Book, book_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                db_book = _get(s)
                if db_book:
                    s.expunge(db_book)
                return db_book

    def list_books(self, session: Optional[Session] = None) -> list[Book]:
        """Get all books ordered by title."""

        def _get(s: Session) -> list[Book]:
            stmt = select(Book).order_by(Book.title)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                books = _get(s)
                for b in books:
                    s.expunge(b)
                return books


# Global database instance
_db: Optional[Database] = None


def init_db(url: Optional[str] = None, echo: Optional[bool] = None) -> Database:
    """Create the global database instance and its tables.

    Replaces (and disposes) any instance created earlier.
    """
    global _db
    if _db is not None:
        _db.dispose()
    _db = Database(url, echo)
    _db.create_tables()
    logger.info("Database initialised at %s", _db.url.render_as_string(hide_password=True))
    return _db


def get_db() -> Database:
    """Get the global database instance, initialising it on first use."""
    if _db is None:
        return init_db()
    return _db


def close_db() -> None:
    """Dispose the global database instance's connection pool."""
    global _db
    if _db is not None:
        _db.dispose()
        _db = None


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    close_db()
