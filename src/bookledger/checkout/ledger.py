"""Database-backed checkout ledger.

Checkouts live in two tables: ``checkouts`` holds active loans (one per book
at most) and ``returned_checkouts`` is the append-only archive. Returning a
book moves its row from the first table to the second in one transaction.

Both writes run under SERIALIZABLE isolation so the "is it checked out?"
check and the write that depends on it form a single isolated unit. The
ledger never retries; a serialization failure surfaces as a retryable
``TransactionError`` for the caller to act on.
"""

import logging
from typing import Optional

from sqlalchemy import DateTime, delete, insert, literal, select
from sqlalchemy.engine import CursorResult, Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.database import Database, translate_error
from ..db.models import Book, generate_uuid
from ..errors import BookNotFoundError, CheckoutConflictError, NoRowsAffectedError
from .models import ActiveCheckout, ReturnedCheckout
from .repository import CheckoutRepository
from .schemas import Checkout, CheckoutBook, CreateCheckout, UpdateReturned

logger = logging.getLogger(__name__)


def _book_view(book: Book) -> CheckoutBook:
    return CheckoutBook.model_validate(book)


def _active_view(loan: ActiveCheckout, book: Book) -> Checkout:
    return Checkout(
        id=loan.checkout_id,
        checked_out_by=loan.user_id,
        checked_out_at=loan.checked_out_at,
        book=_book_view(book),
    )


def _returned_view(loan: ReturnedCheckout, book: Book) -> Checkout:
    return Checkout(
        id=loan.checkout_id,
        checked_out_by=loan.user_id,
        checked_out_at=loan.checked_out_at,
        returned_at=loan.returned_at,
        book=_book_view(book),
    )


class CheckoutLedger(CheckoutRepository):
    """Checkout repository over a relational store."""

    def __init__(self, db: Database):
        """Initialize the ledger.

        Args:
            db: Database handle, owned by the caller
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, event: CreateCheckout) -> str:
        """Check a book out to a user.

        Args:
            event: Book, borrower and checkout time

        Returns:
            ID of the new checkout

        Raises:
            BookNotFoundError: The book does not exist
            CheckoutConflictError: The book is already checked out
            NoRowsAffectedError: The insert wrote nothing
        """
        with self.db.transaction(serializable=True) as session:
            state = self._checkout_state(session, event.book_id)
            if state is None:
                raise BookNotFoundError(event.book_id)
            if state.checkout_id is not None:
                raise CheckoutConflictError(
                    f"Book {event.book_id} is already checked out",
                    {"book_id": event.book_id},
                )

            checkout_id = generate_uuid()
            stmt = insert(ActiveCheckout).values(
                checkout_id=checkout_id,
                book_id=event.book_id,
                user_id=event.checked_out_by,
                checked_out_at=event.checked_out_at,
            )
            # checkouts.book_id is unique; another transaction got there first
            taken = CheckoutConflictError(
                f"Book {event.book_id} is already checked out",
                {"book_id": event.book_id},
            )
            result = self._write(session, stmt, "insert checkout", checkout_id, conflict=taken)

            self._expect_rows(
                result.rowcount,
                "insert checkout",
                checkout_id=checkout_id,
                book_id=event.book_id,
                user_id=event.checked_out_by,
            )

        logger.info(
            "Book %s checked out by %s (checkout %s)",
            event.book_id,
            event.checked_out_by,
            checkout_id,
        )
        return checkout_id

    def update_returned(self, event: UpdateReturned) -> None:
        """Return a checked-out book, moving its checkout to the archive.

        Args:
            event: Checkout, book, returning user and return time

        Raises:
            BookNotFoundError: The book does not exist
            CheckoutConflictError: The book is not checked out, or not under
                this checkout by this user
            NoRowsAffectedError: The archive insert or the delete wrote nothing
        """
        with self.db.transaction(serializable=True) as session:
            state = self._checkout_state(session, event.book_id)
            if state is None:
                raise BookNotFoundError(event.book_id)
            if state.checkout_id is None:
                raise CheckoutConflictError(
                    f"Book {event.book_id} is not checked out",
                    {"book_id": event.book_id, "checkout_id": event.checkout_id},
                )
            if (state.checkout_id, state.user_id) != (event.checkout_id, event.returned_by):
                raise CheckoutConflictError(
                    f"Cannot return checkout {event.checkout_id} of book "
                    f"{event.book_id} by user {event.returned_by}",
                    {
                        "book_id": event.book_id,
                        "checkout_id": event.checkout_id,
                        "user_id": event.returned_by,
                    },
                )

            active = ActiveCheckout.__table__
            archive = insert(ReturnedCheckout.__table__).from_select(
                ["checkout_id", "book_id", "user_id", "checked_out_at", "returned_at"],
                select(
                    active.c.checkout_id,
                    active.c.book_id,
                    active.c.user_id,
                    active.c.checked_out_at,
                    literal(event.returned_at, DateTime(timezone=True)),
                ).where(active.c.checkout_id == event.checkout_id),
            )
            result = self._write(session, archive, "archive checkout", event.checkout_id)
            self._expect_rows(
                result.rowcount,
                "archive checkout",
                checkout_id=event.checkout_id,
                book_id=event.book_id,
            )

            remove = delete(ActiveCheckout).where(
                ActiveCheckout.checkout_id == event.checkout_id
            )
            result = self._write(session, remove, "delete checkout", event.checkout_id)
            self._expect_rows(
                result.rowcount,
                "delete checkout",
                checkout_id=event.checkout_id,
                book_id=event.book_id,
            )

        logger.info(
            "Book %s returned by %s (checkout %s)",
            event.book_id,
            event.returned_by,
            event.checkout_id,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_unreturned_all(self) -> list[Checkout]:
        """Get every active checkout, oldest first."""
        stmt = (
            select(ActiveCheckout, Book)
            .join(Book, Book.id == ActiveCheckout.book_id)
            .order_by(ActiveCheckout.checked_out_at.asc())
        )
        with self.db.transaction() as session:
            rows = self._fetch(session, stmt, "list active checkouts")
            return [_active_view(loan, book) for loan, book in rows]

    def find_unreturned_by_user_id(self, user_id: str) -> list[Checkout]:
        """Get a user's active checkouts, oldest first.

        Args:
            user_id: Borrowing user

        Returns:
            List of checkouts, empty if the user has none
        """
        stmt = (
            select(ActiveCheckout, Book)
            .join(Book, Book.id == ActiveCheckout.book_id)
            .where(ActiveCheckout.user_id == user_id)
            .order_by(ActiveCheckout.checked_out_at.asc())
        )
        with self.db.transaction() as session:
            rows = self._fetch(session, stmt, "list active checkouts by user")
            return [_active_view(loan, book) for loan, book in rows]

    def find_unreturned_by_book_id(self, book_id: str) -> Optional[Checkout]:
        """Get the active checkout of a book, or None."""
        with self.db.transaction() as session:
            return self._active_for_book(session, book_id)

    def find_history_by_book_id(self, book_id: str) -> list[Checkout]:
        """Get a book's checkouts: the active one first, then returned ones newest first.

        Args:
            book_id: Book ID

        Returns:
            List of checkouts, empty for an unknown or never-lent book
        """
        stmt = (
            select(ReturnedCheckout, Book)
            .join(Book, Book.id == ReturnedCheckout.book_id)
            .where(ReturnedCheckout.book_id == book_id)
            .order_by(ReturnedCheckout.checked_out_at.desc())
        )
        with self.db.transaction() as session:
            current = self._active_for_book(session, book_id)
            rows = self._fetch(session, stmt, "list returned checkouts by book")
            history = [_returned_view(loan, book) for loan, book in rows]

        # The active checkout always leads, whatever its timestamp
        if current is not None:
            history.insert(0, current)
        return history

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _checkout_state(self, session: Session, book_id: str) -> Optional[Row]:
        """Book id with its active checkout id and user, or None if no such book."""
        stmt = (
            select(Book.id, ActiveCheckout.checkout_id, ActiveCheckout.user_id)
            .outerjoin(ActiveCheckout, ActiveCheckout.book_id == Book.id)
            .where(Book.id == book_id)
        )
        try:
            return session.execute(stmt).one_or_none()
        except SQLAlchemyError as e:
            raise self._store_error(e, "read checkout state", book_id=book_id) from e

    def _active_for_book(self, session: Session, book_id: str) -> Optional[Checkout]:
        """Active checkout of a book within an open session."""
        stmt = (
            select(ActiveCheckout, Book)
            .join(Book, Book.id == ActiveCheckout.book_id)
            .where(ActiveCheckout.book_id == book_id)
        )
        rows = self._fetch(session, stmt, "read active checkout by book")
        if not rows:
            return None
        loan, book = rows[0]
        return _active_view(loan, book)

    def _fetch(self, session: Session, stmt, operation: str) -> list[Row]:
        """Run a query and return all rows."""
        try:
            return list(session.execute(stmt).all())
        except SQLAlchemyError as e:
            raise self._store_error(e, operation) from e

    def _write(
        self,
        session: Session,
        stmt,
        operation: str,
        checkout_id: str,
        conflict: Optional[CheckoutConflictError] = None,
    ) -> CursorResult:
        """Execute a write statement, mapping store errors.

        A constraint violation is raised as ``conflict`` when one is given.
        """
        try:
            return session.execute(stmt)
        except IntegrityError as e:
            if conflict is None:
                raise self._store_error(e, operation, checkout_id=checkout_id) from e
            raise conflict from e
        except SQLAlchemyError as e:
            raise self._store_error(e, operation, checkout_id=checkout_id) from e

    @staticmethod
    def _store_error(exc: SQLAlchemyError, operation: str, **context):
        """Translate and log a store error; the caller raises it."""
        error = translate_error(exc, operation)
        error.details.update(context)
        if getattr(error, "retryable", False):
            logger.warning("Serialization failure during %s: %s", operation, context)
        else:
            logger.error("Store error during %s: %s", operation, context, exc_info=exc)
        return error

    @staticmethod
    def _expect_rows(rowcount: int, operation: str, **context) -> None:
        """Raise NoRowsAffectedError unless a write touched at least one row."""
        if rowcount < 1:
            logger.error("No rows affected by %s: %s", operation, context)
            raise NoRowsAffectedError(operation, context)
