"""Checkout repository contract.

Handlers depend on this interface; ``CheckoutLedger`` is the database-backed
implementation and ``InMemoryCheckoutRepository`` the unit-test double.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .schemas import Checkout, CreateCheckout, UpdateReturned


class CheckoutRepository(ABC):
    """Lending and returning books, and reading loan history."""

    @abstractmethod
    def create(self, event: CreateCheckout) -> str:
        """Lend a book.

        Returns:
            The new checkout id

        Raises:
            BookNotFoundError: The book does not exist
            CheckoutConflictError: The book is already checked out
        """

    @abstractmethod
    def update_returned(self, event: UpdateReturned) -> None:
        """Close an active checkout, moving it to the returned archive.

        Raises:
            BookNotFoundError: The book does not exist
            CheckoutConflictError: The checkout id and user do not match the
                book's active checkout, or the book is not checked out
        """

    @abstractmethod
    def find_unreturned_all(self) -> list[Checkout]:
        """All active checkouts, oldest first."""

    @abstractmethod
    def find_unreturned_by_user_id(self, user_id: str) -> list[Checkout]:
        """Active checkouts held by one user, oldest first."""

    @abstractmethod
    def find_unreturned_by_book_id(self, book_id: str) -> Optional[Checkout]:
        """The book's active checkout, if it has one."""

    @abstractmethod
    def find_history_by_book_id(self, book_id: str) -> list[Checkout]:
        """Loan history of a book.

        The active checkout, if any, comes first regardless of its timestamp;
        returned checkouts follow, most recently checked out first.
        """
