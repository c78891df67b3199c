"""In-memory checkout repository for unit tests.

Holds books, active checkouts and returned checkouts in dicts. A single lock
makes each operation atomic, standing in for serializable transactions.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..db.models import generate_uuid
from ..errors import BookNotFoundError, CheckoutConflictError
from .repository import CheckoutRepository
from .schemas import Checkout, CheckoutBook, CreateCheckout, UpdateReturned


@dataclass
class _Loan:
    checkout_id: str
    book_id: str
    user_id: str
    checked_out_at: datetime
    returned_at: Optional[datetime] = None


class InMemoryCheckoutRepository(CheckoutRepository):
    """Checkout repository backed by process memory."""

    def __init__(self, books: Optional[list[CheckoutBook]] = None):
        self._lock = threading.Lock()
        self._books: dict[str, CheckoutBook] = {b.id: b for b in books or []}
        self._active: dict[str, _Loan] = {}  # keyed by book id
        self._returned: list[_Loan] = []

    def create(self, event: CreateCheckout) -> str:
        with self._lock:
            if event.book_id not in self._books:
                raise BookNotFoundError(event.book_id)
            if event.book_id in self._active:
                raise CheckoutConflictError(
                    f"Book {event.book_id} is already checked out",
                    {"book_id": event.book_id},
                )
            checkout_id = generate_uuid()
            self._active[event.book_id] = _Loan(
                checkout_id=checkout_id,
                book_id=event.book_id,
                user_id=event.checked_out_by,
                checked_out_at=event.checked_out_at,
            )
            return checkout_id

    def update_returned(self, event: UpdateReturned) -> None:
        with self._lock:
            if event.book_id not in self._books:
                raise BookNotFoundError(event.book_id)
            loan = self._active.get(event.book_id)
            if loan is None:
                raise CheckoutConflictError(
                    f"Book {event.book_id} is not checked out",
                    {"book_id": event.book_id, "checkout_id": event.checkout_id},
                )
            if (loan.checkout_id, loan.user_id) != (event.checkout_id, event.returned_by):
                raise CheckoutConflictError(
                    f"Cannot return checkout {event.checkout_id} of book "
                    f"{event.book_id} by user {event.returned_by}",
                    {
                        "book_id": event.book_id,
                        "checkout_id": event.checkout_id,
                        "user_id": event.returned_by,
                    },
                )
            del self._active[event.book_id]
            loan.returned_at = event.returned_at
            self._returned.append(loan)

    def find_unreturned_all(self) -> list[Checkout]:
        with self._lock:
            loans = sorted(self._active.values(), key=lambda loan: loan.checked_out_at)
            return [self._view(loan) for loan in loans]

    def find_unreturned_by_user_id(self, user_id: str) -> list[Checkout]:
        with self._lock:
            loans = sorted(
                (loan for loan in self._active.values() if loan.user_id == user_id),
                key=lambda loan: loan.checked_out_at,
            )
            return [self._view(loan) for loan in loans]

    def find_unreturned_by_book_id(self, book_id: str) -> Optional[Checkout]:
        with self._lock:
            loan = self._active.get(book_id)
            return self._view(loan) if loan else None

    def find_history_by_book_id(self, book_id: str) -> list[Checkout]:
        with self._lock:
            returned = sorted(
                (loan for loan in self._returned if loan.book_id == book_id),
                key=lambda loan: loan.checked_out_at,
                reverse=True,
            )
            history = [self._view(loan) for loan in returned]
            current = self._active.get(book_id)
            if current is not None:
                history.insert(0, self._view(current))
            return history

    def _view(self, loan: _Loan) -> Checkout:
        return Checkout(
            id=loan.checkout_id,
            checked_out_by=loan.user_id,
            checked_out_at=loan.checked_out_at,
            returned_at=loan.returned_at,
            book=self._books[loan.book_id],
        )
