"""Exception classes for the checkout ledger.

Client errors (the caller can correct the request):
- EntityNotFoundError / BookNotFoundError
- CheckoutConflictError

Internal errors (logged, reported generically):
- NoRowsAffectedError
- TransactionError
- StoreOperationError
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    is_client_error = False

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EntityNotFoundError(LedgerError):
    """Raised when a referenced entity does not exist."""

    is_client_error = True


class BookNotFoundError(EntityNotFoundError):
    """Raised when a book id does not match any book."""

    def __init__(self, book_id: str):
        super().__init__(f"Book not found: {book_id}", {"book_id": book_id})


class CheckoutConflictError(LedgerError):
    """Raised when a checkout or return violates the current loan state."""

    is_client_error = True


class NoRowsAffectedError(LedgerError):
    """Raised when a write statement touched zero rows where one was expected."""

    def __init__(self, operation: str, details: Optional[dict] = None):
        super().__init__(f"No rows affected: {operation}", details)
        self.operation = operation


class TransactionError(LedgerError):
    """Raised when a transaction cannot begin, set its isolation level or commit.

    ``retryable`` is set for serialization failures, which a caller may
    resolve by running the whole operation again.
    """

    def __init__(
        self, message: str, retryable: bool = False, details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.retryable = retryable


class StoreOperationError(LedgerError):
    """Raised when a statement fails inside the store."""

    def __init__(self, operation: str, details: Optional[dict] = None):
        super().__init__(f"Database operation failed: {operation}", details)
        self.operation = operation
