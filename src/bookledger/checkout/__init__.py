"""Book checkout ledger.

Provides functionality for:
- Lending a book to a user, one active checkout per book
- Returning a book, archiving the checkout
- Listing active checkouts and per-book history
"""

from .ledger import CheckoutLedger
from .memory import InMemoryCheckoutRepository
from .models import ActiveCheckout, ReturnedCheckout
from .repository import CheckoutRepository
from .retry import retry_on_conflict
from .schemas import Checkout, CheckoutBook, CreateCheckout, UpdateReturned

__all__ = [
    "CheckoutLedger",
    "CheckoutRepository",
    "InMemoryCheckoutRepository",
    "ActiveCheckout",
    "ReturnedCheckout",
    "Checkout",
    "CheckoutBook",
    "CreateCheckout",
    "UpdateReturned",
    "retry_on_conflict",
]
