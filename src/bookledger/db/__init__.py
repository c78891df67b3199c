"""Database module: engine, transactions and the books table."""

from .database import Database, close_db, get_db, init_db, reset_db
from .models import Base, Book
from .schemas import BookCreate

__all__ = [
    "Base",
    "Book",
    "BookCreate",
    "Database",
    "init_db",
    "get_db",
    "close_db",
    "reset_db",
]
