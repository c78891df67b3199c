"""Pytest configuration and shared fixtures.

This module provides fixtures for testing bookledger, including temporary
databases, a ledger bound to them, and sample books.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from bookledger.checkout import CheckoutLedger, InMemoryCheckoutRepository
from bookledger.checkout.schemas import CheckoutBook
from bookledger.config import reset_config
from bookledger.db import BookCreate, Database, reset_db


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="function")
def db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed test database instance."""
    reset_db()
    reset_config()

    database = Database(f"sqlite:///{temp_db_path}")
    database.create_tables()
    yield database

    database.dispose()
    reset_db()


@pytest.fixture
def ledger(db: Database) -> CheckoutLedger:
    """Create a CheckoutLedger on the test database."""
    return CheckoutLedger(db)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


SAMPLE_BOOKS = [
    BookCreate(
        title="Dune",
        author="Frank Herbert",
        isbn="9780441172719",
        description="Desert planet.",
        owner_id="owner-1",
    ),
    BookCreate(
        title="The Great Gatsby",
        author="F. Scott Fitzgerald",
        isbn="9780743273565",
        owner_id="owner-1",
    ),
    BookCreate(
        title="Project Hail Mary",
        author="Andy Weir",
        isbn="9780593135204",
        owner_id="owner-2",
    ),
]


@pytest.fixture
def book_ids(db: Database) -> list[str]:
    """Create the sample books and return their ids."""
    return [db.create_book(data).id for data in SAMPLE_BOOKS]


@pytest.fixture
def memory_repo() -> InMemoryCheckoutRepository:
    """In-memory repository seeded with the sample books."""
    return InMemoryCheckoutRepository(
        [
            CheckoutBook(id=f"book-{i}", title=b.title, author=b.author, isbn=b.isbn)
            for i, b in enumerate(SAMPLE_BOOKS)
        ]
    )


@pytest.fixture
def base_time() -> datetime:
    """A fixed, timezone-aware starting point for checkout timestamps."""
    return datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def at(base_time: datetime):
    """Timestamp helper: at(days) is base_time shifted by that many days."""

    def _at(days: float) -> datetime:
        return base_time + timedelta(days=days)

    return _at


# ============================================================================
# CLI Testing Fixtures
# ============================================================================


@pytest.fixture
def cli_env(temp_db_path: Path) -> Generator[Path, None, None]:
    """Point the CLI at a temporary database through the environment."""
    reset_db()
    reset_config()
    os.environ["BOOKLEDGER_DATABASE_URL"] = f"sqlite:///{temp_db_path}"

    yield temp_db_path

    reset_db()
    reset_config()
    del os.environ["BOOKLEDGER_DATABASE_URL"]


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
