"""Tests for the database-backed CheckoutLedger."""

import threading

import pytest
from sqlalchemy import func, select

from bookledger.checkout import CheckoutLedger, CreateCheckout, UpdateReturned
from bookledger.checkout.models import ActiveCheckout, ReturnedCheckout
from bookledger.db import Database
from bookledger.errors import (
    CheckoutConflictError,
    NoRowsAffectedError,
    StoreOperationError,
    TransactionError,
)


def count_rows(db: Database, model, checkout_id: str) -> int:
    with db.get_session() as session:
        stmt = select(func.count()).select_from(model).where(model.checkout_id == checkout_id)
        return session.execute(stmt).scalar_one()


def total_rows(db: Database, model) -> int:
    with db.get_session() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


class NoRows:
    rowcount = 0


def lose_write(lost_operation: str):
    """Replacement for CheckoutLedger._write that reports zero rows for one operation."""
    original_write = CheckoutLedger._write

    def write(self, session, stmt, operation, cid, **kwargs):
        result = original_write(self, session, stmt, operation, cid, **kwargs)
        if operation == lost_operation:
            return NoRows()
        return result

    return write


class TestMoveOnReturn:
    """A return moves the row from checkouts to returned_checkouts."""

    def test_return_moves_row(self, db, ledger, book_ids, at):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
        )
        assert count_rows(db, ActiveCheckout, checkout_id) == 1
        assert count_rows(db, ReturnedCheckout, checkout_id) == 0

        ledger.update_returned(
            UpdateReturned(
                checkout_id=checkout_id,
                book_id=book_ids[0],
                returned_by="alice",
                returned_at=at(2),
            )
        )

        assert count_rows(db, ActiveCheckout, checkout_id) == 0
        assert count_rows(db, ReturnedCheckout, checkout_id) == 1

    def test_archived_row_copies_checkout(self, db, ledger, book_ids, at):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[1], checked_out_by="bob", checked_out_at=at(1))
        )
        ledger.update_returned(
            UpdateReturned(
                checkout_id=checkout_id,
                book_id=book_ids[1],
                returned_by="bob",
                returned_at=at(4),
            )
        )

        with db.get_session() as session:
            row = session.get(ReturnedCheckout, checkout_id)
            assert row.book_id == book_ids[1]
            assert row.user_id == "bob"
            assert row.checked_out_at.replace(tzinfo=None) == at(1).replace(tzinfo=None)
            assert row.returned_at.replace(tzinfo=None) == at(4).replace(tzinfo=None)

    def test_failed_delete_rolls_back_archive(self, db, ledger, book_ids, at, monkeypatch):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
        )
        monkeypatch.setattr(CheckoutLedger, "_write", lose_write("delete checkout"))

        with pytest.raises(NoRowsAffectedError) as exc_info:
            ledger.update_returned(
                UpdateReturned(
                    checkout_id=checkout_id,
                    book_id=book_ids[0],
                    returned_by="alice",
                    returned_at=at(1),
                )
            )

        assert exc_info.value.operation == "delete checkout"
        assert exc_info.value.details["checkout_id"] == checkout_id
        assert not exc_info.value.is_client_error
        # Neither the archive insert nor the delete survived
        assert count_rows(db, ActiveCheckout, checkout_id) == 1
        assert count_rows(db, ReturnedCheckout, checkout_id) == 0

    def test_failed_archive_keeps_active_row(self, db, ledger, book_ids, at, monkeypatch):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
        )
        monkeypatch.setattr(CheckoutLedger, "_write", lose_write("archive checkout"))

        with pytest.raises(NoRowsAffectedError) as exc_info:
            ledger.update_returned(
                UpdateReturned(
                    checkout_id=checkout_id,
                    book_id=book_ids[0],
                    returned_by="alice",
                    returned_at=at(1),
                )
            )

        assert exc_info.value.operation == "archive checkout"
        assert exc_info.value.details["checkout_id"] == checkout_id
        assert count_rows(db, ActiveCheckout, checkout_id) == 1
        assert count_rows(db, ReturnedCheckout, checkout_id) == 0

    def test_conflict_leaves_tables_untouched(self, db, ledger, book_ids, at):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
        )

        with pytest.raises(CheckoutConflictError):
            ledger.update_returned(
                UpdateReturned(
                    checkout_id=checkout_id,
                    book_id=book_ids[0],
                    returned_by="mallory",
                    returned_at=at(1),
                )
            )

        assert count_rows(db, ActiveCheckout, checkout_id) == 1
        assert count_rows(db, ReturnedCheckout, checkout_id) == 0


class TestCreateGuard:
    """A checkout insert that writes nothing is rolled back."""

    def test_failed_insert_leaves_no_checkout(self, db, ledger, book_ids, at, monkeypatch):
        monkeypatch.setattr(CheckoutLedger, "_write", lose_write("insert checkout"))

        with pytest.raises(NoRowsAffectedError) as exc_info:
            ledger.create(
                CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
            )

        assert exc_info.value.operation == "insert checkout"
        assert exc_info.value.details["book_id"] == book_ids[0]
        assert total_rows(db, ActiveCheckout) == 0
        assert total_rows(db, ReturnedCheckout) == 0


class TestConcurrency:
    """Concurrent checkouts of one book through separate connections."""

    def test_concurrent_creates_have_one_winner(self, db, book_ids, at):
        attempts = 6
        barrier = threading.Barrier(attempts)
        winners: list[str] = []
        losers: list[Exception] = []
        lock = threading.Lock()

        def borrow(user: str) -> None:
            ledger = CheckoutLedger(db)
            barrier.wait()
            try:
                checkout_id = ledger.create(
                    CreateCheckout(book_id=book_ids[0], checked_out_by=user, checked_out_at=at(0))
                )
            except (CheckoutConflictError, TransactionError) as e:
                with lock:
                    losers.append(e)
            else:
                with lock:
                    winners.append(checkout_id)

        threads = [threading.Thread(target=borrow, args=(f"user-{i}",)) for i in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == attempts - 1

        active = CheckoutLedger(db).find_unreturned_all()
        assert [c.id for c in active] == winners


class TestStoreErrors:
    """Store failures are mapped to the ledger's error types."""

    def test_missing_tables_is_store_error(self, db, ledger):
        db.drop_tables()

        with pytest.raises(StoreOperationError) as exc_info:
            ledger.find_unreturned_all()

        assert exc_info.value.operation == "list active checkouts"
        assert exc_info.value.__cause__ is not None

    def test_store_error_during_create(self, db, ledger, book_ids, at):
        ActiveCheckout.__table__.drop(db.engine)

        with pytest.raises(StoreOperationError) as exc_info:
            ledger.create(
                CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
            )

        assert exc_info.value.details["book_id"] == book_ids[0]

    def test_store_error_during_return(self, db, ledger, book_ids, at):
        checkout_id = ledger.create(
            CreateCheckout(book_id=book_ids[0], checked_out_by="alice", checked_out_at=at(0))
        )
        ReturnedCheckout.__table__.drop(db.engine)

        with pytest.raises(StoreOperationError) as exc_info:
            ledger.update_returned(
                UpdateReturned(
                    checkout_id=checkout_id,
                    book_id=book_ids[0],
                    returned_by="alice",
                    returned_at=at(1),
                )
            )

        assert exc_info.value.operation == "archive checkout"
        assert exc_info.value.details["checkout_id"] == checkout_id
        assert count_rows(db, ActiveCheckout, checkout_id) == 1
