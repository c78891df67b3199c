"""SQLAlchemy models for checkouts.

Tables:
- checkouts: Active loans, at most one per book
- returned_checkouts: Closed loans, append-only
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base


class ActiveCheckout(Base):
    """A book currently lent out."""

    __tablename__ = "checkouts"

    checkout_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("books.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    checked_out_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<ActiveCheckout(id={self.checkout_id}, book_id={self.book_id}, user_id={self.user_id})>"


class ReturnedCheckout(Base):
    """A closed loan. Written once by a return, never updated."""

    __tablename__ = "returned_checkouts"

    checkout_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("books.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    checked_out_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ReturnedCheckout(id={self.checkout_id}, book_id={self.book_id}, returned_at={self.returned_at})>"
