"""SQLAlchemy ORM models shared across the ledger.

Tables:
- books: Lendable items, one row per physical copy
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Book(Base):
    """Book model - a single lendable item."""

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    isbn: Mapped[str] = mapped_column(String(13), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="")

    # Opaque user reference, not validated here
    owner_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utcnow_iso)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utcnow_iso, onupdate=utcnow_iso
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', author='{self.author}')>"
