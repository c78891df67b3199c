"""Pydantic schemas for checkout events and views."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    SQLite hands back naive values for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreateCheckout(BaseModel):
    """Request to lend a book to a user."""

    book_id: str = Field(..., min_length=1)
    checked_out_by: str = Field(..., min_length=1)
    checked_out_at: datetime = Field(default_factory=utcnow)

    @field_validator("checked_out_at")
    @classmethod
    def normalize_checked_out_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class UpdateReturned(BaseModel):
    """Request to close an active checkout."""

    checkout_id: str = Field(..., min_length=1)
    book_id: str = Field(..., min_length=1)
    returned_by: str = Field(..., min_length=1)
    returned_at: datetime = Field(default_factory=utcnow)

    @field_validator("returned_at")
    @classmethod
    def normalize_returned_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CheckoutBook(BaseModel):
    """Descriptive fields of the lent book."""

    id: str
    title: str
    author: str
    isbn: str

    model_config = {"from_attributes": True}


class Checkout(BaseModel):
    """A loan joined with its book, active or returned."""

    id: str
    checked_out_by: str
    checked_out_at: datetime
    returned_at: Optional[datetime] = None
    book: CheckoutBook

    @field_validator("checked_out_at", "returned_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_returned(self) -> bool:
        return self.returned_at is not None
