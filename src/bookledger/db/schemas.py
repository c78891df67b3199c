"""Pydantic schemas for book records."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class BookCreate(BaseModel):
    """Schema for creating a book."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=500)
    isbn: str = Field(..., min_length=1, max_length=13)
    description: str = ""
    owner_id: Optional[str] = None

    @field_validator("isbn", mode="before")
    @classmethod
    def clean_isbn(cls, v):
        """Strip hyphens and spaces from ISBN."""
        if not isinstance(v, str):
            return v
        cleaned = v.replace("-", "").replace(" ", "")
        if not cleaned:
            raise ValueError("isbn must not be blank")
        return cleaned
