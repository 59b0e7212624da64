"""
Catalog models.

- Book: bibliographic record
- BookCopy: one barcoded physical item of a book
- Location: shelving location a copy can be assigned to
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from ..database.schema import CopyStatusEnum as CopyStatus


class Location(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    location_name: str
    description: str | None = None


class Book(BaseModel):
    """A title in the catalog."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    isbn: str
    title: str
    subtitle: str | None = None
    publisher: str | None = None
    publication_year: int | None = None
    language: str | None = None
    edition: str | None = None
    description: str | None = None
    created_at: datetime


class BookCopy(BaseModel):
    """A physical copy, trackable by barcode."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    barcode: str
    status: CopyStatus
    location_id: int | None = None
    acquisition_date: date | None = None
    condition_notes: str | None = None


class CopyDetails(BookCopy):
    """A copy joined with its book and location, as shown at the desk."""

    title: str
    isbn: str
    location_name: str | None = None


class StockStatus(BaseModel):
    book_id: int
    isbn: str
    title: str
    total_copies: int
    available_copies: int
    is_out_of_stock: bool


class BookDetails(Book):
    """A book with inventory counts."""

    total_copies: int = Field(default=0, ge=0)
    available_copies: int = Field(default=0, ge=0)


__all__ = ["Book", "BookCopy", "BookDetails", "CopyDetails", "CopyStatus", "Location", "StockStatus"]
