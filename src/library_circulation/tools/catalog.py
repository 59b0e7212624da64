"""Catalog Tools - Books, Copies and Locations

Tools:
- catalog.add_book / update_book / delete_book: bibliographic records (admin)
- catalog.add_copy / delete_copy / set_copy_status / set_copy_location: inventory (admin)
- catalog.mark_copy_available: return a copy from repair or reservation to the shelf (staff)
- catalog.search_books / get_book / available_copies: browsing (all roles)
- catalog.scan_barcode / get_copy / list_copies / stock_status: desk lookups (staff)
- catalog.add_location / list_locations: shelving locations (admin, staff)
"""

from pydantic import BaseModel, Field

from ..database.catalog_repository import (
    BookCreateSchema,
    BookRepository,
    BookUpdateSchema,
    CopyCreateSchema,
    CopyRepository,
    LocationCreateSchema,
    LocationRepository,
)
from ..database.repository import PaginationParams
from ..dispatcher import ADMIN, ANY_ROLE, STAFF, OperationContext, OperationRegistry, OperationResult
from ..models.catalog import CopyStatus

registry = OperationRegistry()


class BookIdInput(BaseModel):
    book_id: int = Field(..., description="Catalog id of the book")


class UpdateBookInput(BookUpdateSchema):
    book_id: int


class CopyIdInput(BaseModel):
    copy_id: int


class SetCopyStatusInput(BaseModel):
    copy_id: int
    status: CopyStatus = Field(..., description="AVAILABLE, RESERVED, MAINTENANCE or LOST")


class SetCopyLocationInput(BaseModel):
    copy_id: int
    location_id: int | None = Field(None, description="Omit or null to clear the location")


class SearchBooksInput(PaginationParams):
    query: str | None = Field(None, description="Matches title, subtitle, publisher or ISBN")


class BarcodeInput(BaseModel):
    barcode: str = Field(..., min_length=1, examples=["BC-000123"])


class ListCopiesInput(BaseModel):
    book_id: int
    status: CopyStatus | None = None


class StockStatusInput(PaginationParams):
    search: str | None = None
    out_of_stock_only: bool = False


@registry.operation("catalog.add_book", BookCreateSchema, roles=ADMIN, status=201)
def add_book(ctx: OperationContext, params: BookCreateSchema) -> OperationResult:
    """Add a book to the catalog."""
    return OperationResult("Book added successfully", BookRepository(ctx.session).create(params))


@registry.operation("catalog.update_book", UpdateBookInput, roles=ADMIN)
def update_book(ctx: OperationContext, params: UpdateBookInput) -> OperationResult:
    """Edit a book's bibliographic fields."""
    changes = BookUpdateSchema.model_validate(params.model_dump(exclude={"book_id"}, exclude_unset=True))
    book = BookRepository(ctx.session).update(params.book_id, changes)
    return OperationResult("Book updated successfully", book)


@registry.operation("catalog.delete_book", BookIdInput, roles=ADMIN)
def delete_book(ctx: OperationContext, params: BookIdInput) -> OperationResult:
    """Delete a book and its copies (refused once any copy has been loaned)."""
    BookRepository(ctx.session).delete(params.book_id)
    return OperationResult("Book deleted successfully", {"book_id": params.book_id})


@registry.operation("catalog.add_copy", CopyCreateSchema, roles=ADMIN, status=201)
def add_copy(ctx: OperationContext, params: CopyCreateSchema) -> OperationResult:
    """Add a barcoded copy of a book."""
    return OperationResult("Book copy added successfully", CopyRepository(ctx.session).create(params))


@registry.operation("catalog.delete_copy", CopyIdInput, roles=ADMIN)
def delete_copy(ctx: OperationContext, params: CopyIdInput) -> OperationResult:
    """Delete a copy that has never been loaned."""
    CopyRepository(ctx.session).delete(params.copy_id)
    return OperationResult("Book copy deleted successfully", {"copy_id": params.copy_id})


@registry.operation("catalog.set_copy_status", SetCopyStatusInput, roles=ADMIN)
def set_copy_status(ctx: OperationContext, params: SetCopyStatusInput) -> OperationResult:
    """Move a copy among AVAILABLE, RESERVED, MAINTENANCE and LOST."""
    copy = CopyRepository(ctx.session).set_status(params.copy_id, params.status)
    return OperationResult("Copy status updated", copy)


@registry.operation("catalog.mark_copy_available", CopyIdInput, roles=STAFF)
def mark_copy_available(ctx: OperationContext, params: CopyIdInput) -> OperationResult:
    """Put a copy that is not on loan back on the shelf."""
    copy = CopyRepository(ctx.session).set_status(params.copy_id, CopyStatus.AVAILABLE)
    return OperationResult("Copy marked as available", copy)


@registry.operation("catalog.set_copy_location", SetCopyLocationInput, roles=ADMIN)
def set_copy_location(ctx: OperationContext, params: SetCopyLocationInput) -> OperationResult:
    """Assign a copy to a shelving location."""
    copy = CopyRepository(ctx.session).set_location(params.copy_id, params.location_id)
    return OperationResult("Copy location updated", copy)


@registry.operation("catalog.search_books", SearchBooksInput, roles=ANY_ROLE)
def search_books(ctx: OperationContext, params: SearchBooksInput) -> OperationResult:
    """Browse or search the catalog."""
    page = BookRepository(ctx.session).search(
        params.query, PaginationParams(limit=params.limit, offset=params.offset)
    )
    return OperationResult("Books retrieved", page)


@registry.operation("catalog.get_book", BookIdInput, roles=ANY_ROLE)
def get_book(ctx: OperationContext, params: BookIdInput) -> OperationResult:
    """Book details with total and available copy counts."""
    return OperationResult("Book details retrieved", BookRepository(ctx.session).get_details(params.book_id))


@registry.operation("catalog.available_copies", BookIdInput, roles=ANY_ROLE)
def available_copies(ctx: OperationContext, params: BookIdInput) -> OperationResult:
    """Copies of a book that can be issued right now."""
    copies = CopyRepository(ctx.session).available_for_book(params.book_id)
    return OperationResult("Available copies retrieved", copies)


@registry.operation("catalog.scan_barcode", BarcodeInput, roles=STAFF)
def scan_barcode(ctx: OperationContext, params: BarcodeInput) -> OperationResult:
    """Resolve a scanned barcode to its copy, book and location."""
    return OperationResult("Barcode scanned", CopyRepository(ctx.session).scan(params.barcode.strip()))


@registry.operation("catalog.get_copy", CopyIdInput, roles=STAFF)
def get_copy(ctx: OperationContext, params: CopyIdInput) -> OperationResult:
    """Status of one copy."""
    return OperationResult("Book copy retrieved", CopyRepository(ctx.session).get_details(params.copy_id))


@registry.operation("catalog.list_copies", ListCopiesInput, roles=STAFF)
def list_copies(ctx: OperationContext, params: ListCopiesInput) -> OperationResult:
    """All copies of a book, optionally filtered by status."""
    copies = CopyRepository(ctx.session).list_for_book(params.book_id, params.status)
    return OperationResult("Book copies retrieved", copies)


@registry.operation("catalog.stock_status", StockStatusInput, roles=STAFF)
def stock_status(ctx: OperationContext, params: StockStatusInput) -> OperationResult:
    """Copy counts per book, optionally only titles with nothing on the shelf."""
    page = BookRepository(ctx.session).stock_status(
        search=params.search,
        out_of_stock_only=params.out_of_stock_only,
        pagination=PaginationParams(limit=params.limit, offset=params.offset),
    )
    return OperationResult("Stock status retrieved", page)


@registry.operation("catalog.add_location", LocationCreateSchema, roles=ADMIN, status=201)
def add_location(ctx: OperationContext, params: LocationCreateSchema) -> OperationResult:
    """Create a shelving location."""
    return OperationResult("Location added successfully", LocationRepository(ctx.session).create(params))


@registry.operation("catalog.list_locations", roles=STAFF)
def list_locations(ctx: OperationContext, params) -> OperationResult:
    """All shelving locations."""
    return OperationResult("Locations retrieved", LocationRepository(ctx.session).list_all())
