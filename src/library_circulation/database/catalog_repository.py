"""
Catalog repository for the library backend.

Covers the bibliographic side of the library and its physical inventory:

1. **Books**: add, edit, delete, search with paging, details with copy counts
2. **Copies**: add, delete, scan by barcode, status and location changes
3. **Locations**: shelving locations copies are assigned to

Copy status belongs to two owners. Staff move a copy among AVAILABLE,
RESERVED, MAINTENANCE and LOST; only the circulation engine moves it into or
out of LOANED. ``CopyRepository.set_status`` enforces that split.
"""

import logging
from datetime import date

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import joinedload

from ..errors import DuplicateError, InvalidTransitionError, NotFoundError, ValidationError
from ..models.catalog import Book as BookModel
from ..models.catalog import BookCopy as BookCopyModel
from ..models.catalog import BookDetails, CopyDetails, CopyStatus, StockStatus
from ..models.catalog import Location as LocationModel
from .repository import BaseRepository, PaginatedResponse, PaginationParams, apply_partial_update
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .schema import Location as LocationDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)

STAFF_SETTABLE_STATUSES = frozenset(
    {CopyStatus.AVAILABLE, CopyStatus.RESERVED, CopyStatus.MAINTENANCE, CopyStatus.LOST}
)


def normalize_isbn(v: str) -> str:
    """Strip hyphens and spaces; accept ISBN-10 (with X check digit) or ISBN-13."""
    clean = v.replace("-", "").replace(" ", "").upper()
    if len(clean) == 10 and clean[:9].isdigit() and (clean[9].isdigit() or clean[9] == "X"):
        return clean
    if len(clean) == 13 and clean.isdigit():
        return clean
    raise ValueError("ISBN must be 10 or 13 characters")


class BookCreateSchema(BaseModel):
    isbn: str
    title: str = Field(..., min_length=1, max_length=500)
    subtitle: str | None = Field(None, max_length=500)
    publisher: str | None = Field(None, max_length=200)
    publication_year: int | None = Field(None, ge=1450, le=2100)
    language: str | None = Field(None, max_length=50)
    edition: str | None = Field(None, max_length=50)
    description: str | None = None

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str) -> str:
        return normalize_isbn(v)


class BookUpdateSchema(BaseModel):
    """All fields optional; only the set ones are applied."""

    isbn: str | None = None
    title: str | None = Field(None, min_length=1, max_length=500)
    subtitle: str | None = Field(None, max_length=500)
    publisher: str | None = Field(None, max_length=200)
    publication_year: int | None = Field(None, ge=1450, le=2100)
    language: str | None = Field(None, max_length=50)
    edition: str | None = Field(None, max_length=50)
    description: str | None = None

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        return normalize_isbn(v) if v is not None else v


class CopyCreateSchema(BaseModel):
    book_id: int
    barcode: str = Field(..., min_length=1, max_length=50)
    location_id: int | None = None
    acquisition_date: date | None = None
    condition_notes: str | None = None

    @field_validator("barcode")
    @classmethod
    def strip_barcode(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Barcode cannot be blank")
        return v


class LocationCreateSchema(BaseModel):
    location_name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None


class LocationRepository(BaseRepository[LocationDB, LocationModel]):
    entity_label = "Location"

    @property
    def model_class(self) -> type[LocationDB]:
        return LocationDB

    @property
    def response_schema(self) -> type[LocationModel]:
        return LocationModel

    def create(self, data: LocationCreateSchema) -> LocationModel:
        taken = safe_query(
            self.session,
            lambda s: s.execute(
                select(LocationDB.id).where(LocationDB.location_name == data.location_name)
            ).first(),
            "Failed to check location name",
        )
        if taken:
            raise DuplicateError(f"Location {data.location_name} already exists")

        location = LocationDB(**data.model_dump())
        self.session.add(location)
        safe_flush(self.session, "create location")
        return self._to_response_model(location)

    def list_all(self) -> list[LocationModel]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(select(LocationDB).order_by(LocationDB.location_name)).scalars().all(),
            "Failed to list locations",
        )
        return [self._to_response_model(row) for row in rows]


class BookRepository(BaseRepository[BookDB, BookModel]):
    """Repository for bibliographic records."""

    entity_label = "Book"

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    @property
    def response_schema(self) -> type[BookModel]:
        return BookModel

    def _isbn_taken(self, isbn: str) -> bool:
        row = safe_query(
            self.session,
            lambda s: s.execute(select(BookDB.id).where(BookDB.isbn == isbn)).first(),
            "Failed to check ISBN",
        )
        return row is not None

    def create(self, data: BookCreateSchema) -> BookModel:
        if self._isbn_taken(data.isbn):
            raise DuplicateError(f"Book with ISBN {data.isbn} already exists")

        book = BookDB(**data.model_dump())
        self.session.add(book)
        safe_flush(self.session, "create book")
        logger.info("Added book %s (%s)", book.isbn, book.title)
        return self._to_response_model(book)

    def update(self, book_id: int, data: BookUpdateSchema) -> BookModel:
        book = self._get_db_or_404(book_id, lock=True)
        changes = data.model_dump(exclude_unset=True)
        if "title" in changes and changes["title"] is None:
            raise ValidationError("Title cannot be empty")
        if changes.get("isbn") is None:
            changes.pop("isbn", None)

        new_isbn = changes.get("isbn")
        if new_isbn and new_isbn != book.isbn and self._isbn_taken(new_isbn):
            raise DuplicateError(f"Book with ISBN {new_isbn} already exists")

        apply_partial_update(book, changes, set(BookUpdateSchema.model_fields))
        safe_flush(self.session, "update book")
        return self._to_response_model(book)

    def delete(self, book_id: int) -> None:
        """Delete a book and its copies, unless any copy has ever been loaned."""
        book = self._get_db_or_404(book_id, lock=True)

        loan_count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id))
                .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
                .where(BookCopyDB.book_id == book_id)
            ).scalar(),
            "Failed to check loan history",
        )
        if loan_count:
            raise ValidationError(
                "Cannot delete a book whose copies have loan history",
                {"loan_count": loan_count},
            )

        self.session.delete(book)
        safe_flush(self.session, "delete book")
        logger.info("Deleted book %s", book_id)

    def search(
        self, query: str | None = None, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[BookModel]:
        """Search title, subtitle, publisher and ISBN (case-insensitive)."""
        stmt = select(BookDB)
        if query:
            term = f"%{query}%"
            stmt = stmt.where(
                or_(
                    BookDB.title.ilike(term),
                    BookDB.subtitle.ilike(term),
                    BookDB.publisher.ilike(term),
                    BookDB.isbn.ilike(term),
                )
            )
        return self._paginate(stmt.order_by(BookDB.title, BookDB.id), pagination, "Failed to search books")

    def stock_status(
        self,
        search: str | None = None,
        out_of_stock_only: bool = False,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[StockStatus]:
        """Copy counts per book; a book with no AVAILABLE copy is out of stock."""
        pagination = pagination or PaginationParams()
        available = func.coalesce(
            func.sum(case((BookCopyDB.status == CopyStatus.AVAILABLE, 1), else_=0)), 0
        )
        stmt = (
            select(BookDB.id, BookDB.isbn, BookDB.title, func.count(BookCopyDB.id), available)
            .outerjoin(BookCopyDB, BookCopyDB.book_id == BookDB.id)
            .group_by(BookDB.id, BookDB.isbn, BookDB.title)
        )
        if search:
            term = f"%{search}%"
            stmt = stmt.where(or_(BookDB.title.ilike(term), BookDB.isbn.ilike(term)))
        if out_of_stock_only:
            stmt = stmt.having(available == 0)

        total = safe_query(
            self.session,
            lambda s: s.execute(select(func.count()).select_from(stmt.subquery())).scalar(),
            "Failed to count stock status",
        ) or 0
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                stmt.order_by(BookDB.title, BookDB.id).offset(pagination.offset).limit(pagination.limit)
            ).all(),
            "Failed to get stock status",
        )
        return PaginatedResponse[StockStatus](
            items=[
                StockStatus(
                    book_id=book_id,
                    isbn=isbn,
                    title=title,
                    total_copies=total_copies,
                    available_copies=available_copies,
                    is_out_of_stock=available_copies == 0,
                )
                for book_id, isbn, title, total_copies, available_copies in rows
            ],
            total=total,
            limit=pagination.limit,
            offset=pagination.offset,
        )

    def get_details(self, book_id: int) -> BookDetails:
        book = self._get_db_or_404(book_id)
        total, available = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    func.count(BookCopyDB.id),
                    func.coalesce(
                        func.sum(case((BookCopyDB.status == CopyStatus.AVAILABLE, 1), else_=0)), 0
                    ),
                ).where(BookCopyDB.book_id == book_id)
            ).one(),
            "Failed to count copies",
        )
        return BookDetails.model_validate(
            {**BookModel.model_validate(book).model_dump(), "total_copies": total, "available_copies": available}
        )


class CopyRepository(BaseRepository[BookCopyDB, BookCopyModel]):
    """Repository for barcoded copies."""

    entity_label = "Book copy"

    @property
    def model_class(self) -> type[BookCopyDB]:
        return BookCopyDB

    @property
    def response_schema(self) -> type[BookCopyModel]:
        return BookCopyModel

    def _to_details(self, copy: BookCopyDB) -> CopyDetails:
        return CopyDetails(
            **BookCopyModel.model_validate(copy).model_dump(),
            title=copy.book.title,
            isbn=copy.book.isbn,
            location_name=copy.location.location_name if copy.location else None,
        )

    def _get_by_barcode_db(self, barcode: str, *, lock: bool = False) -> BookCopyDB | None:
        stmt = select(BookCopyDB).where(BookCopyDB.barcode == barcode)
        if lock:
            stmt = stmt.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(stmt).scalar_one_or_none(),
            "Failed to get book copy",
        )

    def get_for_update_by_barcode(self, barcode: str) -> BookCopyDB:
        """Lock and return the copy row; ``NotFoundError`` if absent."""
        copy = self._get_by_barcode_db(barcode, lock=True)
        if copy is None:
            raise NotFoundError(f"Book copy with barcode {barcode} not found")
        return copy

    def scan(self, barcode: str) -> CopyDetails:
        """Resolve a scanned barcode to the copy, its book and location."""
        copy = self._get_by_barcode_db(barcode)
        if copy is None:
            raise NotFoundError(f"Book copy with barcode {barcode} not found")
        return self._to_details(copy)

    def get_details(self, copy_id: int) -> CopyDetails:
        return self._to_details(self._get_db_or_404(copy_id))

    def create(self, data: CopyCreateSchema) -> BookCopyModel:
        BookRepository(self.session)._get_db_or_404(data.book_id)
        if data.location_id is not None:
            LocationRepository(self.session)._get_db_or_404(data.location_id)
        if self._get_by_barcode_db(data.barcode):
            raise DuplicateError(f"Barcode {data.barcode} already exists")

        copy = BookCopyDB(**data.model_dump(), status=CopyStatus.AVAILABLE)
        self.session.add(copy)
        safe_flush(self.session, "create book copy")
        logger.info("Added copy %s of book %s", copy.barcode, copy.book_id)
        return self._to_response_model(copy)

    def delete(self, copy_id: int) -> None:
        copy = self._get_db_or_404(copy_id, lock=True)

        loan_count = safe_query(
            self.session,
            lambda s: s.execute(select(func.count(LoanDB.id)).where(LoanDB.copy_id == copy_id)).scalar(),
            "Failed to check loan history",
        )
        if loan_count:
            raise ValidationError(
                "Cannot delete a copy with loan history",
                {"loan_count": loan_count},
            )

        self.session.delete(copy)
        safe_flush(self.session, "delete book copy")

    def set_status(self, copy_id: int, status: CopyStatus) -> BookCopyModel:
        """
        Staff status change.

        LOANED can neither be set nor left this way; issuing and returning
        are the only paths through it.
        """
        if status not in STAFF_SETTABLE_STATUSES:
            raise InvalidTransitionError(
                f"Copy status cannot be set to {status.value} directly",
                {"requested_status": status.value},
            )

        copy = self._get_db_or_404(copy_id, lock=True)
        if copy.status == CopyStatus.LOANED:
            raise InvalidTransitionError(
                "Copy is on loan; return it before changing its status",
                {"current_status": copy.status.value},
            )

        copy.status = status
        safe_flush(self.session, "update copy status")
        logger.info("Copy %s status set to %s", copy.barcode, status.value)
        return self._to_response_model(copy)

    def set_location(self, copy_id: int, location_id: int | None) -> BookCopyModel:
        copy = self._get_db_or_404(copy_id, lock=True)
        if location_id is not None:
            LocationRepository(self.session)._get_db_or_404(location_id)
        copy.location_id = location_id
        safe_flush(self.session, "update copy location")
        return self._to_response_model(copy)

    def list_for_book(self, book_id: int, status: CopyStatus | None = None) -> list[CopyDetails]:
        BookRepository(self.session)._get_db_or_404(book_id)
        stmt = (
            select(BookCopyDB)
            .where(BookCopyDB.book_id == book_id)
            .options(joinedload(BookCopyDB.book), joinedload(BookCopyDB.location))
            .order_by(BookCopyDB.barcode)
        )
        if status:
            stmt = stmt.where(BookCopyDB.status == status)
        rows = safe_query(
            self.session,
            lambda s: s.execute(stmt).unique().scalars().all(),
            "Failed to list book copies",
        )
        return [self._to_details(row) for row in rows]

    def available_for_book(self, book_id: int) -> list[CopyDetails]:
        return self.list_for_book(book_id, status=CopyStatus.AVAILABLE)

    def search_by_barcode(self, term: str, limit: int = 10) -> list[CopyDetails]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB)
                .where(BookCopyDB.barcode.ilike(f"%{term}%"))
                .options(joinedload(BookCopyDB.book), joinedload(BookCopyDB.location))
                .order_by(BookCopyDB.barcode)
                .limit(limit)
            )
            .unique()
            .scalars()
            .all(),
            "Failed to search copies",
        )
        return [self._to_details(row) for row in rows]
