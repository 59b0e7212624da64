"""
Repository pattern base for the library backend.

Repositories wrap one ``Session`` handed to them by the caller; they query,
add and flush but never commit. Transaction boundaries belong to whoever
opened the session (the dispatcher, a script, or a test), so one operation
can combine several repositories inside a single atomic unit.

Methods return Pydantic models so results serialize cleanly into the response
envelope; lookups that must succeed raise ``NotFoundError``.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class PaginationParams(BaseModel):
    """Limit/offset paging used by list operations."""

    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """A page of results plus the total number of matches."""

    items: list[ResponseSchemaType]
    total: int
    limit: int
    offset: int

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Common lookups shared by the entity repositories.

    Subclasses name their SQLAlchemy class, their response schema and a
    human label used in not-found messages.
    """

    entity_label: str = "Entity"

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db(self, id: int, *, lock: bool = False) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == id)
        if lock:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.entity_label.lower()}",
        )

    def _get_db_or_404(self, id: int, *, lock: bool = False) -> ModelType:
        db_obj = self._get_db(id, lock=lock)
        if db_obj is None:
            raise NotFoundError(f"{self.entity_label} not found")
        return db_obj

    def get_by_id(self, id: int) -> ResponseSchemaType | None:
        db_obj = self._get_db(id)
        return None if db_obj is None else self._to_response_model(db_obj)

    def get_or_404(self, id: int) -> ResponseSchemaType:
        return self._to_response_model(self._get_db_or_404(id))

    def exists(self, id: int) -> bool:
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        count = safe_query(self.session, lambda s: s.execute(query).scalar(), "Failed to check existence")
        return bool(count)

    def _paginate(
        self, query: Select, pagination: PaginationParams | None, error_msg: str
    ) -> PaginatedResponse[ResponseSchemaType]:
        pagination = pagination or PaginationParams()

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = safe_query(self.session, lambda s: s.execute(count_query).scalar(), error_msg) or 0

        page_query = query.offset(pagination.offset).limit(pagination.limit)
        rows = safe_query(self.session, lambda s: s.execute(page_query).unique().scalars().all(), error_msg)

        return PaginatedResponse(
            items=[self._to_response_model(row) for row in rows],
            total=total,
            limit=pagination.limit,
            offset=pagination.offset,
        )


def apply_partial_update(db_obj: Base, changes: dict, allowed: set[str]) -> list[str]:
    """
    Copy the set fields of an update payload onto a row.

    Returns the names of the fields that changed. Unknown fields are rejected
    rather than silently ignored.
    """
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(
            "Unknown fields in update", {"fields": sorted(unknown)}
        )
    changed = []
    for field, value in changes.items():
        if getattr(db_obj, field) != value:
            setattr(db_obj, field, value)
            changed.append(field)
    return changed
