"""
User account repository.

Users are login identities (admin, librarian, student). Passwords arrive
here already hashed; hashing and token handling live in ``auth``.
"""

import logging

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_, select

from ..errors import DuplicateError, ValidationError
from ..models.users import Role
from ..models.users import User as UserModel
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import User as UserDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class UserCreateSchema(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password_hash: str
    role: Role = Role.STUDENT

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class UserRepository(BaseRepository[UserDB, UserModel]):
    entity_label = "User"

    @property
    def model_class(self) -> type[UserDB]:
        return UserDB

    @property
    def response_schema(self) -> type[UserModel]:
        return UserModel

    def get_by_email_db(self, email: str) -> UserDB | None:
        """Return the row itself; login needs the password hash."""
        return safe_query(
            self.session,
            lambda s: s.execute(select(UserDB).where(UserDB.email == email.lower())).scalar_one_or_none(),
            "Failed to get user",
        )

    def create(self, data: UserCreateSchema) -> UserModel:
        if self.get_by_email_db(data.email):
            raise DuplicateError(f"User with email {data.email} already exists")

        user = UserDB(**data.model_dump(), is_active=True)
        self.session.add(user)
        safe_flush(self.session, "create user")
        logger.info("Created %s account %s", data.role.value, data.email)
        return self._to_response_model(user)

    def set_librarian_active(self, user_id: int, is_active: bool) -> UserModel:
        user = self._get_db_or_404(user_id, lock=True)
        if user.role != Role.LIBRARIAN:
            raise ValidationError(
                "Only librarian accounts can be activated or deactivated here",
                {"role": user.role.value},
            )
        user.is_active = is_active
        safe_flush(self.session, "update librarian status")
        logger.info("Librarian %s %s", user.email, "activated" if is_active else "deactivated")
        return self._to_response_model(user)

    def list_users(
        self,
        role: Role | None = None,
        query: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[UserModel]:
        stmt = select(UserDB)
        if query:
            term = f"%{query}%"
            stmt = stmt.where(or_(UserDB.full_name.ilike(term), UserDB.email.ilike(term)))
        if role:
            stmt = stmt.where(UserDB.role == role)
        return self._paginate(stmt.order_by(UserDB.id), pagination, "Failed to list users")

