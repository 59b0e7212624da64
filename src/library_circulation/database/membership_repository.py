"""
Membership repository for the library backend.

Handles members and the membership types that define their borrowing terms:

1. **Members**: lookup, search by card number or email, registration
2. **Status overrides**: ACTIVE / SUSPENDED / INACTIVE set by staff
3. **Membership types**: create, update and delete borrowing terms

The circulation engine reads member rows through ``get_for_update`` so the
member is locked for the duration of an issuance.
"""

import logging
import secrets
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select

from ..errors import DuplicateError, NotFoundError, ValidationError
from ..models.membership import Member as MemberModel
from ..models.membership import MembershipTerms, MemberStatus
from ..models.membership import MembershipType as MembershipTypeModel
from .repository import BaseRepository, PaginatedResponse, PaginationParams, apply_partial_update
from .schema import Member as MemberDB
from .schema import MembershipType as MembershipTypeDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class MembershipTypeCreateSchema(BaseModel):
    type_name: str = Field(..., min_length=1, max_length=50)
    loan_limit: int = Field(..., ge=0)
    loan_period_days: int = Field(..., gt=0)
    daily_late_fee: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)

    @field_validator("type_name")
    @classmethod
    def normalize_type_name(cls, v: str) -> str:
        return v.strip().upper()


class MembershipTypeUpdateSchema(BaseModel):
    """All fields optional; only the set ones are applied."""

    type_name: str | None = Field(None, min_length=1, max_length=50)
    loan_limit: int | None = Field(None, ge=0)
    loan_period_days: int | None = Field(None, gt=0)
    daily_late_fee: Decimal | None = Field(None, ge=0, decimal_places=2)

    @field_validator("type_name")
    @classmethod
    def normalize_type_name(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class MemberCreateSchema(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str | None = Field(None, max_length=30)
    membership_type_id: int | None = None
    user_id: int | None = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class MembershipTypeRepository(BaseRepository[MembershipTypeDB, MembershipTypeModel]):
    """Repository for membership types."""

    entity_label = "Membership type"

    @property
    def model_class(self) -> type[MembershipTypeDB]:
        return MembershipTypeDB

    @property
    def response_schema(self) -> type[MembershipTypeModel]:
        return MembershipTypeModel

    def get_by_name(self, type_name: str) -> MembershipTypeModel | None:
        db_obj = self._get_by_name_db(type_name)
        return None if db_obj is None else self._to_response_model(db_obj)

    def _get_by_name_db(self, type_name: str) -> MembershipTypeDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(MembershipTypeDB).where(MembershipTypeDB.type_name == type_name.upper())
            ).scalar_one_or_none(),
            "Failed to get membership type",
        )

    def list_all(self) -> list[MembershipTypeModel]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(select(MembershipTypeDB).order_by(MembershipTypeDB.type_name))
            .scalars()
            .all(),
            "Failed to list membership types",
        )
        return [self._to_response_model(row) for row in rows]

    def create(self, data: MembershipTypeCreateSchema) -> MembershipTypeModel:
        if self._get_by_name_db(data.type_name):
            raise DuplicateError(f"Membership type {data.type_name} already exists")

        membership_type = MembershipTypeDB(**data.model_dump())
        self.session.add(membership_type)
        safe_flush(self.session, "create membership type")
        logger.info("Created membership type %s", membership_type.type_name)
        return self._to_response_model(membership_type)

    def update(self, type_id: int, data: MembershipTypeUpdateSchema) -> MembershipTypeModel:
        """
        Change the terms of a membership type.

        Loans already issued keep the terms they were issued under.
        """
        membership_type = self._get_db_or_404(type_id, lock=True)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        new_name = changes.get("type_name")
        if new_name and new_name != membership_type.type_name and self._get_by_name_db(new_name):
            raise DuplicateError(f"Membership type {new_name} already exists")

        apply_partial_update(membership_type, changes, set(MembershipTypeUpdateSchema.model_fields))
        safe_flush(self.session, "update membership type")
        return self._to_response_model(membership_type)

    def delete(self, type_id: int) -> None:
        membership_type = self._get_db_or_404(type_id, lock=True)

        member_count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(MemberDB.id)).where(MemberDB.membership_type_id == type_id)
            ).scalar(),
            "Failed to count members for membership type",
        )
        if member_count:
            raise ValidationError(
                f"Membership type {membership_type.type_name} is assigned to {member_count} member(s)",
                {"member_count": member_count},
            )

        self.session.delete(membership_type)
        safe_flush(self.session, "delete membership type")


class MemberRepository(BaseRepository[MemberDB, MemberModel]):
    """Repository for library members."""

    entity_label = "Member"

    @property
    def model_class(self) -> type[MemberDB]:
        return MemberDB

    @property
    def response_schema(self) -> type[MemberModel]:
        return MemberModel

    def get_for_update(self, member_id: int) -> MemberDB:
        """Lock and return the member row; ``NotFoundError`` if absent."""
        return self._get_db_or_404(member_id, lock=True)

    def get_terms(self, member: MemberDB) -> MembershipTerms:
        membership_type = member.membership_type
        return MembershipTerms(
            loan_limit=membership_type.loan_limit,
            loan_period_days=membership_type.loan_period_days,
            daily_late_fee=membership_type.daily_late_fee,
        )

    def get_by_user_id(self, user_id: int) -> MemberModel | None:
        db_obj = safe_query(
            self.session,
            lambda s: s.execute(select(MemberDB).where(MemberDB.user_id == user_id)).scalar_one_or_none(),
            "Failed to get member for user",
        )
        return None if db_obj is None else self._to_response_model(db_obj)

    def find(self, card_number: str | None = None, email: str | None = None) -> MemberModel:
        """
        Look a member up by card number or email.

        At least one of the two must be given; when both are, either may match.
        """
        if not card_number and not email:
            raise ValidationError("Provide a card number or an email")

        conditions = []
        if card_number:
            conditions.append(MemberDB.card_number == card_number)
        if email:
            conditions.append(MemberDB.email == email.lower())

        db_obj = safe_query(
            self.session,
            lambda s: s.execute(select(MemberDB).where(or_(*conditions)).order_by(MemberDB.id))
            .scalars()
            .first(),
            "Failed to search members",
        )
        if db_obj is None:
            raise NotFoundError("Member not found")
        return self._to_response_model(db_obj)

    def search(
        self,
        query: str | None = None,
        status: MemberStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[MemberModel]:
        stmt = select(MemberDB)
        if query:
            term = f"%{query}%"
            stmt = stmt.where(
                or_(
                    MemberDB.first_name.ilike(term),
                    MemberDB.last_name.ilike(term),
                    MemberDB.email.ilike(term),
                    MemberDB.card_number.ilike(term),
                )
            )
        if status:
            stmt = stmt.where(MemberDB.status == status)
        return self._paginate(stmt.order_by(MemberDB.last_name, MemberDB.id), pagination, "Failed to search members")

    def register(self, data: MemberCreateSchema, default_type_name: str = "STANDARD") -> MemberModel:
        """
        Create a member with a freshly generated card number.

        Without an explicit membership type the configured default is used;
        it must already exist.
        """
        email_taken = safe_query(
            self.session,
            lambda s: s.execute(select(MemberDB.id).where(MemberDB.email == data.email)).first(),
            "Failed to check member email",
        )
        if email_taken:
            raise DuplicateError(f"A member with email {data.email} already exists")

        if data.membership_type_id is not None:
            membership_type = MembershipTypeRepository(self.session)._get_db_or_404(data.membership_type_id)
        else:
            membership_type = MembershipTypeRepository(self.session)._get_by_name_db(default_type_name)
            if membership_type is None:
                raise NotFoundError(f"Default membership type {default_type_name} is not configured")

        member = MemberDB(
            user_id=data.user_id,
            card_number=self._generate_card_number(),
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            phone=data.phone,
            status=MemberStatus.ACTIVE,
            membership_type_id=membership_type.id,
        )
        self.session.add(member)
        safe_flush(self.session, "register member")
        logger.info("Registered member %s (%s)", member.card_number, member.email)
        return self._to_response_model(member)

    def set_status(self, member_id: int, status: MemberStatus) -> MemberModel:
        member = self._get_db_or_404(member_id, lock=True)
        previous = member.status
        member.status = status
        safe_flush(self.session, "update member status")
        logger.info("Member %s status %s -> %s", member_id, previous.value, status.value)
        return self._to_response_model(member)

    def _generate_card_number(self) -> str:
        """Generate an unused card number such as ``LIB-4F9A2C1D``."""
        while True:
            candidate = f"LIB-{secrets.token_hex(4).upper()}"
            taken = safe_query(
                self.session,
                lambda s, c=candidate: s.execute(select(MemberDB.id).where(MemberDB.card_number == c)).first(),
                "Failed to check card number",
            )
            if not taken:
                return candidate
