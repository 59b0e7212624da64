"""Membership Tools - Members and Membership Types

Tools:
- members.get / find / search: member lookup at the desk (staff)
- members.register: enrol a member without a login account (staff)
- members.override_status: ACTIVE / SUSPENDED / INACTIVE (admin)
- membership_types.list (staff), create / update / delete (admin)
"""

from pydantic import BaseModel, Field, model_validator

from ..database.membership_repository import (
    MemberCreateSchema,
    MemberRepository,
    MembershipTypeCreateSchema,
    MembershipTypeRepository,
    MembershipTypeUpdateSchema,
)
from ..database.repository import PaginationParams
from ..dispatcher import ADMIN, STAFF, OperationContext, OperationRegistry, OperationResult
from ..models.membership import MemberStatus

registry = OperationRegistry()


class MemberIdInput(BaseModel):
    member_id: int


class FindMemberInput(BaseModel):
    card_number: str | None = Field(None, examples=["LIB-4F9A2C1D"])
    email: str | None = None

    @model_validator(mode="after")
    def require_one(self) -> "FindMemberInput":
        if not self.card_number and not self.email:
            raise ValueError("Provide card_number or email")
        return self


class SearchMembersInput(PaginationParams):
    query: str | None = Field(None, description="Matches name, email or card number")
    status: MemberStatus | None = None


class OverrideStatusInput(BaseModel):
    member_id: int
    status: MemberStatus


class UpdateMembershipTypeInput(MembershipTypeUpdateSchema):
    type_id: int


class MembershipTypeIdInput(BaseModel):
    type_id: int


@registry.operation("members.get", MemberIdInput, roles=STAFF)
def get_member(ctx: OperationContext, params: MemberIdInput) -> OperationResult:
    """Fetch one member."""
    return OperationResult("Member retrieved", MemberRepository(ctx.session).get_or_404(params.member_id))


@registry.operation("members.find", FindMemberInput, roles=STAFF)
def find_member(ctx: OperationContext, params: FindMemberInput) -> OperationResult:
    """Find a member by card number or email."""
    member = MemberRepository(ctx.session).find(card_number=params.card_number, email=params.email)
    return OperationResult("Member found", member)


@registry.operation("members.search", SearchMembersInput, roles=STAFF)
def search_members(ctx: OperationContext, params: SearchMembersInput) -> OperationResult:
    """Search members by name, email or card number."""
    page = MemberRepository(ctx.session).search(
        params.query, params.status, PaginationParams(limit=params.limit, offset=params.offset)
    )
    return OperationResult("Members retrieved", page)


@registry.operation("members.register", MemberCreateSchema, roles=STAFF, status=201)
def register_member(ctx: OperationContext, params: MemberCreateSchema) -> OperationResult:
    """Enrol a member; the configured default membership type applies when none is given."""
    member = MemberRepository(ctx.session).register(params, ctx.config.default_membership_type)
    return OperationResult("Member registered successfully", member)


@registry.operation("members.override_status", OverrideStatusInput, roles=ADMIN)
def override_member_status(ctx: OperationContext, params: OverrideStatusInput) -> OperationResult:
    """Set a member's status directly."""
    member = MemberRepository(ctx.session).set_status(params.member_id, params.status)
    return OperationResult("Member status updated", member)


@registry.operation("membership_types.list", roles=STAFF)
def list_membership_types(ctx: OperationContext, params) -> OperationResult:
    """All membership types with their borrowing terms."""
    return OperationResult("Membership types retrieved", MembershipTypeRepository(ctx.session).list_all())


@registry.operation("membership_types.create", MembershipTypeCreateSchema, roles=ADMIN, status=201)
def create_membership_type(ctx: OperationContext, params: MembershipTypeCreateSchema) -> OperationResult:
    """Create a membership type."""
    membership_type = MembershipTypeRepository(ctx.session).create(params)
    return OperationResult("Membership type created", membership_type)


@registry.operation("membership_types.update", UpdateMembershipTypeInput, roles=ADMIN)
def update_membership_type(ctx: OperationContext, params: UpdateMembershipTypeInput) -> OperationResult:
    """Change a membership type's terms; open loans keep the terms they were issued under."""
    changes = MembershipTypeUpdateSchema.model_validate(
        params.model_dump(exclude={"type_id"}, exclude_unset=True)
    )
    membership_type = MembershipTypeRepository(ctx.session).update(params.type_id, changes)
    return OperationResult("Membership type updated", membership_type)


@registry.operation("membership_types.delete", MembershipTypeIdInput, roles=ADMIN)
def delete_membership_type(ctx: OperationContext, params: MembershipTypeIdInput) -> OperationResult:
    """Delete a membership type no member is assigned to."""
    MembershipTypeRepository(ctx.session).delete(params.type_id)
    return OperationResult("Membership type deleted", {"type_id": params.type_id})
