"""
Membership models.

- MembershipType: borrowing terms (loan limit, loan period, daily late fee)
- Member: a card holder; only ACTIVE members may originate loans
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..database.schema import MemberStatusEnum as MemberStatus


class MembershipType(BaseModel):
    """Borrowing terms shared by a group of members."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type_name: str
    loan_limit: int = Field(..., ge=0, description="Maximum simultaneous open loans")
    loan_period_days: int = Field(..., gt=0, description="Days until a new loan is due")
    daily_late_fee: Decimal = Field(..., ge=0, description="Fee charged per late day")


class Member(BaseModel):
    """A library member."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None = None
    card_number: str
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    status: MemberStatus
    membership_type_id: int
    joined_at: date

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def can_borrow(self) -> bool:
        return self.status == MemberStatus.ACTIVE


class MembershipTerms(BaseModel):
    """Limits the circulation engine needs from a member's membership type."""

    loan_limit: int
    loan_period_days: int
    daily_late_fee: Decimal


__all__ = ["Member", "MemberStatus", "MembershipTerms", "MembershipType"]
