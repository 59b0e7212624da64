"""
Circulation models.

- Loan: the stored record of one copy lent to one member
- LoanDetails: a loan joined with book, copy and member for listings
- IssueReceipt / ReturnReceipt: what the circulation desk shows after an
  issue or a return; these are projections, not stored forms
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..database.schema import LoanStatusEnum as LoanStatus


class Loan(BaseModel):
    """A loan as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    copy_id: int
    checkout_date: datetime
    due_date: datetime
    returned_date: datetime | None = None
    status: LoanStatus
    loan_period_days: int
    daily_late_fee: Decimal

    @property
    def is_open(self) -> bool:
        return self.status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)

    def days_late(self, as_of: datetime) -> int:
        """Whole days past the due date at ``as_of`` (0 when on time)."""
        end = self.returned_date or as_of
        return max(0, (end.date() - self.due_date.date()).days)


class LoanDetails(Loan):
    title: str
    isbn: str
    barcode: str
    card_number: str
    member_name: str


class IssuedMember(BaseModel):
    member_id: int
    name: str
    email: str


class IssuedCopy(BaseModel):
    title: str
    isbn: str
    barcode: str
    location: str = "Not specified"


class IssueReceipt(BaseModel):
    """Snapshot returned by a successful issue."""

    loan_id: int
    member: IssuedMember
    book: IssuedCopy
    checkout_date: datetime
    due_date: datetime
    loan_period_days: int = Field(..., gt=0)
    status: LoanStatus = LoanStatus.ACTIVE


class ReturnReceipt(BaseModel):
    """Outcome of a return, including any late fee assessed with it."""

    loan: Loan
    barcode: str
    late_days: int = Field(default=0, ge=0)
    fee_assessed: Decimal = Decimal("0.00")
    fee_id: int | None = None


__all__ = [
    "IssueReceipt",
    "IssuedCopy",
    "IssuedMember",
    "Loan",
    "LoanDetails",
    "LoanStatus",
    "ReturnReceipt",
]
