"""Circulation Tools - Issue, Return and Loan Lookups

Modifies library state through issue and return. Both run in a single
transaction with the member and copy rows locked, so concurrent desks can
never lend the same copy twice.

Tools:
- circulation.issue: lend a copy (by barcode) to a member
- circulation.return: close a loan, assessing any late fee
- circulation.force_close: admin override, closes a loan without a fee
- circulation.get_loan / member_loans / member_active_loans / open_loans / copy_history
"""

import logging

from pydantic import BaseModel, Field, field_validator

from ..database.circulation_repository import CirculationRepository
from ..database.repository import PaginationParams
from ..dispatcher import ADMIN, STAFF, OperationContext, OperationRegistry, OperationResult
from ..models.circulation import LoanStatus

logger = logging.getLogger(__name__)

registry = OperationRegistry()


class IssueBookInput(BaseModel):
    """Input schema for issuing a copy."""

    member_id: int = Field(..., description="Member borrowing the copy", gt=0)
    barcode: str = Field(
        ...,
        description="Barcode of the physical copy",
        min_length=1,
        max_length=50,
        examples=["BC-000123"],
    )

    @field_validator("barcode")
    @classmethod
    def strip_barcode(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Barcode cannot be blank")
        return v


class LoanIdInput(BaseModel):
    loan_id: int = Field(..., gt=0)


class MemberLoansInput(BaseModel):
    member_id: int
    status: LoanStatus | None = Field(None, description="ACTIVE, OVERDUE or RETURNED")


class MemberIdInput(BaseModel):
    member_id: int


class CopyIdInput(BaseModel):
    copy_id: int


@registry.operation("circulation.issue", IssueBookInput, roles=STAFF, status=201)
def issue_book(ctx: OperationContext, params: IssueBookInput) -> OperationResult:
    """Lend an available copy to an active member."""
    receipt = CirculationRepository(ctx.session).issue_book(
        params.member_id, params.barcode, issued_by=ctx.actor_id, now=ctx.now
    )
    return OperationResult("Book issued successfully", receipt)


@registry.operation("circulation.return", LoanIdInput, roles=STAFF)
def return_book(ctx: OperationContext, params: LoanIdInput) -> OperationResult:
    """Close an open loan and put the copy back on the shelf."""
    receipt = CirculationRepository(ctx.session).return_loan(params.loan_id, now=ctx.now)
    message = "Book returned successfully"
    if receipt.fee_id is not None:
        message = f"Book returned {receipt.late_days} day(s) late; fee of {receipt.fee_assessed} assessed"
    return OperationResult(message, receipt)


@registry.operation("circulation.force_close", LoanIdInput, roles=ADMIN)
def force_close_loan(ctx: OperationContext, params: LoanIdInput) -> OperationResult:
    """Close a loan without a return or a fee."""
    loan = CirculationRepository(ctx.session).force_close(params.loan_id, now=ctx.now)
    return OperationResult("Loan force-closed", loan)


@registry.operation("circulation.get_loan", LoanIdInput, roles=STAFF)
def get_loan(ctx: OperationContext, params: LoanIdInput) -> OperationResult:
    """Loan details with book, copy and member."""
    return OperationResult("Loan retrieved", CirculationRepository(ctx.session).get_loan(params.loan_id))


@registry.operation("circulation.member_loans", MemberLoansInput, roles=STAFF)
def member_loans(ctx: OperationContext, params: MemberLoansInput) -> OperationResult:
    """A member's loans, newest first, optionally filtered by status."""
    loans = CirculationRepository(ctx.session).member_loans(params.member_id, params.status)
    return OperationResult("Member loans retrieved", loans)


@registry.operation("circulation.member_active_loans", MemberIdInput, roles=STAFF)
def member_active_loans(ctx: OperationContext, params: MemberIdInput) -> OperationResult:
    """A member's open (ACTIVE or OVERDUE) loans."""
    loans = [
        loan
        for loan in CirculationRepository(ctx.session).member_loans(params.member_id)
        if loan.is_open
    ]
    return OperationResult("Active loans retrieved", loans)


@registry.operation("circulation.open_loans", PaginationParams, roles=STAFF)
def open_loans(ctx: OperationContext, params: PaginationParams) -> OperationResult:
    """All open loans, earliest due first."""
    return OperationResult("Open loans retrieved", CirculationRepository(ctx.session).open_loans(params))


@registry.operation("circulation.copy_history", CopyIdInput, roles=STAFF)
def copy_history(ctx: OperationContext, params: CopyIdInput) -> OperationResult:
    """Every loan of one copy, newest first."""
    return OperationResult("Copy history retrieved", CirculationRepository(ctx.session).copy_history(params.copy_id))
