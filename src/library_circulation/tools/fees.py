"""Fee Tools - the member fee ledger

Tools:
- fees.assess: charge a fee to a member (staff)
- fees.record_payment: apply a payment; settles to PAID or leaves PARTIAL (staff)
- fees.waive: mark a fee PAID without payment (admin)
- fees.member_summary / fees.payment_history: ledger views (staff)
"""

from pydantic import BaseModel

from ..database.fee_repository import FeeAssessSchema, FeeRepository, PaymentCreateSchema
from ..dispatcher import ADMIN, STAFF, OperationContext, OperationRegistry, OperationResult

registry = OperationRegistry()


class FeeIdInput(BaseModel):
    fee_id: int


class MemberIdInput(BaseModel):
    member_id: int


@registry.operation("fees.assess", FeeAssessSchema, roles=STAFF, status=201)
def assess_fee(ctx: OperationContext, params: FeeAssessSchema) -> OperationResult:
    """Charge a fee to a member."""
    return OperationResult("Fee assessed", FeeRepository(ctx.session).assess(params, now=ctx.now))


@registry.operation("fees.record_payment", PaymentCreateSchema, roles=STAFF)
def record_payment(ctx: OperationContext, params: PaymentCreateSchema) -> OperationResult:
    """Apply a payment to a fee."""
    fee = FeeRepository(ctx.session).record_payment(params, received_by=ctx.actor_id, now=ctx.now)
    return OperationResult("Payment recorded", fee)


@registry.operation("fees.waive", FeeIdInput, roles=ADMIN)
def waive_fee(ctx: OperationContext, params: FeeIdInput) -> OperationResult:
    """Waive a fee."""
    return OperationResult("Fee waived successfully", FeeRepository(ctx.session).waive(params.fee_id))


@registry.operation("fees.member_summary", MemberIdInput, roles=STAFF)
def member_fee_summary(ctx: OperationContext, params: MemberIdInput) -> OperationResult:
    """Totals and fee list for one member."""
    return OperationResult("Member fees retrieved", FeeRepository(ctx.session).summary(params.member_id))


@registry.operation("fees.payment_history", MemberIdInput, roles=STAFF)
def payment_history(ctx: OperationContext, params: MemberIdInput) -> OperationResult:
    """Payments made by one member, newest first."""
    return OperationResult("Payment history retrieved", FeeRepository(ctx.session).payment_history(params.member_id))
