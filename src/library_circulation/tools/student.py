"""Student Tools - a student's own library account

Every tool here resolves the member record from the caller's token; a
student can never name another member.

Tools:
- student.my_loans / my_overdue_loans
- student.my_fees / payment_history
- student.my_alerts
"""

from ..database.alert_repository import AlertRepository
from ..database.circulation_repository import CirculationRepository
from ..database.fee_repository import FeeRepository
from ..database.membership_repository import MemberRepository
from ..dispatcher import STUDENT, OperationContext, OperationRegistry, OperationResult
from ..errors import NotFoundError
from ..models.circulation import LoanStatus
from ..models.membership import Member

registry = OperationRegistry()


def _own_member(ctx: OperationContext) -> Member:
    member = MemberRepository(ctx.session).get_by_user_id(ctx.actor.user_id)
    if member is None:
        raise NotFoundError("No library membership is linked to this account")
    return member


@registry.operation("student.my_loans", roles=STUDENT)
def my_loans(ctx: OperationContext, params) -> OperationResult:
    """All of my loans, newest first."""
    member = _own_member(ctx)
    return OperationResult("Loans retrieved", CirculationRepository(ctx.session).member_loans(member.id))


@registry.operation("student.my_overdue_loans", roles=STUDENT)
def my_overdue_loans(ctx: OperationContext, params) -> OperationResult:
    """My open loans that are past their due date."""
    member = _own_member(ctx)
    loans = [
        loan
        for loan in CirculationRepository(ctx.session).member_loans(member.id)
        if loan.status == LoanStatus.OVERDUE or (loan.is_open and loan.due_date < ctx.now)
    ]
    return OperationResult("Overdue loans retrieved", loans)


@registry.operation("student.my_fees", roles=STUDENT)
def my_fees(ctx: OperationContext, params) -> OperationResult:
    """My fees with totals."""
    member = _own_member(ctx)
    return OperationResult("Fees retrieved", FeeRepository(ctx.session).summary(member.id))


@registry.operation("student.payment_history", roles=STUDENT)
def my_payment_history(ctx: OperationContext, params) -> OperationResult:
    """Payments I have made."""
    member = _own_member(ctx)
    return OperationResult("Payment history retrieved", FeeRepository(ctx.session).payment_history(member.id))


@registry.operation("student.my_alerts", roles=STUDENT)
def my_alerts(ctx: OperationContext, params) -> OperationResult:
    """My unresolved alerts."""
    member = _own_member(ctx)
    return OperationResult("Alerts retrieved", AlertRepository(ctx.session).list_active(member.id))
