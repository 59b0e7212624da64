"""Report Tools (admin only)

Read-only projections over circulation, inventory and the fee ledger.
"""

from datetime import datetime

from pydantic import BaseModel, model_validator

from ..database.report_repository import ReportRepository
from ..dispatcher import ADMIN, OperationContext, OperationRegistry, OperationResult

registry = OperationRegistry()


class DateWindowInput(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None

    @model_validator(mode="after")
    def check_order(self) -> "DateWindowInput":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


@registry.operation("reports.overdue", roles=ADMIN)
def overdue_report(ctx: OperationContext, params) -> OperationResult:
    """Open loans past due, most overdue first."""
    return OperationResult("Overdue report generated", ReportRepository(ctx.session).overdue(now=ctx.now))


@registry.operation("reports.circulation", DateWindowInput, roles=ADMIN)
def circulation_report(ctx: OperationContext, params: DateWindowInput) -> OperationResult:
    """Checkouts per title within an optional date window."""
    rows = ReportRepository(ctx.session).circulation(params.start_date, params.end_date)
    return OperationResult("Circulation report generated", rows)


@registry.operation("reports.inventory", roles=ADMIN)
def inventory_summary(ctx: OperationContext, params) -> OperationResult:
    """Copy status counts per title."""
    return OperationResult("Inventory summary generated", ReportRepository(ctx.session).inventory())


@registry.operation("reports.member_activity", roles=ADMIN)
def member_activity(ctx: OperationContext, params) -> OperationResult:
    """Loan counts per member."""
    return OperationResult("Member activity report generated", ReportRepository(ctx.session).member_activity())


@registry.operation("reports.debt_aging", roles=ADMIN)
def debt_aging(ctx: OperationContext, params) -> OperationResult:
    """Unpaid and partially paid fees per member."""
    return OperationResult("Debt aging report generated", ReportRepository(ctx.session).debt_aging())


@registry.operation("reports.turnaround", roles=ADMIN)
def turnaround_metrics(ctx: OperationContext, params) -> OperationResult:
    """Average loan length by month."""
    return OperationResult("Turnaround metrics generated", ReportRepository(ctx.session).turnaround())


@registry.operation("reports.dashboard", roles=ADMIN)
def dashboard_summary(ctx: OperationContext, params) -> OperationResult:
    """Headline counts for the admin dashboard."""
    return OperationResult("Dashboard summary generated", ReportRepository(ctx.session).dashboard(now=ctx.now))
