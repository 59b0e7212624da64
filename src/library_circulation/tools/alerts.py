"""Alert Tools

Tools:
- alerts.generate_overdue: mark late loans OVERDUE and alert their members
- alerts.list: unresolved alerts, optionally for one member
- alerts.resolve: close an alert
"""

from pydantic import BaseModel

from ..database.alert_repository import AlertRepository
from ..dispatcher import STAFF, OperationContext, OperationRegistry, OperationResult

registry = OperationRegistry()


class ListAlertsInput(BaseModel):
    member_id: int | None = None


class AlertIdInput(BaseModel):
    alert_id: int


@registry.operation("alerts.generate_overdue", roles=STAFF)
def generate_overdue_alerts(ctx: OperationContext, params) -> OperationResult:
    """Run the overdue pass; safe to repeat."""
    result = AlertRepository(ctx.session).generate_overdue_alerts(now=ctx.now)
    return OperationResult("Alerts generated successfully", result)


@registry.operation("alerts.list", ListAlertsInput, roles=STAFF)
def list_alerts(ctx: OperationContext, params: ListAlertsInput) -> OperationResult:
    """Unresolved alerts, newest first."""
    return OperationResult("Alerts retrieved", AlertRepository(ctx.session).list_active(params.member_id))


@registry.operation("alerts.resolve", AlertIdInput, roles=STAFF)
def resolve_alert(ctx: OperationContext, params: AlertIdInput) -> OperationResult:
    """Mark an alert resolved."""
    alert = AlertRepository(ctx.session).resolve(params.alert_id, now=ctx.now)
    return OperationResult("Alert resolved", alert)
