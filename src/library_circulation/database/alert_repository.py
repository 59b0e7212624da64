"""
Member alert repository.

Alerts are derived from loan state. The overdue pass marks late ACTIVE loans
OVERDUE and raises one OVERDUE alert per affected member; running it twice
changes nothing the second time.
"""

import logging
from datetime import datetime

from sqlalchemy import select

from ..errors import NotFoundError
from ..models.alerts import AlertType, MemberAlert, OverdueRunResult
from ..models.circulation import LoanStatus
from ..observability.context import trace_repository_operation
from ..observability.metrics import record_circulation_event
from .repository import BaseRepository
from .schema import Loan as LoanDB
from .schema import MemberAlert as MemberAlertDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class AlertRepository(BaseRepository[MemberAlertDB, MemberAlert]):
    entity_label = "Alert"

    @property
    def model_class(self) -> type[MemberAlertDB]:
        return MemberAlertDB

    @property
    def response_schema(self) -> type[MemberAlert]:
        return MemberAlert

    def generate_overdue_alerts(self, now: datetime | None = None) -> OverdueRunResult:
        """
        Mark every ACTIVE loan past its due date as OVERDUE.

        Each member with a newly or previously overdue loan gets an OVERDUE
        alert unless one is still unresolved.
        """
        now = now or datetime.now()

        with trace_repository_operation("alerts", "generate_overdue_alerts", "loans") as span:
            late_loans = safe_query(
                self.session,
                lambda s: s.execute(
                    select(LoanDB)
                    .where(LoanDB.status == LoanStatus.ACTIVE, LoanDB.due_date < now)
                    .order_by(LoanDB.id)
                    .with_for_update()
                )
                .scalars()
                .all(),
                "Failed to find overdue loans",
            )

            for loan in late_loans:
                loan.status = LoanStatus.OVERDUE

            overdue_counts: dict[int, int] = {}
            for member_id in safe_query(
                self.session,
                lambda s: s.execute(
                    select(LoanDB.member_id).where(LoanDB.status == LoanStatus.OVERDUE)
                ).scalars().all(),
                "Failed to list members with overdue loans",
            ):
                overdue_counts[member_id] = overdue_counts.get(member_id, 0) + 1
            for loan in late_loans:
                # Not flushed yet, so the query above did not see these
                overdue_counts[loan.member_id] = overdue_counts.get(loan.member_id, 0) + 1

            already_alerted = set(
                safe_query(
                    self.session,
                    lambda s: s.execute(
                        select(MemberAlertDB.member_id).where(
                            MemberAlertDB.alert_type == AlertType.OVERDUE,
                            MemberAlertDB.resolved_at.is_(None),
                        )
                    ).scalars().all(),
                    "Failed to list open alerts",
                )
            )

            alerted = []
            for member_id in sorted(overdue_counts):
                if member_id in already_alerted:
                    continue
                count = overdue_counts[member_id]
                self.session.add(
                    MemberAlertDB(
                        member_id=member_id,
                        alert_type=AlertType.OVERDUE,
                        message=f"Member has {count} overdue loan(s)",
                        alert_date=now,
                    )
                )
                alerted.append(member_id)

            safe_flush(self.session, "generate overdue alerts")
            span.set_attribute("loans_marked_overdue", len(late_loans))
            span.set_attribute("alerts_created", len(alerted))

        record_circulation_event("overdue", len(late_loans))
        logger.info("Overdue pass: %d loan(s) marked, %d alert(s) created", len(late_loans), len(alerted))
        return OverdueRunResult(
            loans_marked_overdue=len(late_loans),
            alerts_created=len(alerted),
            members_alerted=alerted,
        )

    def list_active(self, member_id: int | None = None) -> list[MemberAlert]:
        stmt = select(MemberAlertDB).where(MemberAlertDB.resolved_at.is_(None))
        if member_id is not None:
            stmt = stmt.where(MemberAlertDB.member_id == member_id)
        rows = safe_query(
            self.session,
            lambda s: s.execute(stmt.order_by(MemberAlertDB.alert_date.desc(), MemberAlertDB.id.desc()))
            .scalars()
            .all(),
            "Failed to list alerts",
        )
        return [self._to_response_model(row) for row in rows]

    def resolve(self, alert_id: int, now: datetime | None = None) -> MemberAlert:
        alert = self._get_db(alert_id, lock=True)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        if alert.resolved_at is None:
            alert.resolved_at = now or datetime.now()
            safe_flush(self.session, "resolve alert")
        return self._to_response_model(alert)
