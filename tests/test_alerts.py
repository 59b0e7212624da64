"""Tests for the overdue pass and member alerts."""

from datetime import datetime, timedelta

import pytest

from library_circulation.database.alert_repository import AlertRepository
from library_circulation.database.circulation_repository import CirculationRepository
from library_circulation.database.membership_repository import MemberCreateSchema, MemberRepository
from library_circulation.errors import NotFoundError
from library_circulation.models.alerts import AlertType
from library_circulation.models.circulation import LoanStatus

ISSUED_AT = datetime(2024, 3, 1, 10, 0)
AFTER_DUE = ISSUED_AT + timedelta(days=20)


@pytest.fixture
def circulation(library, session):
    return CirculationRepository(session)


@pytest.fixture
def alerts(library, session):
    return AlertRepository(session)


class TestOverduePass:
    def test_marks_late_loans_and_alerts_member(self, circulation, alerts, library):
        first = circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        circulation.issue_book(library.member_id, "BC-0002", now=ISSUED_AT)

        result = alerts.generate_overdue_alerts(now=AFTER_DUE)

        assert result.loans_marked_overdue == 2
        assert result.alerts_created == 1
        assert result.members_alerted == [library.member_id]
        assert circulation.get_loan(first.loan_id).status == LoanStatus.OVERDUE

        active = alerts.list_active(library.member_id)
        assert len(active) == 1
        assert active[0].alert_type == AlertType.OVERDUE
        assert active[0].message == "Member has 2 overdue loan(s)"
        assert active[0].is_active

    def test_loans_not_yet_due_are_untouched(self, circulation, alerts, library):
        receipt = circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)

        result = alerts.generate_overdue_alerts(now=ISSUED_AT + timedelta(days=13))

        assert result.loans_marked_overdue == 0
        assert result.alerts_created == 0
        assert circulation.get_loan(receipt.loan_id).status == LoanStatus.ACTIVE

    def test_second_run_changes_nothing(self, circulation, alerts, library):
        circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        alerts.generate_overdue_alerts(now=AFTER_DUE)

        again = alerts.generate_overdue_alerts(now=AFTER_DUE + timedelta(days=1))

        assert again.loans_marked_overdue == 0
        assert again.alerts_created == 0
        assert len(alerts.list_active()) == 1

    def test_one_alert_per_member(self, circulation, alerts, library, session):
        other = MemberRepository(session).register(
            MemberCreateSchema(first_name="Grace", last_name="Hopper", email="grace@example.com")
        )
        circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        circulation.issue_book(other.id, "BC-0002", now=ISSUED_AT)

        result = alerts.generate_overdue_alerts(now=AFTER_DUE)

        assert result.alerts_created == 2
        assert sorted(result.members_alerted) == sorted([library.member_id, other.id])


class TestAlertResolution:
    def test_return_resolves_alert_once_clear(self, circulation, alerts, library):
        first = circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        second = circulation.issue_book(library.member_id, "BC-0002", now=ISSUED_AT)
        alerts.generate_overdue_alerts(now=AFTER_DUE)

        circulation.return_loan(first.loan_id, now=AFTER_DUE)
        assert len(alerts.list_active(library.member_id)) == 1

        circulation.return_loan(second.loan_id, now=AFTER_DUE)
        assert alerts.list_active(library.member_id) == []

    def test_force_close_resolves_alert(self, circulation, alerts, library):
        receipt = circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        alerts.generate_overdue_alerts(now=AFTER_DUE)

        circulation.force_close(receipt.loan_id, now=AFTER_DUE)

        assert alerts.list_active() == []

    def test_manual_resolve_is_idempotent(self, circulation, alerts, library):
        circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        alerts.generate_overdue_alerts(now=AFTER_DUE)
        alert_id = alerts.list_active()[0].id

        resolved = alerts.resolve(alert_id, now=AFTER_DUE)
        again = alerts.resolve(alert_id, now=AFTER_DUE + timedelta(days=5))

        assert resolved.resolved_at == AFTER_DUE
        assert again.resolved_at == AFTER_DUE
        assert not again.is_active

    def test_resolve_missing_alert(self, alerts):
        with pytest.raises(NotFoundError):
            alerts.resolve(999)

    def test_new_alert_after_resolution(self, circulation, alerts, library):
        circulation.issue_book(library.member_id, "BC-0001", now=ISSUED_AT)
        alerts.generate_overdue_alerts(now=AFTER_DUE)
        alerts.resolve(alerts.list_active()[0].id, now=AFTER_DUE)

        result = alerts.generate_overdue_alerts(now=AFTER_DUE + timedelta(days=1))

        # The loan is still overdue, so the member is alerted again
        assert result.loans_marked_overdue == 0
        assert result.alerts_created == 1
