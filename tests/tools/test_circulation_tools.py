"""Tests for the circulation desk tools, called through ``LibraryApp.invoke``.

These tests cover:
1. Role checks on issue, return and force-close
2. The response envelope for successes and refusals
3. Late returns and the fee gate across calls
"""

from datetime import datetime, timedelta

import pytest

from library_circulation.models.users import Role

ISSUED_AT = datetime(2024, 3, 1, 10, 0)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock(app):
    clock = Clock(ISSUED_AT)
    app.dispatcher.clock = clock
    return clock


@pytest.fixture
def desk(app, accounts, clock):
    """Invoke an operation as the librarian."""

    async def call(operation, payload=None, role=Role.LIBRARIAN):
        return await app.invoke(operation, payload, token=accounts.tokens[role])

    return call


class TestIssueTool:
    async def test_issue_success(self, desk, library):
        response = await desk("circulation.issue", {"member_id": library.member_id, "barcode": " BC-0001 "})

        assert response.status_code == 201
        assert response.success is True
        assert response.message == "Book issued successfully"
        data = response.data
        assert data["status"] == "ACTIVE"
        assert data["checkout_date"] == "2024-03-01T10:00:00"
        assert data["due_date"] == "2024-03-15T10:00:00"
        assert data["member"] == {"member_id": library.member_id, "name": "Ada Lovelace", "email": "ada@example.com"}
        assert data["book"]["barcode"] == "BC-0001"

    async def test_admin_may_issue(self, desk, library):
        response = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"}, Role.ADMIN)
        assert response.status_code == 201

    async def test_student_may_not_issue(self, desk, library):
        response = await desk(
            "circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"}, Role.STUDENT
        )
        assert response.status_code == 403

    async def test_invalid_payload(self, desk):
        response = await desk("circulation.issue", {"member_id": 0, "barcode": "   "})

        assert response.status_code == 400
        assert {error["field"] for error in response.errors} == {"member_id", "barcode"}

    async def test_second_issue_of_same_copy(self, desk, library, accounts):
        await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})
        response = await desk(
            "circulation.issue", {"member_id": accounts.student_member_id, "barcode": "BC-0001"}
        )

        assert response.status_code == 400
        assert response.success is False
        assert response.message == "Book copy is LOANED. Expected: AVAILABLE"
        assert response.errors == {"reason": "copy_unavailable", "current_status": "LOANED"}

    async def test_unknown_member(self, desk):
        response = await desk("circulation.issue", {"member_id": 999, "barcode": "BC-0001"})
        assert response.status_code == 404


class TestReturnTool:
    async def test_on_time_return(self, desk, library, clock):
        issued = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})
        clock.now = ISSUED_AT + timedelta(days=10)

        response = await desk("circulation.return", {"loan_id": issued.data["loan_id"]})

        assert response.status_code == 200
        assert response.message == "Book returned successfully"
        assert response.data["loan"]["status"] == "RETURNED"
        assert response.data["fee_id"] is None

    async def test_late_return_then_fee_gate(self, desk, library, clock):
        issued = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})
        clock.now = ISSUED_AT + timedelta(days=18)

        returned = await desk("circulation.return", {"loan_id": issued.data["loan_id"]})
        assert returned.message == "Book returned 4 day(s) late; fee of 2.00 assessed"
        fee_id = returned.data["fee_id"]

        blocked = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0002"})
        assert blocked.status_code == 400
        assert blocked.errors == {"reason": "unpaid_fees", "total": "2.00"}

        paid = await desk("fees.record_payment", {"fee_id": fee_id, "amount": "2.00"})
        assert paid.status_code == 200
        assert paid.data["status"] == "PAID"

        again = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0002"})
        assert again.status_code == 201

    async def test_return_twice(self, desk, library):
        issued = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})
        await desk("circulation.return", {"loan_id": issued.data["loan_id"]})

        response = await desk("circulation.return", {"loan_id": issued.data["loan_id"]})

        assert response.status_code == 400
        assert response.errors["reason"] == "loan_closed_or_missing"
        assert response.errors["status"] == "RETURNED"

    async def test_return_missing_loan(self, desk):
        response = await desk("circulation.return", {"loan_id": 4242})
        assert response.status_code == 400
        assert response.message == "Loan 4242 not found"


class TestForceCloseTool:
    async def test_admin_only(self, desk, library):
        issued = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})

        refused = await desk("circulation.force_close", {"loan_id": issued.data["loan_id"]})
        assert refused.status_code == 403

        closed = await desk("circulation.force_close", {"loan_id": issued.data["loan_id"]}, Role.ADMIN)
        assert closed.status_code == 200
        assert closed.data["status"] == "RETURNED"

        copy = await desk("catalog.scan_barcode", {"barcode": "BC-0001"})
        assert copy.data["status"] == "AVAILABLE"

    async def test_missing_loan(self, desk):
        response = await desk("circulation.force_close", {"loan_id": 4242}, Role.ADMIN)
        assert response.status_code == 404


class TestLoanQueryTools:
    async def test_member_active_loans_and_history(self, desk, library, clock):
        first = await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0001"})
        await desk("circulation.issue", {"member_id": library.member_id, "barcode": "BC-0002"})
        clock.now = ISSUED_AT + timedelta(days=1)
        await desk("circulation.return", {"loan_id": first.data["loan_id"]})

        active = await desk("circulation.member_active_loans", {"member_id": library.member_id})
        assert [loan["barcode"] for loan in active.data] == ["BC-0002"]

        everything = await desk("circulation.member_loans", {"member_id": library.member_id})
        assert len(everything.data) == 2

        returned = await desk("circulation.member_loans", {"member_id": library.member_id, "status": "RETURNED"})
        assert [loan["id"] for loan in returned.data] == [first.data["loan_id"]]

        open_loans = await desk("circulation.open_loans", {"limit": 10})
        assert open_loans.data["total"] == 1

        loan = await desk("circulation.get_loan", {"loan_id": first.data["loan_id"]})
        history = await desk("circulation.copy_history", {"copy_id": loan.data["copy_id"]})
        assert [entry["id"] for entry in history.data] == [first.data["loan_id"]]

    async def test_students_cannot_read_other_loans(self, desk, library):
        response = await desk("circulation.member_loans", {"member_id": library.member_id}, Role.STUDENT)
        assert response.status_code == 403
