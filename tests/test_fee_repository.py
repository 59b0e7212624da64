"""Tests for the fee ledger."""

from datetime import datetime
from decimal import Decimal

import pytest

from library_circulation.database.fee_repository import FeeAssessSchema, FeeRepository, PaymentCreateSchema
from library_circulation.errors import InvalidTransitionError, NotFoundError, ValidationError
from library_circulation.models.fees import FeeStatus, FeeType

NOW = datetime(2024, 6, 1, 15, 30)


@pytest.fixture
def fees(library, session):
    return FeeRepository(session)


def _assess(fees, member_id, amount, fee_type=FeeType.DAMAGE):
    return fees.assess(FeeAssessSchema(member_id=member_id, amount=Decimal(amount), fee_type=fee_type), now=NOW)


class TestAssess:
    def test_assess_creates_unpaid_fee(self, fees, library):
        fee = _assess(fees, library.member_id, "4.00")

        assert fee.status == FeeStatus.UNPAID
        assert fee.fee_type == FeeType.DAMAGE
        assert fee.amount == Decimal("4.00")
        assert fee.amount_paid == Decimal("0.00")
        assert fee.assessed_date == NOW

    def test_assess_unknown_member(self, fees):
        with pytest.raises(NotFoundError):
            _assess(fees, 999, "1.00")


class TestPayments:
    def test_partial_then_full_payment(self, fees, library):
        fee = _assess(fees, library.member_id, "5.00")

        partial = fees.record_payment(PaymentCreateSchema(fee_id=fee.id, amount=Decimal("2.00")), now=NOW)
        assert partial.status == FeeStatus.PARTIAL
        assert partial.amount_paid == Decimal("2.00")
        assert partial.outstanding == Decimal("3.00")

        paid = fees.record_payment(PaymentCreateSchema(fee_id=fee.id, amount=Decimal("3.00"), method="card"))
        assert paid.status == FeeStatus.PAID
        assert paid.outstanding == Decimal("0.00")

    def test_overpayment_rejected(self, fees, library):
        fee = _assess(fees, library.member_id, "1.50")

        with pytest.raises(ValidationError) as exc_info:
            fees.record_payment(PaymentCreateSchema(fee_id=fee.id, amount=Decimal("2.00")))
        assert exc_info.value.errors["balance"] == "1.50"
        assert fees.get_or_404(fee.id).status == FeeStatus.UNPAID

    def test_payment_on_paid_fee_rejected(self, fees, library):
        fee = _assess(fees, library.member_id, "1.00")
        fees.waive(fee.id)

        with pytest.raises(InvalidTransitionError):
            fees.record_payment(PaymentCreateSchema(fee_id=fee.id, amount=Decimal("1.00")))

    def test_payment_history(self, fees, library):
        first = _assess(fees, library.member_id, "2.00", FeeType.LATE_RETURN)
        second = _assess(fees, library.member_id, "6.00", FeeType.LOST_ITEM)
        fees.record_payment(PaymentCreateSchema(fee_id=first.id, amount=Decimal("2.00")), received_by=None, now=NOW)
        fees.record_payment(
            PaymentCreateSchema(fee_id=second.id, amount=Decimal("1.00")),
            now=datetime(2024, 6, 2, 9, 0),
        )

        history = fees.payment_history(library.member_id)
        assert [(p.fee_type, p.amount) for p in history] == [
            (FeeType.LOST_ITEM, Decimal("1.00")),
            (FeeType.LATE_RETURN, Decimal("2.00")),
        ]
        assert history[0].fee_amount == Decimal("6.00")


class TestUnpaidTotal:
    def test_zero_when_no_fees(self, fees, library):
        assert fees.unpaid_total(library.member_id) == Decimal("0.00")

    def test_counts_only_unpaid(self, fees, library):
        unpaid = _assess(fees, library.member_id, "1.25")
        partial = _assess(fees, library.member_id, "4.00")
        waived = _assess(fees, library.member_id, "9.00")
        fees.record_payment(PaymentCreateSchema(fee_id=partial.id, amount=Decimal("1.00")))
        fees.waive(waived.id)

        assert fees.unpaid_total(library.member_id) == Decimal("1.25")
        fees.waive(unpaid.id)
        assert fees.unpaid_total(library.member_id) == Decimal("0.00")


class TestSummary:
    def test_summary_totals(self, fees, library):
        _assess(fees, library.member_id, "1.00")
        partial = _assess(fees, library.member_id, "3.00")
        paid = _assess(fees, library.member_id, "2.00")
        fees.record_payment(PaymentCreateSchema(fee_id=partial.id, amount=Decimal("0.50")))
        fees.record_payment(PaymentCreateSchema(fee_id=paid.id, amount=Decimal("2.00")))

        summary = fees.summary(library.member_id)

        assert summary.total_fees == Decimal("6.00")
        assert summary.unpaid_fees == Decimal("1.00")
        assert summary.outstanding_balance == Decimal("3.50")
        assert len(summary.fees) == 3

    def test_list_filtered_by_status(self, fees, library):
        _assess(fees, library.member_id, "1.00")
        waived = _assess(fees, library.member_id, "2.00")
        fees.waive(waived.id)

        assert [f.id for f in fees.list_for_member(library.member_id, FeeStatus.PAID)] == [waived.id]

    def test_summary_unknown_member(self, fees):
        with pytest.raises(NotFoundError):
            fees.summary(999)
