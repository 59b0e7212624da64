"""
Fee ledger repository.

Fees are charges against a member (late returns, lost or damaged items).
A fee moves UNPAID -> PARTIAL -> PAID as payments arrive, or straight to
PAID when staff waive it.

Only UNPAID amounts count toward the issuance gate; a partially paid fee
does not block borrowing.
"""

import logging
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from ..errors import InvalidTransitionError, ValidationError
from ..models.fees import FeePayment as FeePaymentModel
from ..models.fees import FeeStatus, FeeSummary, FeeType, PaymentHistoryEntry
from ..models.fees import LoanFee as LoanFeeModel
from ..observability.metrics import record_fee_assessed
from .membership_repository import MemberRepository
from .repository import BaseRepository
from .schema import FeePayment as FeePaymentDB
from .schema import LoanFee as LoanFeeDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class FeeAssessSchema(BaseModel):
    member_id: int
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    fee_type: FeeType = FeeType.OTHER
    loan_id: int | None = None
    notes: str | None = None


class PaymentCreateSchema(BaseModel):
    fee_id: int
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: str = Field(default="cash", max_length=30)


class FeeRepository(BaseRepository[LoanFeeDB, LoanFeeModel]):
    """Repository for fees and the payments made against them."""

    entity_label = "Fee"

    @property
    def model_class(self) -> type[LoanFeeDB]:
        return LoanFeeDB

    @property
    def response_schema(self) -> type[LoanFeeModel]:
        return LoanFeeModel

    def assess(self, data: FeeAssessSchema, now: datetime | None = None) -> LoanFeeModel:
        MemberRepository(self.session)._get_db_or_404(data.member_id)
        fee = LoanFeeDB(
            member_id=data.member_id,
            loan_id=data.loan_id,
            fee_type=data.fee_type,
            amount=data.amount,
            status=FeeStatus.UNPAID,
            assessed_date=now or datetime.now(),
            notes=data.notes,
        )
        self.session.add(fee)
        safe_flush(self.session, "assess fee")
        record_fee_assessed(data.fee_type.value)
        logger.info("Assessed %s fee of %s to member %s", data.fee_type.value, data.amount, data.member_id)
        return self._to_response_model(fee)

    def waive(self, fee_id: int) -> LoanFeeModel:
        fee = self._get_db_or_404(fee_id, lock=True)
        fee.status = FeeStatus.PAID
        safe_flush(self.session, "waive fee")
        logger.info("Waived fee %s for member %s", fee_id, fee.member_id)
        return self._to_response_model(fee)

    def record_payment(
        self, data: PaymentCreateSchema, received_by: int | None = None, now: datetime | None = None
    ) -> LoanFeeModel:
        """
        Apply a payment to a fee.

        A payment that settles the balance marks the fee PAID, anything less
        marks it PARTIAL. Paying more than the balance is rejected.
        """
        fee = self._get_db_or_404(data.fee_id, lock=True)
        if fee.status == FeeStatus.PAID:
            raise InvalidTransitionError(f"Fee {fee.id} is already paid", {"status": fee.status.value})

        balance = fee.amount - fee.amount_paid
        if data.amount > balance:
            raise ValidationError(
                f"Payment of {data.amount} exceeds outstanding balance {balance}",
                {"balance": str(balance), "amount": str(data.amount)},
            )

        payment = FeePaymentDB(
            fee_id=fee.id,
            amount=data.amount,
            payment_date=now or datetime.now(),
            method=data.method,
            received_by=received_by,
        )
        self.session.add(payment)
        fee.payments.append(payment)
        fee.status = FeeStatus.PAID if data.amount == balance else FeeStatus.PARTIAL
        safe_flush(self.session, "record payment")
        logger.info("Recorded payment of %s on fee %s (%s)", data.amount, fee.id, fee.status.value)
        return self._to_response_model(fee)

    def unpaid_total(self, member_id: int) -> Decimal:
        """Sum of UNPAID fee amounts for a member; zero when none."""
        total = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.coalesce(func.sum(LoanFeeDB.amount), 0)).where(
                    LoanFeeDB.member_id == member_id,
                    LoanFeeDB.status == FeeStatus.UNPAID,
                )
            ).scalar(),
            "Failed to total unpaid fees",
        )
        return Decimal(str(total)).quantize(ZERO)

    def list_for_member(self, member_id: int, status: FeeStatus | None = None) -> list[LoanFeeModel]:
        stmt = (
            select(LoanFeeDB)
            .where(LoanFeeDB.member_id == member_id)
            .options(selectinload(LoanFeeDB.payments))
            .order_by(LoanFeeDB.assessed_date.desc(), LoanFeeDB.id.desc())
        )
        if status:
            stmt = stmt.where(LoanFeeDB.status == status)
        rows = safe_query(self.session, lambda s: s.execute(stmt).scalars().all(), "Failed to list fees")
        return [self._to_response_model(row) for row in rows]

    def summary(self, member_id: int) -> FeeSummary:
        MemberRepository(self.session)._get_db_or_404(member_id)
        fees = self.list_for_member(member_id)
        return FeeSummary(
            member_id=member_id,
            total_fees=sum((f.amount for f in fees), ZERO),
            unpaid_fees=sum((f.amount for f in fees if f.status == FeeStatus.UNPAID), ZERO),
            outstanding_balance=sum((f.outstanding for f in fees), ZERO),
            fees=fees,
        )

    def payment_history(self, member_id: int) -> list[PaymentHistoryEntry]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(FeePaymentDB, LoanFeeDB.fee_type, LoanFeeDB.amount)
                .join(LoanFeeDB, FeePaymentDB.fee_id == LoanFeeDB.id)
                .where(LoanFeeDB.member_id == member_id)
                .order_by(FeePaymentDB.payment_date.desc(), FeePaymentDB.id.desc())
            ).all(),
            "Failed to get payment history",
        )
        return [
            PaymentHistoryEntry(
                **FeePaymentModel.model_validate(payment).model_dump(),
                fee_type=fee_type,
                fee_amount=fee_amount,
            )
            for payment, fee_type, fee_amount in rows
        ]
