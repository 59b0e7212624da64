"""Fee ledger models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..database.schema import FeeStatusEnum as FeeStatus
from ..database.schema import FeeTypeEnum as FeeType


class LoanFee(BaseModel):
    """A charge against a member."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    loan_id: int | None = None
    fee_type: FeeType
    amount: Decimal = Field(..., ge=0)
    status: FeeStatus
    assessed_date: datetime
    notes: str | None = None
    amount_paid: Decimal = Decimal("0.00")

    @property
    def outstanding(self) -> Decimal:
        if self.status == FeeStatus.PAID:
            return Decimal("0.00")
        return self.amount - self.amount_paid


class FeePayment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fee_id: int
    amount: Decimal = Field(..., gt=0)
    payment_date: datetime
    method: str
    received_by: int | None = None


class PaymentHistoryEntry(FeePayment):
    fee_type: FeeType
    fee_amount: Decimal


class FeeSummary(BaseModel):
    """A member's position in the ledger."""

    member_id: int
    total_fees: Decimal
    unpaid_fees: Decimal
    outstanding_balance: Decimal
    fees: list[LoanFee]


__all__ = ["FeePayment", "FeeStatus", "FeeSummary", "FeeType", "LoanFee", "PaymentHistoryEntry"]
