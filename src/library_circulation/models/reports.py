"""Read-only reporting projections."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class OverdueReportRow(BaseModel):
    loan_id: int
    title: str
    barcode: str
    member_id: int
    card_number: str
    member_name: str
    email: str
    due_date: datetime
    days_overdue: int


class CirculationReportRow(BaseModel):
    title: str
    total_checkouts: int
    returned: int
    outstanding: int


class InventoryRow(BaseModel):
    title: str
    total_copies: int
    available: int
    reserved: int
    loaned: int
    maintenance: int
    lost: int


class MemberActivityRow(BaseModel):
    member_id: int
    card_number: str
    member_name: str
    email: str
    total_loans: int
    returned_loans: int
    outstanding_loans: int


class DebtAgingRow(BaseModel):
    member_id: int
    card_number: str
    member_name: str
    email: str
    unpaid_fees: Decimal
    partial_fees: Decimal
    oldest_fee_date: datetime | None = None


class TurnaroundRow(BaseModel):
    year: int
    month: int
    avg_loan_days: float
    total_loans: int


class DashboardSummary(BaseModel):
    total_members: int
    total_books: int
    available_copies: int
    open_loans: int
    overdue_loans: int
    unpaid_fees_total: Decimal
