"""
Reporting queries for the library backend.

Read-only projections over the circulation tables. None of these take locks
or write; they reflect whatever was committed when the query ran.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ..models.catalog import CopyStatus
from ..models.circulation import LoanStatus
from ..models.fees import FeeStatus
from ..models.reports import (
    CirculationReportRow,
    DashboardSummary,
    DebtAgingRow,
    InventoryRow,
    MemberActivityRow,
    OverdueReportRow,
    TurnaroundRow,
)
from .schema import OPEN_LOAN_STATUSES
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .schema import LoanFee as LoanFeeDB
from .schema import Member as MemberDB
from .session import safe_query


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class ReportRepository:
    """Aggregate queries used by the admin reports."""

    def __init__(self, session: Session):
        self.session = session

    def overdue(self, now: datetime | None = None) -> list[OverdueReportRow]:
        """Open loans past their due date, most overdue first."""
        now = now or datetime.now()
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB, BookCopyDB.barcode, BookDB.title, MemberDB)
                .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
                .join(BookDB, BookCopyDB.book_id == BookDB.id)
                .join(MemberDB, LoanDB.member_id == MemberDB.id)
                .where(LoanDB.status.in_(OPEN_LOAN_STATUSES), LoanDB.due_date < now)
                .order_by(LoanDB.due_date, LoanDB.id)
            ).all(),
            "Failed to build overdue report",
        )
        return [
            OverdueReportRow(
                loan_id=loan.id,
                title=title,
                barcode=barcode,
                member_id=member.id,
                card_number=member.card_number,
                member_name=member.full_name,
                email=member.email,
                due_date=loan.due_date,
                days_overdue=max(0, (now.date() - loan.due_date.date()).days),
            )
            for loan, barcode, title, member in rows
        ]

    def circulation(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[CirculationReportRow]:
        """Checkouts per title, optionally limited to a checkout date window."""
        stmt = (
            select(
                BookDB.title,
                func.count(LoanDB.id),
                _count_where(LoanDB.status == LoanStatus.RETURNED),
                _count_where(LoanDB.status.in_(OPEN_LOAN_STATUSES)),
            )
            .join(BookCopyDB, BookCopyDB.book_id == BookDB.id)
            .join(LoanDB, LoanDB.copy_id == BookCopyDB.id)
            .group_by(BookDB.id, BookDB.title)
            .order_by(func.count(LoanDB.id).desc(), BookDB.title)
        )
        if start:
            stmt = stmt.where(LoanDB.checkout_date >= start)
        if end:
            stmt = stmt.where(LoanDB.checkout_date <= end)

        rows = safe_query(self.session, lambda s: s.execute(stmt).all(), "Failed to build circulation report")
        return [
            CirculationReportRow(title=title, total_checkouts=total, returned=returned, outstanding=outstanding)
            for title, total, returned, outstanding in rows
        ]

    def inventory(self) -> list[InventoryRow]:
        """Copy counts per title, broken down by status."""
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    BookDB.title,
                    func.count(BookCopyDB.id),
                    _count_where(BookCopyDB.status == CopyStatus.AVAILABLE),
                    _count_where(BookCopyDB.status == CopyStatus.RESERVED),
                    _count_where(BookCopyDB.status == CopyStatus.LOANED),
                    _count_where(BookCopyDB.status == CopyStatus.MAINTENANCE),
                    _count_where(BookCopyDB.status == CopyStatus.LOST),
                )
                .outerjoin(BookCopyDB, BookCopyDB.book_id == BookDB.id)
                .group_by(BookDB.id, BookDB.title)
                .order_by(BookDB.title)
            ).all(),
            "Failed to build inventory report",
        )
        return [
            InventoryRow(
                title=title,
                total_copies=total,
                available=available,
                reserved=reserved,
                loaned=loaned,
                maintenance=maintenance,
                lost=lost,
            )
            for title, total, available, reserved, loaned, maintenance, lost in rows
        ]

    def member_activity(self) -> list[MemberActivityRow]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    MemberDB,
                    func.count(LoanDB.id),
                    _count_where(LoanDB.status == LoanStatus.RETURNED),
                    _count_where(LoanDB.status.in_(OPEN_LOAN_STATUSES)),
                )
                .outerjoin(LoanDB, LoanDB.member_id == MemberDB.id)
                .group_by(MemberDB.id)
                .order_by(func.count(LoanDB.id).desc(), MemberDB.id)
            ).all(),
            "Failed to build member activity report",
        )
        return [
            MemberActivityRow(
                member_id=member.id,
                card_number=member.card_number,
                member_name=member.full_name,
                email=member.email,
                total_loans=total,
                returned_loans=returned,
                outstanding_loans=outstanding,
            )
            for member, total, returned, outstanding in rows
        ]

    def debt_aging(self) -> list[DebtAgingRow]:
        """Members with unsettled fees, largest unpaid balance first."""
        unpaid_sum = func.coalesce(
            func.sum(case((LoanFeeDB.status == FeeStatus.UNPAID, LoanFeeDB.amount), else_=0)), 0
        )
        partial_sum = func.coalesce(
            func.sum(case((LoanFeeDB.status == FeeStatus.PARTIAL, LoanFeeDB.amount), else_=0)), 0
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB, unpaid_sum, partial_sum, func.min(LoanFeeDB.assessed_date))
                .join(LoanFeeDB, LoanFeeDB.member_id == MemberDB.id)
                .where(LoanFeeDB.status.in_([FeeStatus.UNPAID, FeeStatus.PARTIAL]))
                .group_by(MemberDB.id)
                .order_by(unpaid_sum.desc(), MemberDB.id)
            ).all(),
            "Failed to build debt aging report",
        )
        return [
            DebtAgingRow(
                member_id=member.id,
                card_number=member.card_number,
                member_name=member.full_name,
                email=member.email,
                unpaid_fees=Decimal(str(unpaid)).quantize(Decimal("0.01")),
                partial_fees=Decimal(str(partial)).quantize(Decimal("0.01")),
                oldest_fee_date=oldest,
            )
            for member, unpaid, partial, oldest in rows
        ]

    def turnaround(self) -> list[TurnaroundRow]:
        """
        Average loan length of returned loans, by checkout year and month.

        Grouped in Python so the date arithmetic does not depend on the backend.
        """
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB.checkout_date, LoanDB.returned_date).where(
                    LoanDB.status == LoanStatus.RETURNED
                )
            ).all(),
            "Failed to build turnaround report",
        )

        buckets: dict[tuple[int, int], list[float]] = defaultdict(list)
        for checkout_date, returned_date in rows:
            days = (returned_date - checkout_date).total_seconds() / 86400
            buckets[(checkout_date.year, checkout_date.month)].append(days)

        return [
            TurnaroundRow(
                year=year,
                month=month,
                avg_loan_days=round(sum(days) / len(days), 2),
                total_loans=len(days),
            )
            for (year, month), days in sorted(buckets.items(), reverse=True)
        ]

    def dashboard(self, now: datetime | None = None) -> DashboardSummary:
        now = now or datetime.now()

        def scalar(stmt, msg):
            return safe_query(self.session, lambda s: s.execute(stmt).scalar(), msg) or 0

        unpaid = scalar(
            select(func.coalesce(func.sum(LoanFeeDB.amount), 0)).where(LoanFeeDB.status == FeeStatus.UNPAID),
            "Failed to total unpaid fees",
        )
        return DashboardSummary(
            total_members=scalar(select(func.count(MemberDB.id)), "Failed to count members"),
            total_books=scalar(select(func.count(BookDB.id)), "Failed to count books"),
            available_copies=scalar(
                select(func.count(BookCopyDB.id)).where(BookCopyDB.status == CopyStatus.AVAILABLE),
                "Failed to count available copies",
            ),
            open_loans=scalar(
                select(func.count(LoanDB.id)).where(LoanDB.status.in_(OPEN_LOAN_STATUSES)),
                "Failed to count open loans",
            ),
            overdue_loans=scalar(
                select(func.count(LoanDB.id)).where(
                    LoanDB.status.in_(OPEN_LOAN_STATUSES), LoanDB.due_date < now
                ),
                "Failed to count overdue loans",
            ),
            unpaid_fees_total=Decimal(str(unpaid)).quantize(Decimal("0.01")),
        )
