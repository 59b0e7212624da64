"""
Circulation repository for the library backend.

This repository owns the loan lifecycle:

1. **Issue**: lend an AVAILABLE copy to an eligible member
2. **Return**: close an open loan, release the copy, assess any late fee
3. **Force-close**: staff override that closes a loan without a fee
4. **Queries**: loan details, a member's loans, open loans, copy history

Issue and return are the only writers of the LOANED copy status, and they
always change the loan and the copy in the same transaction, so a copy is
LOANED exactly while one open loan references it. Row locks are taken in a
fixed order (member, then copy) to keep concurrent issuances deadlock free.

Like every repository here, nothing is committed; the caller's
``session_scope()`` decides.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..errors import (
    CopyUnavailableError,
    LoanClosedError,
    LoanLimitReachedError,
    MemberInactiveError,
    NotFoundError,
    UnpaidFeesError,
)
from ..models.catalog import CopyStatus
from ..models.circulation import IssuedCopy, IssuedMember, IssueReceipt, LoanDetails, LoanStatus, ReturnReceipt
from ..models.circulation import Loan as LoanModel
from ..models.fees import FeeStatus, FeeType
from ..models.membership import MemberStatus
from ..observability.context import trace_repository_operation
from ..observability.metrics import record_circulation_event, record_fee_assessed
from .catalog_repository import CopyRepository
from .fee_repository import FeeRepository
from .membership_repository import MemberRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import OPEN_LOAN_STATUSES, AlertTypeEnum
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .schema import LoanFee as LoanFeeDB
from .schema import MemberAlert as MemberAlertDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class CirculationRepository(BaseRepository[LoanDB, LoanModel]):
    """
    Repository for circulation operations.

    Coordinates the member, copy, loan and fee tables. Every public write
    method leaves the session either fully updated or raising, never half way.
    """

    entity_label = "Loan"

    def __init__(self, session):
        """Initialize with database session and sub-repositories."""
        super().__init__(session)
        self.member_repo = MemberRepository(session)
        self.copy_repo = CopyRepository(session)
        self.fee_repo = FeeRepository(session)

    @property
    def model_class(self) -> type[LoanDB]:
        return LoanDB

    @property
    def response_schema(self) -> type[LoanModel]:
        return LoanModel

    def count_open_loans(self, member_id: int) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id)).where(
                    LoanDB.member_id == member_id,
                    LoanDB.status.in_(OPEN_LOAN_STATUSES),
                )
            ).scalar(),
            "Failed to count open loans",
        ) or 0

    def issue_book(
        self,
        member_id: int,
        barcode: str,
        issued_by: int | None = None,
        now: datetime | None = None,
    ) -> IssueReceipt:
        """
        Lend the copy with ``barcode`` to a member.

        Checks run in this order and the first failure aborts with no writes:

        1. member exists (``NotFoundError``)
        2. member is ACTIVE (``MemberInactiveError``)
        3. copy exists (``NotFoundError``)
        4. copy is AVAILABLE (``CopyUnavailableError``)
        5. open loans below the membership loan limit (``LoanLimitReachedError``)
        6. no UNPAID fees (``UnpaidFeesError``)

        The loan records the membership terms in force now; later edits to
        the membership type do not move its due date or fee rate.

        Args:
            member_id: Borrowing member
            barcode: Barcode of the physical copy
            issued_by: User id of the staff member at the desk, if any
            now: Issue time (defaults to the current time)

        Returns:
            Receipt describing the new loan
        """
        now = now or datetime.now()

        with trace_repository_operation("circulation", "issue_book", "loans") as span:
            span.set_attribute("member_id", member_id)
            span.set_attribute("barcode", barcode)

            member = self.member_repo.get_for_update(member_id)
            if member.status != MemberStatus.ACTIVE:
                logger.info("Issue refused: member %s is %s", member_id, member.status.value)
                raise MemberInactiveError(member.status.value)

            copy = self.copy_repo.get_for_update_by_barcode(barcode)
            if copy.status != CopyStatus.AVAILABLE:
                logger.info("Issue refused: copy %s is %s", barcode, copy.status.value)
                raise CopyUnavailableError(copy.status.value)

            terms = self.member_repo.get_terms(member)
            open_loans = self.count_open_loans(member_id)
            if open_loans >= terms.loan_limit:
                logger.info("Issue refused: member %s at loan limit %s", member_id, terms.loan_limit)
                raise LoanLimitReachedError(open_loans, terms.loan_limit)

            unpaid = self.fee_repo.unpaid_total(member_id)
            if unpaid > 0:
                logger.info("Issue refused: member %s owes %s", member_id, unpaid)
                raise UnpaidFeesError(unpaid)

            loan = LoanDB(
                member_id=member.id,
                copy_id=copy.id,
                checkout_date=now,
                due_date=now + timedelta(days=terms.loan_period_days),
                status=LoanStatus.ACTIVE,
                loan_period_days=terms.loan_period_days,
                daily_late_fee=terms.daily_late_fee,
                issued_by=issued_by,
            )
            self.session.add(loan)
            try:
                self.session.flush()
            except IntegrityError as e:
                # Another transaction opened a loan on this copy first
                logger.info("Issue lost race for copy %s", barcode)
                raise CopyUnavailableError(CopyStatus.LOANED.value) from e

            # Compare-and-set: only an AVAILABLE copy may become LOANED
            result = safe_query(
                self.session,
                lambda s: s.execute(
                    update(BookCopyDB)
                    .where(BookCopyDB.id == copy.id, BookCopyDB.status == CopyStatus.AVAILABLE)
                    .values(status=CopyStatus.LOANED)
                    .execution_options(synchronize_session="fetch")
                ),
                "Failed to update copy status",
            )
            if result.rowcount != 1:
                self.session.refresh(copy)
                raise CopyUnavailableError(copy.status.value)

            span.set_attribute("loan_id", loan.id)

        record_circulation_event("issue")
        logger.info("Issued copy %s to member %s as loan %s", barcode, member_id, loan.id)

        return IssueReceipt(
            loan_id=loan.id,
            member=IssuedMember(member_id=member.id, name=member.full_name, email=member.email),
            book=IssuedCopy(
                title=copy.book.title,
                isbn=copy.book.isbn,
                barcode=copy.barcode,
                location=copy.location.location_name if copy.location else "Not specified",
            ),
            checkout_date=loan.checkout_date,
            due_date=loan.due_date,
            loan_period_days=loan.loan_period_days,
            status=LoanStatus.ACTIVE,
        )

    def _get_open_loan_for_update(self, loan_id: int) -> LoanDB:
        loan = self._get_db(loan_id, lock=True)
        if loan is None:
            raise LoanClosedError(loan_id)
        if loan.status not in OPEN_LOAN_STATUSES:
            raise LoanClosedError(loan_id, loan.status.value)
        return loan

    def return_loan(self, loan_id: int, now: datetime | None = None) -> ReturnReceipt:
        """
        Close an open loan and put its copy back on the shelf.

        A late return is charged ``days late x daily_late_fee`` (the rate
        recorded on the loan) as a LATE_RETURN fee in the same transaction.
        Once the member has no OVERDUE loans left, their open overdue alerts
        are resolved.

        Raises:
            LoanClosedError: The loan does not exist or is already RETURNED
        """
        now = now or datetime.now()

        with trace_repository_operation("circulation", "return_loan", "loans") as span:
            span.set_attribute("loan_id", loan_id)

            loan = self._get_open_loan_for_update(loan_id)
            copy = self.copy_repo._get_db_or_404(loan.copy_id, lock=True)

            loan.status = LoanStatus.RETURNED
            loan.returned_date = now
            copy.status = CopyStatus.AVAILABLE

            late_days = max(0, (now.date() - loan.due_date.date()).days)
            fee_amount = (Decimal(late_days) * Decimal(loan.daily_late_fee)).quantize(Decimal("0.01"))
            fee = None
            if late_days > 0 and fee_amount > 0:
                fee = LoanFeeDB(
                    member_id=loan.member_id,
                    loan_id=loan.id,
                    fee_type=FeeType.LATE_RETURN,
                    amount=fee_amount,
                    status=FeeStatus.UNPAID,
                    assessed_date=now,
                    notes=f"Returned {late_days} day(s) late",
                )
                self.session.add(fee)

            safe_flush(self.session, "return loan")
            self._resolve_overdue_alerts_if_clear(loan.member_id, now)

            span.set_attribute("late_days", late_days)

        record_circulation_event("return")
        if fee is not None:
            record_fee_assessed(FeeType.LATE_RETURN.value)
            logger.info("Late fee %s assessed on loan %s", fee_amount, loan.id)
        logger.info("Returned loan %s (copy %s)", loan.id, copy.barcode)

        return ReturnReceipt(
            loan=self._to_response_model(loan),
            barcode=copy.barcode,
            late_days=late_days,
            fee_assessed=fee_amount if fee is not None else Decimal("0.00"),
            fee_id=fee.id if fee is not None else None,
        )

    def force_close(self, loan_id: int, now: datetime | None = None) -> LoanModel:
        """
        Staff override: close a loan without assessing a fee.

        Unlike a return, a missing loan is a ``NotFoundError``. A LOANED copy
        is released to AVAILABLE; a copy staff already moved elsewhere keeps
        its status.
        """
        now = now or datetime.now()

        with trace_repository_operation("circulation", "force_close", "loans"):
            loan = self._get_db_or_404(loan_id, lock=True)
            if loan.status == LoanStatus.RETURNED:
                raise LoanClosedError(loan_id, loan.status.value)

            loan.status = LoanStatus.RETURNED
            loan.returned_date = now
            copy = self.copy_repo._get_db_or_404(loan.copy_id, lock=True)
            if copy.status == CopyStatus.LOANED:
                copy.status = CopyStatus.AVAILABLE

            safe_flush(self.session, "force close loan")
            self._resolve_overdue_alerts_if_clear(loan.member_id, now)

        record_circulation_event("force_close")
        logger.warning("Loan %s force-closed", loan_id)
        return self._to_response_model(loan)

    def _resolve_overdue_alerts_if_clear(self, member_id: int, now: datetime) -> int:
        overdue_left = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id)).where(
                    LoanDB.member_id == member_id,
                    LoanDB.status == LoanStatus.OVERDUE,
                )
            ).scalar(),
            "Failed to count overdue loans",
        )
        if overdue_left:
            return 0

        result = safe_query(
            self.session,
            lambda s: s.execute(
                update(MemberAlertDB)
                .where(
                    MemberAlertDB.member_id == member_id,
                    MemberAlertDB.alert_type == AlertTypeEnum.OVERDUE,
                    MemberAlertDB.resolved_at.is_(None),
                )
                .values(resolved_at=now)
                .execution_options(synchronize_session=False)
            ),
            "Failed to resolve overdue alerts",
        )
        return result.rowcount

    # Queries

    def _details_query(self):
        return (
            select(LoanDB)
            .options(
                joinedload(LoanDB.copy).joinedload(BookCopyDB.book),
                joinedload(LoanDB.member),
            )
        )

    def _to_details(self, loan: LoanDB) -> LoanDetails:
        return LoanDetails(
            **self._to_response_model(loan).model_dump(),
            title=loan.copy.book.title,
            isbn=loan.copy.book.isbn,
            barcode=loan.copy.barcode,
            card_number=loan.member.card_number,
            member_name=loan.member.full_name,
        )

    def get_loan(self, loan_id: int) -> LoanDetails:
        loan = safe_query(
            self.session,
            lambda s: s.execute(self._details_query().where(LoanDB.id == loan_id)).unique().scalar_one_or_none(),
            "Failed to get loan",
        )
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return self._to_details(loan)

    def member_loans(self, member_id: int, status: LoanStatus | None = None) -> list[LoanDetails]:
        self.member_repo._get_db_or_404(member_id)
        stmt = self._details_query().where(LoanDB.member_id == member_id)
        if status:
            stmt = stmt.where(LoanDB.status == status)
        stmt = stmt.order_by(LoanDB.checkout_date.desc(), LoanDB.id.desc())
        rows = safe_query(self.session, lambda s: s.execute(stmt).unique().scalars().all(), "Failed to list loans")
        return [self._to_details(row) for row in rows]

    def open_loans(self, pagination: PaginationParams | None = None) -> PaginatedResponse[LoanDetails]:
        pagination = pagination or PaginationParams()
        base = select(LoanDB).where(LoanDB.status.in_(OPEN_LOAN_STATUSES))
        total = safe_query(
            self.session,
            lambda s: s.execute(select(func.count()).select_from(base.subquery())).scalar(),
            "Failed to count open loans",
        ) or 0
        stmt = (
            self._details_query()
            .where(LoanDB.status.in_(OPEN_LOAN_STATUSES))
            .order_by(LoanDB.due_date, LoanDB.id)
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        rows = safe_query(self.session, lambda s: s.execute(stmt).unique().scalars().all(), "Failed to list open loans")
        return PaginatedResponse[LoanDetails](
            items=[self._to_details(row) for row in rows],
            total=total,
            limit=pagination.limit,
            offset=pagination.offset,
        )

    def copy_history(self, copy_id: int) -> list[LoanDetails]:
        self.copy_repo._get_db_or_404(copy_id)
        stmt = (
            self._details_query()
            .where(LoanDB.copy_id == copy_id)
            .order_by(LoanDB.checkout_date.desc(), LoanDB.id.desc())
        )
        rows = safe_query(self.session, lambda s: s.execute(stmt).unique().scalars().all(), "Failed to get copy history")
        return [self._to_details(row) for row in rows]

