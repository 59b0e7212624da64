"""Concurrent issuance against one database file.

Each desk runs in its own thread with its own transaction. Whatever the
interleaving, a copy is lent at most once and a member never exceeds their
loan limit.
"""

import threading
from datetime import datetime

import pytest
from sqlalchemy import func, select

from library_circulation.database.circulation_repository import CirculationRepository
from library_circulation.database.membership_repository import MembershipTypeRepository, MembershipTypeUpdateSchema
from library_circulation.database.membership_repository import MemberCreateSchema, MemberRepository
from library_circulation.database.schema import Loan as LoanDB
from library_circulation.errors import CopyUnavailableError, LibraryError, LoanLimitReachedError

ISSUED_AT = datetime(2024, 3, 1, 10, 0)

pytestmark = pytest.mark.concurrency


def run_desks(db, requests):
    """Issue ``(member_id, barcode)`` pairs in parallel; return receipts and errors."""
    barrier = threading.Barrier(len(requests))
    receipts = []
    errors = []
    lock = threading.Lock()

    def desk(member_id, barcode):
        barrier.wait()
        try:
            with db.session_scope() as s:
                receipt = CirculationRepository(s).issue_book(member_id, barcode, now=ISSUED_AT)
        except LibraryError as e:
            with lock:
                errors.append(e)
        else:
            with lock:
                receipts.append(receipt)

    threads = [threading.Thread(target=desk, args=request) for request in requests]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return receipts, errors


def open_loan_count(db):
    with db.session_scope() as s:
        return s.execute(select(func.count(LoanDB.id)).where(LoanDB.returned_date.is_(None))).scalar()


class TestConcurrentIssue:
    def test_same_copy_lent_once(self, db, library):
        with db.session_scope() as s:
            other = MemberRepository(s).register(
                MemberCreateSchema(first_name="Grace", last_name="Hopper", email="grace@example.com")
            )

        receipts, errors = run_desks(db, [(library.member_id, "BC-0001"), (other.id, "BC-0001")])

        assert len(receipts) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], CopyUnavailableError)
        assert open_loan_count(db) == 1

    def test_many_desks_one_copy(self, db, library):
        with db.session_scope() as s:
            members = MemberRepository(s)
            member_ids = [
                members.register(
                    MemberCreateSchema(first_name=f"Reader{i}", email=f"reader{i}@example.com")
                ).id
                for i in range(6)
            ]

        receipts, errors = run_desks(db, [(member_id, "BC-0002") for member_id in member_ids])

        assert len(receipts) == 1
        assert all(isinstance(e, CopyUnavailableError) for e in errors)
        assert len(errors) == 5

    def test_loan_limit_holds_under_contention(self, db, library):
        with db.session_scope() as s:
            MembershipTypeRepository(s).update(library.type_id, MembershipTypeUpdateSchema(loan_limit=1))

        receipts, errors = run_desks(db, [(library.member_id, barcode) for barcode in library.barcodes])

        assert len(receipts) == 1
        assert len(errors) == 2
        assert all(isinstance(e, LoanLimitReachedError) for e in errors)
        assert open_loan_count(db) == 1
