"""Tests for reference and demo seed data."""

import random
from datetime import datetime

from sqlalchemy import func, select

from library_circulation.auth import verify_password
from library_circulation.database.catalog_repository import normalize_isbn
from library_circulation.database.membership_repository import MembershipTypeRepository
from library_circulation.database.schema import OPEN_LOAN_STATUSES, BookCopy, CopyStatusEnum, Loan, Location, User
from library_circulation.database.seed import generate_isbn13, seed_demo_data, seed_reference_data
from library_circulation.models.users import Role

NOW = datetime(2024, 9, 1, 12, 0)


class TestReferenceData:
    def test_creates_types_locations_and_admin(self, db, test_config):
        with db.session_scope() as s:
            seed_reference_data(s, test_config, "root@library.test", "bootstrap-pw")

        with db.session_scope() as s:
            types = {t.type_name: t for t in MembershipTypeRepository(s).list_all()}
            assert set(types) == {"STANDARD", "PREMIUM", "STAFF"}
            assert types["STANDARD"].loan_limit == 5
            assert s.execute(select(func.count(Location.id))).scalar() == 3

            admin = s.execute(select(User).where(User.role == Role.ADMIN)).scalar_one()
            assert admin.email == "root@library.test"
            assert verify_password("bootstrap-pw", admin.password_hash)

    def test_running_twice_adds_nothing(self, db, test_config):
        for _ in range(2):
            with db.session_scope() as s:
                seed_reference_data(s, test_config)

        with db.session_scope() as s:
            assert len(MembershipTypeRepository(s).list_all()) == 3
            assert s.execute(select(func.count(User.id))).scalar() == 1


class TestDemoData:
    def test_isbn13_is_valid(self):
        rng = random.Random(7)
        for _ in range(20):
            isbn = generate_isbn13(rng)
            assert normalize_isbn(isbn) == isbn
            total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(isbn))
            assert total % 10 == 0

    def test_demo_history_obeys_circulation_rules(self, db, test_config):
        with db.session_scope() as s:
            seed_reference_data(s, test_config)
        with db.session_scope() as s:
            summary = seed_demo_data(s, num_books=10, num_members=8, num_loans=15, seed=3, now=NOW)

        assert summary.books == 10
        assert summary.members == 8
        assert 0 < summary.loans <= 15
        assert summary.returns <= summary.loans

        with db.session_scope() as s:
            assert s.execute(select(func.count(Loan.id))).scalar() == summary.loans
            open_copy_ids = set(
                s.execute(select(Loan.copy_id).where(Loan.status.in_(OPEN_LOAN_STATUSES))).scalars()
            )
            loaned_copy_ids = set(
                s.execute(select(BookCopy.id).where(BookCopy.status == CopyStatusEnum.LOANED)).scalars()
            )
            assert open_copy_ids == loaned_copy_ids
            assert len(open_copy_ids) == summary.loans - summary.returns
