"""Test configuration and fixtures for the library backend.

1. Isolated databases - each test gets its own SQLite file
2. Configuration overrides - cheap bcrypt rounds, short lock timeout
3. A small seeded library - one membership type, one book with copies, one member
4. An app with tokens for each role, for tests that go through ``LibraryApp.invoke``
"""

from collections.abc import Generator
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import logfire
import pytest
from sqlalchemy.orm import Session

from library_circulation.auth import hash_password
from library_circulation.config import LibraryConfig, reset_config
from library_circulation.database.catalog_repository import (
    BookCreateSchema,
    BookRepository,
    CopyCreateSchema,
    CopyRepository,
    LocationCreateSchema,
    LocationRepository,
)
from library_circulation.database.membership_repository import (
    MemberCreateSchema,
    MemberRepository,
    MembershipTypeCreateSchema,
    MembershipTypeRepository,
)
from library_circulation.database.session import DatabaseManager
from library_circulation.database.user_repository import UserCreateSchema, UserRepository
from library_circulation.models.users import Role
from library_circulation.server import LibraryApp

TEST_PASSWORD = "secret-pass"


def pytest_configure(config):
    logfire.configure(send_to_logfire=False, console=False)
    config.addinivalue_line("markers", "concurrency: tests that run transactions on several threads")


# === Configuration Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_library.db"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[LibraryConfig, None, None]:
    reset_config()
    config = LibraryConfig(
        _env_file=None,
        database_path=test_db_path,
        sqlite_busy_timeout=5.0,
        jwt_secret="test-secret-key-123",
        bcrypt_rounds=4,
        environment="test",
    )
    yield config
    reset_config()


# === Database Fixtures ===


@pytest.fixture
def db(test_config: LibraryConfig) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager.from_config(test_config)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def session(db: DatabaseManager) -> Generator[Session, None, None]:
    """A session whose work is rolled back after the test."""
    s = db.create_session()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@dataclass
class SeededLibrary:
    type_id: int
    location_id: int
    book_id: int
    member_id: int
    barcodes: list[str] = field(default_factory=list)


@pytest.fixture
def library(db: DatabaseManager) -> SeededLibrary:
    """
    A committed minimal library.

    STANDARD membership: 2 loans, 14 days, 0.50 per late day.
    One book with copies BC-0001..BC-0003 and one ACTIVE member.
    """
    with db.session_scope() as s:
        membership_type = MembershipTypeRepository(s).create(
            MembershipTypeCreateSchema(
                type_name="STANDARD", loan_limit=2, loan_period_days=14, daily_late_fee=Decimal("0.50")
            )
        )
        location = LocationRepository(s).create(LocationCreateSchema(location_name="Main Stacks"))
        book = BookRepository(s).create(
            BookCreateSchema(isbn="978-0-306-40615-7", title="Transactions and You", publisher="Test Press")
        )
        barcodes = []
        for n in range(1, 4):
            copy = CopyRepository(s).create(
                CopyCreateSchema(book_id=book.id, barcode=f"BC-000{n}", location_id=location.id)
            )
            barcodes.append(copy.barcode)
        member = MemberRepository(s).register(
            MemberCreateSchema(first_name="Ada", last_name="Lovelace", email="ada@example.com")
        )
        return SeededLibrary(
            type_id=membership_type.id,
            location_id=location.id,
            book_id=book.id,
            member_id=member.id,
            barcodes=barcodes,
        )


# === Application Fixtures ===


@pytest.fixture
def app(test_config: LibraryConfig, db: DatabaseManager) -> LibraryApp:
    return LibraryApp(test_config, db=db)


@dataclass
class Accounts:
    tokens: dict[Role, str]
    user_ids: dict[Role, int]
    student_member_id: int


@pytest.fixture
def accounts(app: LibraryApp, library: SeededLibrary) -> Accounts:
    """One user per role; the student is linked to its own member record."""
    tokens = {}
    user_ids = {}
    with app.db.session_scope() as s:
        users = UserRepository(s)
        for role, name in ((Role.ADMIN, "Ana Admin"), (Role.LIBRARIAN, "Lee Librarian"), (Role.STUDENT, "Sam Student")):
            user = users.create(
                UserCreateSchema(
                    full_name=name,
                    email=f"{role.value}@library.test",
                    password_hash=hash_password(TEST_PASSWORD, rounds=4),
                    role=role,
                )
            )
            tokens[role] = app.auth.issue(user)
            user_ids[role] = user.id
        member = MemberRepository(s).register(
            MemberCreateSchema(
                first_name="Sam", last_name="Student", email="sam@example.com", user_id=user_ids[Role.STUDENT]
            )
        )
    return Accounts(tokens=tokens, user_ids=user_ids, student_member_id=member.id)
