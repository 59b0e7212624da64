"""
Seed data for the library backend.

Two layers:

- Reference data every deployment needs: membership types, the first admin
  account and a few shelving locations. Safe to run repeatedly.
- Demo data generated with Faker: books, copies, members and a circulation
  history. Loans are created through ``CirculationRepository`` with
  back-dated clocks, so the demo data obeys the same rules as live traffic.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from faker import Faker
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import hash_password
from ..config import LibraryConfig
from ..errors import LibraryError
from ..models.users import Role
from .catalog_repository import BookCreateSchema, BookRepository, CopyCreateSchema, CopyRepository
from .catalog_repository import LocationCreateSchema, LocationRepository
from .circulation_repository import CirculationRepository
from .membership_repository import MemberCreateSchema, MemberRepository
from .membership_repository import MembershipTypeCreateSchema, MembershipTypeRepository
from .schema import Location as LocationDB
from .schema import User as UserDB
from .user_repository import UserCreateSchema, UserRepository

logger = logging.getLogger(__name__)

MEMBERSHIP_TYPES = [
    MembershipTypeCreateSchema(type_name="STANDARD", loan_limit=5, loan_period_days=14, daily_late_fee=Decimal("0.50")),
    MembershipTypeCreateSchema(type_name="PREMIUM", loan_limit=10, loan_period_days=21, daily_late_fee=Decimal("0.25")),
    MembershipTypeCreateSchema(type_name="STAFF", loan_limit=15, loan_period_days=30, daily_late_fee=Decimal("0.00")),
]

LOCATIONS = [
    LocationCreateSchema(location_name="Main Stacks", description="General collection, floors 1-2"),
    LocationCreateSchema(location_name="Reference", description="Non-circulating reference desk"),
    LocationCreateSchema(location_name="Reserve Shelf", description="Short-term course reserves"),
]


@dataclass
class SeedSummary:
    books: int = 0
    copies: int = 0
    members: int = 0
    loans: int = 0
    returns: int = 0


def generate_isbn13(rng: random.Random) -> str:
    """Generate a valid ISBN-13 number."""
    body = "978" + "".join(str(rng.randint(0, 9)) for _ in range(9))
    total = sum(int(digit) * (3 if i % 2 else 1) for i, digit in enumerate(body))
    return f"{body}{(10 - total % 10) % 10}"


def seed_reference_data(
    session: Session,
    config: LibraryConfig,
    admin_email: str = "admin@library.local",
    admin_password: str = "admin123",
) -> None:
    """Create membership types, locations and the first admin if missing."""
    types = MembershipTypeRepository(session)
    for membership_type in MEMBERSHIP_TYPES:
        if types.get_by_name(membership_type.type_name) is None:
            types.create(membership_type)

    locations = LocationRepository(session)
    existing = set(session.execute(select(LocationDB.location_name)).scalars())
    for location in LOCATIONS:
        if location.location_name not in existing:
            locations.create(location)

    admin_exists = session.execute(select(UserDB.id).where(UserDB.role == Role.ADMIN)).first()
    if not admin_exists:
        UserRepository(session).create(
            UserCreateSchema(
                full_name="Library Administrator",
                email=admin_email,
                password_hash=hash_password(admin_password, config.bcrypt_rounds),
                role=Role.ADMIN,
            )
        )
        logger.warning("Created default admin %s; change its password", admin_email)


def seed_demo_data(
    session: Session,
    num_books: int = 50,
    num_members: int = 30,
    num_loans: int = 60,
    seed: int = 42,
    now: datetime | None = None,
) -> SeedSummary:
    """
    Generate a realistic catalog and circulation history.

    Requires ``seed_reference_data`` to have run first.
    """
    now = now or datetime.now()
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)
    summary = SeedSummary()

    location_ids = [loc.id for loc in LocationRepository(session).list_all()]
    membership_type_ids = [t.id for t in MembershipTypeRepository(session).list_all()]

    books = BookRepository(session)
    copies = CopyRepository(session)
    barcodes = []
    for i in range(num_books):
        book = books.create(
            BookCreateSchema(
                isbn=generate_isbn13(rng),
                title=fake.catch_phrase().title(),
                publisher=fake.company(),
                publication_year=rng.randint(1950, now.year),
                language="English",
                description=fake.text(max_nb_chars=300),
            )
        )
        summary.books += 1
        for c in range(rng.randint(1, 4)):
            barcode = f"BC-{i + 1:05d}-{c + 1}"
            copies.create(
                CopyCreateSchema(
                    book_id=book.id,
                    barcode=barcode,
                    location_id=rng.choice(location_ids) if location_ids else None,
                    acquisition_date=fake.date_between(start_date="-5y", end_date="-1y"),
                )
            )
            barcodes.append(barcode)
            summary.copies += 1

    members = MemberRepository(session)
    member_ids = []
    for _ in range(num_members):
        member = members.register(
            MemberCreateSchema(
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                email=fake.unique.email(),
                phone=fake.phone_number()[:30],
                membership_type_id=rng.choice(membership_type_ids),
            )
        )
        member_ids.append(member.id)
        summary.members += 1

    circulation = CirculationRepository(session)
    rng.shuffle(barcodes)
    for barcode in barcodes[:num_loans]:
        issued_at = now - timedelta(days=rng.randint(1, 90), hours=rng.randint(0, 8))
        try:
            receipt = circulation.issue_book(rng.choice(member_ids), barcode, now=issued_at)
        except LibraryError as e:
            # Limits and fee gates apply to demo members too
            logger.debug("Skipped demo loan of %s: %s", barcode, e.message)
            continue
        summary.loans += 1

        if rng.random() < 0.6:
            returned_at = issued_at + timedelta(days=rng.randint(1, receipt.loan_period_days + 10))
            if returned_at < now:
                circulation.return_loan(receipt.loan_id, now=returned_at)
                summary.returns += 1

    logger.info(
        "Seeded %d books, %d copies, %d members, %d loans (%d returned)",
        summary.books,
        summary.copies,
        summary.members,
        summary.loans,
        summary.returns,
    )
    return summary
