"""
SQLAlchemy database schema for the library backend.

Tables mirror the Pydantic models in ``library_circulation.models``:

1. users / membership_types / members - who may borrow, and on what terms
2. locations / books / book_copies - the catalog and its physical inventory
3. loans - the only table that encodes circulation state over time
4. loan_fees / fee_payments - the fee ledger
5. member_alerts - notices derived from loan state

The central consistency rule - a copy is LOANED exactly when one open loan
references it - is protected in the circulation repository and backed here
by a partial unique index on open loans per copy.
"""

import enum
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class RoleEnum(str, enum.Enum):
    """Database enum for user roles."""

    ADMIN = "admin"
    LIBRARIAN = "librarian"
    STUDENT = "student"


class MemberStatusEnum(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class CopyStatusEnum(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    LOANED = "LOANED"
    MAINTENANCE = "MAINTENANCE"
    LOST = "LOST"


class LoanStatusEnum(str, enum.Enum):
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"


class FeeStatusEnum(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class FeeTypeEnum(str, enum.Enum):
    LATE_RETURN = "LATE_RETURN"
    LOST_ITEM = "LOST_ITEM"
    DAMAGE = "DAMAGE"
    OTHER = "OTHER"


class AlertTypeEnum(str, enum.Enum):
    OVERDUE = "OVERDUE"


OPEN_LOAN_STATUSES = (LoanStatusEnum.ACTIVE, LoanStatusEnum.OVERDUE)


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    # Store the enum values (not member names) so SQL literals match the API.
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


class User(Base):
    """
    Users table - login accounts for admins, librarians and students.

    Students additionally own a row in ``members``.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(_enum(RoleEnum), nullable=False, default=RoleEnum.STUDENT)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="user", uselist=False)

    __table_args__ = (
        Index("idx_user_role", "role"),
    )


class MembershipType(Base):
    """
    Membership types - borrowing terms shared by many members.

    The loan period and daily fee are copied onto each loan at issuance, so
    editing a type never changes loans already in flight.
    """

    __tablename__ = "membership_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type_name = Column(String(50), nullable=False, unique=True)
    loan_limit = Column(Integer, nullable=False)
    loan_period_days = Column(Integer, nullable=False)
    daily_late_fee = Column(Numeric(8, 2), nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=func.now())

    members = relationship("Member", back_populates="membership_type")

    __table_args__ = (
        CheckConstraint("loan_limit >= 0", name="check_loan_limit_non_negative"),
        CheckConstraint("loan_period_days > 0", name="check_loan_period_positive"),
        CheckConstraint("daily_late_fee >= 0", name="check_daily_fee_non_negative"),
    )


class Member(Base):
    """Members table - library card holders who can originate loans."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, unique=True)
    card_number = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(30), nullable=True)
    status = Column(_enum(MemberStatusEnum), nullable=False, default=MemberStatusEnum.ACTIVE)
    membership_type_id = Column(Integer, ForeignKey("membership_types.id"), nullable=False)
    joined_at = Column(Date, nullable=False, default=date.today)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="member")
    membership_type = relationship("MembershipType", back_populates="members")
    loans = relationship("Loan", back_populates="member")
    fees = relationship("LoanFee", back_populates="member")
    alerts = relationship("MemberAlert", back_populates="member")

    __table_args__ = (
        Index("idx_member_status", "status"),
        Index("idx_member_type", "membership_type_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Location(Base):
    """Shelving locations copies can be assigned to."""

    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    copies = relationship("BookCopy", back_populates="location")


class Book(Base):
    """Books table - bibliographic records; physical items live in book_copies."""

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(17), nullable=False, unique=True)
    title = Column(String(500), nullable=False)
    subtitle = Column(String(500), nullable=True)
    publisher = Column(String(200), nullable=True)
    publication_year = Column(Integer, nullable=True)
    language = Column(String(50), nullable=True)
    edition = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copies = relationship("BookCopy", back_populates="book", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_book_title", "title"),
        CheckConstraint(
            "publication_year IS NULL OR publication_year >= 1450",
            name="check_publication_year_valid",
        ),
    )


class BookCopy(Base):
    """
    Book copies - individually barcoded inventory items.

    ``status`` is LOANED exactly while one ACTIVE/OVERDUE loan references
    the copy; everything else is set by staff.
    """

    __tablename__ = "book_copies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    barcode = Column(String(50), nullable=False, unique=True)
    status = Column(_enum(CopyStatusEnum), nullable=False, default=CopyStatusEnum.AVAILABLE)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    acquisition_date = Column(Date, nullable=True)
    condition_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="copies")
    location = relationship("Location", back_populates="copies")
    loans = relationship("Loan", back_populates="copy")

    __table_args__ = (
        Index("idx_copy_book", "book_id"),
        Index("idx_copy_status", "status"),
    )


class Loan(Base):
    """
    Loans - one copy lent to one member for a bounded period.

    Created only by issuance, closed only by return or force-close, never
    deleted. ``loan_period_days`` and ``daily_late_fee`` are the membership
    terms in force at issuance.
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    copy_id = Column(Integer, ForeignKey("book_copies.id"), nullable=False)
    checkout_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    returned_date = Column(DateTime, nullable=True)
    status = Column(_enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.ACTIVE)
    loan_period_days = Column(Integer, nullable=False)
    daily_late_fee = Column(Numeric(8, 2), nullable=False, default=0)
    issued_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="loans")
    copy = relationship("BookCopy", back_populates="loans")
    fees = relationship("LoanFee", back_populates="loan")

    __table_args__ = (
        Index("idx_loan_member_status", "member_id", "status"),
        Index("idx_loan_copy", "copy_id"),
        Index("idx_loan_status_due", "status", "due_date"),
        # At most one open loan per copy
        Index(
            "uq_loan_open_copy",
            "copy_id",
            unique=True,
            sqlite_where=text("status IN ('ACTIVE', 'OVERDUE')"),
            postgresql_where=text("status IN ('ACTIVE', 'OVERDUE')"),
        ),
        CheckConstraint(
            "(status = 'RETURNED' AND returned_date IS NOT NULL)"
            " OR (status != 'RETURNED' AND returned_date IS NULL)",
            name="check_returned_date_matches_status",
        ),
        CheckConstraint("due_date > checkout_date", name="check_due_after_checkout"),
        CheckConstraint("loan_period_days > 0", name="check_loan_period_days_positive"),
    )


class LoanFee(Base):
    """Fees charged against a member, optionally tied to a loan."""

    __tablename__ = "loan_fees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True)
    fee_type = Column(_enum(FeeTypeEnum), nullable=False, default=FeeTypeEnum.LATE_RETURN)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(_enum(FeeStatusEnum), nullable=False, default=FeeStatusEnum.UNPAID)
    assessed_date = Column(DateTime, nullable=False, default=func.now())
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="fees")
    loan = relationship("Loan", back_populates="fees")
    payments = relationship("FeePayment", back_populates="fee")

    __table_args__ = (
        Index("idx_fee_member_status", "member_id", "status"),
        CheckConstraint("amount >= 0", name="check_fee_amount_non_negative"),
    )

    @property
    def amount_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0.00"))


class FeePayment(Base):
    """Payments received against a fee (immutable)."""

    __tablename__ = "fee_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fee_id = Column(Integer, ForeignKey("loan_fees.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(DateTime, nullable=False, default=func.now())
    method = Column(String(30), nullable=False, default="cash")
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    fee = relationship("LoanFee", back_populates="payments")

    __table_args__ = (
        Index("idx_payment_fee", "fee_id"),
        CheckConstraint("amount > 0", name="check_payment_positive"),
    )


class MemberAlert(Base):
    """Notices raised against a member; active while ``resolved_at`` is null."""

    __tablename__ = "member_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    alert_type = Column(_enum(AlertTypeEnum), nullable=False, default=AlertTypeEnum.OVERDUE)
    message = Column(Text, nullable=False)
    alert_date = Column(DateTime, nullable=False, default=func.now())
    resolved_at = Column(DateTime, nullable=True)

    member = relationship("Member", back_populates="alerts")

    __table_args__ = (
        Index("idx_alert_member_open", "member_id", "alert_type", "resolved_at"),
    )
