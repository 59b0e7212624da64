"""
Pydantic models for the library backend.

These are the shapes that leave the repositories and end up in the ``data``
field of the response envelope:

- catalog: Book, BookCopy, Location
- membership: Member, MembershipType
- circulation: Loan and the issue/return receipts
- fees: LoanFee, FeePayment, FeeSummary
- alerts: MemberAlert
- users: login accounts
"""

from .alerts import AlertType, MemberAlert, OverdueRunResult
from .catalog import Book, BookCopy, BookDetails, CopyDetails, CopyStatus, Location
from .circulation import IssueReceipt, Loan, LoanDetails, LoanStatus, ReturnReceipt
from .fees import FeePayment, FeeStatus, FeeSummary, FeeType, LoanFee
from .membership import Member, MembershipType, MemberStatus
from .users import Role, User

__all__ = [
    "AlertType",
    "Book",
    "BookCopy",
    "BookDetails",
    "CopyDetails",
    "CopyStatus",
    "FeePayment",
    "FeeStatus",
    "FeeSummary",
    "FeeType",
    "IssueReceipt",
    "Loan",
    "LoanDetails",
    "LoanFee",
    "LoanStatus",
    "Location",
    "Member",
    "MemberAlert",
    "MemberStatus",
    "MembershipType",
    "OverdueRunResult",
    "ReturnReceipt",
    "Role",
    "User",
]
