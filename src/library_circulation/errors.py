"""
Error taxonomy for the library backend.

Every failure an operation can report to a caller is one of these classes.
Each carries the HTTP-equivalent status code used in the response envelope,
a human-readable message and optional structured ``errors`` detail (counts,
limits, current status) that lets the caller act on the failure.

Business-rule variants subclass ``ValidationError`` so callers that only care
about the status class can catch the parent, while tests and handlers can
match the precise rule that failed.
"""

from decimal import Decimal
from typing import Any


class LibraryError(Exception):
    """Base class for errors surfaced through the response envelope."""

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, errors: Any = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(LibraryError):
    """Malformed input or a business-rule violation."""

    status_code = 400
    default_message = "Validation failed"


class AuthenticationError(LibraryError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(LibraryError):
    """Authenticated, but the role may not invoke the operation."""

    status_code = 403
    default_message = "Access denied"


class NotFoundError(LibraryError):
    """A referenced entity does not exist."""

    status_code = 404
    default_message = "Resource not found"


class InternalError(LibraryError):
    """Datastore or unexpected failure; details stay in the server log."""

    status_code = 500


# Business-rule variants


class DuplicateError(ValidationError):
    """A unique attribute (ISBN, barcode, email, ...) is already taken."""


class InvalidTransitionError(ValidationError):
    """A requested status change is not allowed from the current state."""


class MemberInactiveError(ValidationError):
    def __init__(self, status: str):
        super().__init__(
            f"Member account is {status}. Cannot issue book",
            {"reason": "member_inactive", "status": status},
        )
        self.status = status


class CopyUnavailableError(ValidationError):
    def __init__(self, current_status: str):
        super().__init__(
            f"Book copy is {current_status}. Expected: AVAILABLE",
            {"reason": "copy_unavailable", "current_status": current_status},
        )
        self.current_status = current_status


class LoanLimitReachedError(ValidationError):
    def __init__(self, current: int, limit: int):
        super().__init__(
            f"Member has reached loan limit. Active loans: {current}/{limit}",
            {"reason": "loan_limit_reached", "current": current, "limit": limit},
        )
        self.current = current
        self.limit = limit


class UnpaidFeesError(ValidationError):
    def __init__(self, total: Decimal):
        super().__init__(
            f"Member has unpaid fees: {total}. Please pay before issuing new book",
            {"reason": "unpaid_fees", "total": str(total)},
        )
        self.total = total


class LoanClosedError(ValidationError):
    def __init__(self, loan_id: int, status: str | None = None):
        if status is None:
            message = f"Loan {loan_id} not found"
        else:
            message = f"Loan {loan_id} is already closed (status: {status})"
        super().__init__(
            message,
            {"reason": "loan_closed_or_missing", "loan_id": loan_id, "status": status},
        )
        self.loan_id = loan_id
        self.status = status
