"""Authentication and account tools.

Tools:
- auth.login: exchange email and password for an access token
- auth.register: self-service student registration (creates user and member)
- auth.me: the calling user's account
- users.create_librarian / users.set_librarian_active / users.list: admin account management
"""

import logging

from pydantic import BaseModel, Field

from ..auth import hash_password, verify_password
from ..database.membership_repository import MemberCreateSchema, MemberRepository
from ..database.repository import PaginationParams
from ..database.user_repository import UserCreateSchema, UserRepository
from ..dispatcher import ADMIN, ANY_ROLE, OperationContext, OperationRegistry, OperationResult
from ..errors import AuthenticationError, ValidationError
from ..models.users import Role, User

logger = logging.getLogger(__name__)

registry = OperationRegistry()

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_LENGTH = 72


class LoginInput(BaseModel):
    email: str = Field(..., description="Account email", examples=["librarian@library.local"])
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)


class RegisterInput(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200, examples=["Jane Doe"])
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    phone: str | None = Field(None, max_length=30)


class CreateLibrarianInput(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)


class SetLibrarianActiveInput(BaseModel):
    user_id: int
    is_active: bool


class ListUsersInput(PaginationParams):
    role: Role | None = None
    query: str | None = Field(None, description="Matches name or email")


def _check_password(ctx: OperationContext, password: str) -> str:
    if len(password) < ctx.config.min_password_length:
        raise ValidationError(
            f"Password must be at least {ctx.config.min_password_length} characters",
            [{"field": "password", "message": "too short"}],
        )
    return hash_password(password, ctx.config.bcrypt_rounds)


@registry.operation("auth.login", LoginInput, roles=None)
def login(ctx: OperationContext, params: LoginInput) -> OperationResult:
    """Exchange email and password for an access token."""
    user = UserRepository(ctx.session).get_by_email_db(params.email)
    if user is None or not verify_password(params.password, user.password_hash):
        logger.info("Failed login for %s", params.email)
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    account = User.model_validate(user)
    return OperationResult("Login successful", {"token": ctx.auth.issue(account), "user": account})


@registry.operation("auth.register", RegisterInput, roles=None, status=201)
def register_student(ctx: OperationContext, params: RegisterInput) -> OperationResult:
    """Register a student account and its library membership."""
    password_hash = _check_password(ctx, params.password)
    account = UserRepository(ctx.session).create(
        UserCreateSchema(
            full_name=params.full_name,
            email=params.email,
            password_hash=password_hash,
            role=Role.STUDENT,
        )
    )

    first_name, _, last_name = params.full_name.strip().partition(" ")
    member = MemberRepository(ctx.session).register(
        MemberCreateSchema(
            first_name=first_name,
            last_name=last_name.strip(),
            email=params.email,
            phone=params.phone,
            user_id=account.id,
        ),
        default_type_name=ctx.config.default_membership_type,
    )

    return OperationResult(
        "Student registration successful",
        {"token": ctx.auth.issue(account), "user": account, "member": member},
    )


@registry.operation("auth.me", roles=ANY_ROLE)
def current_user(ctx: OperationContext, params) -> OperationResult:
    """Return the calling user's account and, for students, their membership."""
    account = UserRepository(ctx.session).get_or_404(ctx.actor.user_id)
    member = MemberRepository(ctx.session).get_by_user_id(account.id)
    return OperationResult("Current user retrieved", {"user": account, "member": member})


@registry.operation("users.create_librarian", CreateLibrarianInput, roles=ADMIN, status=201)
def create_librarian(ctx: OperationContext, params: CreateLibrarianInput) -> OperationResult:
    """Create a librarian account."""
    account = UserRepository(ctx.session).create(
        UserCreateSchema(
            full_name=params.full_name,
            email=params.email,
            password_hash=_check_password(ctx, params.password),
            role=Role.LIBRARIAN,
        )
    )
    return OperationResult("Librarian created successfully", account)


@registry.operation("users.set_librarian_active", SetLibrarianActiveInput, roles=ADMIN)
def set_librarian_active(ctx: OperationContext, params: SetLibrarianActiveInput) -> OperationResult:
    """Activate or deactivate a librarian account."""
    account = UserRepository(ctx.session).set_librarian_active(params.user_id, params.is_active)
    state = "activated" if params.is_active else "deactivated"
    return OperationResult(f"Librarian {state} successfully", account)


@registry.operation("users.list", ListUsersInput, roles=ADMIN)
def list_users(ctx: OperationContext, params: ListUsersInput) -> OperationResult:
    """List user accounts, optionally filtered by role or name."""
    page = UserRepository(ctx.session).list_users(
        role=params.role,
        query=params.query,
        pagination=PaginationParams(limit=params.limit, offset=params.offset),
    )
    return OperationResult("Users retrieved", page)
