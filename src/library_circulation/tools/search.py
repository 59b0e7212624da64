"""Global search across the catalog and, for staff, members and accounts.

What a caller sees depends on their role:
- student: books
- librarian: books, copies, members
- admin: books, copies, members, users
"""

from pydantic import BaseModel, Field

from ..database.catalog_repository import BookRepository, CopyRepository
from ..database.membership_repository import MemberRepository
from ..database.repository import PaginationParams
from ..database.user_repository import UserRepository
from ..dispatcher import ANY_ROLE, OperationContext, OperationRegistry, OperationResult
from ..models.users import Role

registry = OperationRegistry()


class GlobalSearchInput(BaseModel):
    q: str = Field(..., min_length=1, max_length=100, description="Search term")
    limit: int = Field(default=10, ge=1, le=50)


@registry.operation("search.global", GlobalSearchInput, roles=ANY_ROLE)
def global_search(ctx: OperationContext, params: GlobalSearchInput) -> OperationResult:
    """Search everything the caller's role may see."""
    term = params.q.strip()
    page = PaginationParams(limit=params.limit)
    role = ctx.actor.role

    results = {"books": BookRepository(ctx.session).search(term, page).items}
    if role in (Role.LIBRARIAN, Role.ADMIN):
        results["copies"] = CopyRepository(ctx.session).search_by_barcode(term, params.limit)
        results["members"] = MemberRepository(ctx.session).search(term, pagination=page).items
    if role == Role.ADMIN:
        results["users"] = UserRepository(ctx.session).list_users(query=term, pagination=page).items

    return OperationResult("Search results", results)
