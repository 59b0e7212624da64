"""User account models (login identities, not library members)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from ..database.schema import RoleEnum as Role


class User(BaseModel):
    """A login account. The password hash is never part of this model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: str
    role: Role
    is_active: bool
    created_at: datetime


__all__ = ["Role", "User"]
