"""
Authentication for the library backend.

Two pieces:

1. Password hashing with bcrypt (work factor from ``LibraryConfig``)
2. An ``AuthOracle`` that turns a bearer token into an ``Identity``

The dispatcher only depends on the ``AuthOracle`` protocol. ``JWTAuthOracle``
is the implementation used by the server: HS256 tokens signed with
python-jose, carrying the user id, email, role and full name.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import LibraryConfig
from .errors import AuthenticationError
from .models.users import Role, User

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """The authenticated caller of an operation."""

    user_id: int
    email: str
    role: Role
    full_name: str


class AuthOracle(Protocol):
    def issue(self, user: User) -> str: ...

    def verify(self, token: str) -> Identity: ...


class JWTAuthOracle:
    """Issues and verifies signed JWT access tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_minutes: int = 24 * 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_minutes = expiry_minutes

    @classmethod
    def from_config(cls, config: LibraryConfig) -> "JWTAuthOracle":
        return cls(config.jwt_secret, config.jwt_algorithm, config.jwt_expiry_minutes)

    def issue(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(user.id),
            "user_id": user.id,
            "email": user.email,
            "role": user.role.value,
            "full_name": user.full_name,
            "iat": now,
            "exp": now + timedelta(minutes=self.expiry_minutes),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        if not token:
            raise AuthenticationError("No token provided")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired") from e
        except JWTError as e:
            logger.warning("Rejected token: %s", e)
            raise AuthenticationError("Invalid token") from e

        try:
            return Identity.model_validate(claims)
        except PydanticValidationError as e:
            raise AuthenticationError("Invalid token claims") from e


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False
