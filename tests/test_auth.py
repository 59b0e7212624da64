"""Tests for password hashing and access tokens."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from library_circulation.auth import Identity, JWTAuthOracle, hash_password, verify_password
from library_circulation.errors import AuthenticationError
from library_circulation.models.users import Role, User

SECRET = "unit-test-secret"


@pytest.fixture
def oracle():
    return JWTAuthOracle(SECRET, "HS256", expiry_minutes=30)


@pytest.fixture
def librarian():
    return User(
        id=7,
        full_name="Lee Librarian",
        email="lee@library.test",
        role=Role.LIBRARIAN,
        is_active=True,
        created_at=datetime(2024, 1, 1, 9, 0),
    )


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse", rounds=4)

        assert hashed != "correct horse"
        assert hashed.startswith("$2")
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_malformed_hash_never_matches(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestJWTAuthOracle:
    def test_issue_and_verify_round_trip(self, oracle, librarian):
        token = oracle.issue(librarian)
        identity = oracle.verify(token)

        assert identity == Identity(
            user_id=7, email="lee@library.test", role=Role.LIBRARIAN, full_name="Lee Librarian"
        )

    def test_token_carries_expiry(self, oracle, librarian):
        claims = jwt.decode(oracle.issue(librarian), SECRET, algorithms=["HS256"])
        lifetime = claims["exp"] - claims["iat"]
        assert lifetime == 30 * 60
        assert claims["sub"] == "7"

    def test_expired_token_rejected(self, librarian):
        expired = JWTAuthOracle(SECRET, expiry_minutes=-1)
        token = expired.issue(librarian)

        with pytest.raises(AuthenticationError, match="expired"):
            expired.verify(token)

    def test_wrong_secret_rejected(self, oracle, librarian):
        other = JWTAuthOracle("another-secret-value")
        with pytest.raises(AuthenticationError, match="Invalid token"):
            oracle.verify(other.issue(librarian))

    @pytest.mark.parametrize("token", ["", "not.a.jwt", "garbage"])
    def test_malformed_tokens_rejected(self, oracle, token):
        with pytest.raises(AuthenticationError):
            oracle.verify(token)

    def test_missing_claims_rejected(self, oracle):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "email": "x@library.test", "exp": now + timedelta(minutes=5)},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(AuthenticationError, match="claims"):
            oracle.verify(token)

    def test_unknown_role_rejected(self, oracle):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "user_id": 1,
                "email": "x@library.test",
                "role": "superuser",
                "full_name": "X",
                "exp": now + timedelta(minutes=5),
            },
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(AuthenticationError):
            oracle.verify(token)

    def test_from_config(self, test_config):
        oracle = JWTAuthOracle.from_config(test_config)
        assert oracle.secret == test_config.jwt_secret
        assert oracle.expiry_minutes == test_config.jwt_expiry_minutes
