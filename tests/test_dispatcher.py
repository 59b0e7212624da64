"""Tests for the operation dispatcher.

Uses a small registry of throwaway operations so each dispatcher rule can
be checked on its own:
1. Unknown operations and role checks
2. Payload validation with per-field errors
3. Error classes mapped to status codes
4. One transaction per call, rolled back on failure
"""

from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import BaseModel, Field
from sqlalchemy import func, select

from library_circulation.auth import Identity, JWTAuthOracle
from library_circulation.database.catalog_repository import LocationCreateSchema, LocationRepository
from library_circulation.database.schema import Location as LocationDB
from library_circulation.dispatcher import (
    ADMIN,
    ANY_ROLE,
    STAFF,
    Dispatcher,
    Operation,
    OperationRegistry,
    OperationResult,
    Response,
)
from library_circulation.errors import NotFoundError, UnpaidFeesError
from library_circulation.models.users import Role
from library_circulation.tools import build_registry

FIXED_NOW = datetime(2024, 7, 4, 12, 0)

ADMIN_ACTOR = Identity(user_id=1, email="admin@library.test", role=Role.ADMIN, full_name="Ana Admin")
LIBRARIAN_ACTOR = Identity(user_id=2, email="lee@library.test", role=Role.LIBRARIAN, full_name="Lee Librarian")
STUDENT_ACTOR = Identity(user_id=3, email="sam@library.test", role=Role.STUDENT, full_name="Sam Student")


class EchoInput(BaseModel):
    name: str = Field(..., min_length=2)
    count: int = Field(default=1, ge=1)


def build_test_registry():
    registry = OperationRegistry()

    @registry.operation("test.echo", EchoInput, roles=ANY_ROLE)
    def echo(ctx, params):
        """Echo the payload back.

        Second line is not part of the description.
        """
        return OperationResult("Echoed", {"name": params.name, "count": params.count, "now": ctx.now})

    @registry.operation("test.public", roles=None)
    def public(ctx, params):
        return OperationResult("Public", {"actor": ctx.actor_id})

    @registry.operation("test.admin_only", roles=ADMIN, status=201)
    def admin_only(ctx, params):
        """Admins only."""
        return OperationResult("Created", {"amount": Decimal("2.50")})

    @registry.operation("test.add_location_then_fail", roles=STAFF)
    def add_location_then_fail(ctx, params):
        LocationRepository(ctx.session).create(LocationCreateSchema(location_name="Doomed"))
        raise UnpaidFeesError(Decimal("3.00"))

    @registry.operation("test.add_location", roles=STAFF)
    def add_location(ctx, params):
        return OperationResult("Added", LocationRepository(ctx.session).create(LocationCreateSchema(location_name="Kept")))

    @registry.operation("test.not_found", roles=STAFF)
    def not_found(ctx, params):
        raise NotFoundError("Nothing here")

    @registry.operation("test.crash", roles=STAFF)
    def crash(ctx, params):
        LocationRepository(ctx.session).create(LocationCreateSchema(location_name="Crashed"))
        raise KeyError("secret internal detail")

    @registry.operation("test.override_status", roles=STAFF)
    def override_status(ctx, params):
        return OperationResult("Accepted", None, status_code=202)

    return registry


@pytest.fixture
def dispatcher(db, test_config):
    return Dispatcher(
        db,
        build_test_registry(),
        test_config,
        JWTAuthOracle.from_config(test_config),
        clock=lambda: FIXED_NOW,
    )


def location_names(db):
    with db.session_scope() as s:
        return set(s.execute(select(LocationDB.location_name)).scalars())


class TestRegistry:
    def test_description_is_first_docstring_line(self):
        registry = build_test_registry()
        assert registry.get("test.echo").description == "Echo the payload back."
        assert registry.get("test.public").description == ""

    def test_duplicate_registration_rejected(self):
        registry = build_test_registry()
        with pytest.raises(ValueError):
            registry.register(Operation("test.echo", lambda ctx, p: None, EchoInput, ANY_ROLE))

    def test_include_merges(self):
        merged = OperationRegistry()
        merged.include(build_test_registry())
        assert "test.crash" in merged
        assert len(merged) == 8

    def test_describe(self):
        described = build_test_registry().get("test.admin_only").describe()
        assert described["roles"] == ["admin"]
        assert described["input_schema"]["type"] == "object"
        assert build_test_registry().get("test.public").describe()["roles"] is None

    def test_application_registry_names_are_unique_and_namespaced(self):
        registry = build_registry()
        names = [op.name for op in registry]
        assert len(names) == len(set(names))
        assert all("." in name for name in names)
        assert {"circulation.issue", "circulation.return", "auth.login", "search.global"} <= set(names)
        public = {op.name for op in registry if op.is_public}
        assert public == {"auth.login", "auth.register"}


class TestDispatch:
    async def test_success_envelope(self, dispatcher):
        response = await dispatcher.dispatch("test.echo", STUDENT_ACTOR, {"name": "Ada", "count": 2})

        assert response.status_code == 200
        assert response.envelope() == {
            "success": True,
            "message": "Echoed",
            "data": {"name": "Ada", "count": 2, "now": "2024-07-04T12:00:00"},
            "errors": None,
        }

    async def test_unknown_operation(self, dispatcher):
        response = await dispatcher.dispatch("test.nope", ADMIN_ACTOR, {})
        assert response.status_code == 404
        assert response.success is False
        assert response.message == "Unknown operation: test.nope"

    async def test_authentication_required(self, dispatcher):
        response = await dispatcher.dispatch("test.echo", None, {"name": "Ada"})
        assert response.status_code == 401

    async def test_public_operation_without_actor(self, dispatcher):
        response = await dispatcher.dispatch("test.public", None)
        assert response.status_code == 200
        assert response.data == {"actor": None}

    @pytest.mark.parametrize("actor", [LIBRARIAN_ACTOR, STUDENT_ACTOR])
    async def test_wrong_role(self, dispatcher, actor):
        response = await dispatcher.dispatch("test.admin_only", actor)
        assert response.status_code == 403
        assert response.errors == {"required_roles": ["admin"]}

    async def test_role_check_precedes_validation(self, dispatcher):
        response = await dispatcher.dispatch("test.admin_only", STUDENT_ACTOR, {"unexpected": object()})
        assert response.status_code == 403

    async def test_validation_errors_per_field(self, dispatcher):
        response = await dispatcher.dispatch("test.echo", ADMIN_ACTOR, {"name": "A", "count": 0})

        assert response.status_code == 400
        assert response.message == "Validation failed"
        fields = {error["field"] for error in response.errors}
        assert fields == {"name", "count"}
        assert all(error["message"] for error in response.errors)

    async def test_missing_field(self, dispatcher):
        response = await dispatcher.dispatch("test.echo", ADMIN_ACTOR, {})
        assert response.status_code == 400
        assert response.errors == [{"field": "name", "message": "Field required"}]

    async def test_success_status_and_decimal_serialization(self, dispatcher):
        response = await dispatcher.dispatch("test.admin_only", ADMIN_ACTOR)
        assert response.status_code == 201
        assert response.data == {"amount": "2.50"}

    async def test_handler_status_override(self, dispatcher):
        response = await dispatcher.dispatch("test.override_status", LIBRARIAN_ACTOR)
        assert response.status_code == 202

    async def test_committed_on_success(self, dispatcher, db):
        response = await dispatcher.dispatch("test.add_location", LIBRARIAN_ACTOR)
        assert response.status_code == 200
        assert response.data["location_name"] == "Kept"
        assert "Kept" in location_names(db)

    async def test_business_error_rolls_back(self, dispatcher, db):
        response = await dispatcher.dispatch("test.add_location_then_fail", ADMIN_ACTOR)

        assert response.status_code == 400
        assert response.errors == {"reason": "unpaid_fees", "total": "3.00"}
        assert "Doomed" not in location_names(db)

    async def test_not_found_error(self, dispatcher):
        response = await dispatcher.dispatch("test.not_found", ADMIN_ACTOR)
        assert (response.status_code, response.message) == (404, "Nothing here")

    async def test_unexpected_error_is_opaque_and_rolled_back(self, dispatcher, db):
        response = await dispatcher.dispatch("test.crash", ADMIN_ACTOR)

        assert response.status_code == 500
        assert response.message == "Internal server error"
        assert response.errors is None
        assert "secret" not in str(response.envelope())
        assert "Crashed" not in location_names(db)


class TestResponse:
    def test_failure_envelope_shape(self):
        response = Response.failure(400, "Bad", [{"field": "x", "message": "y"}])
        assert set(response.envelope()) == {"success", "message", "data", "errors"}
        assert response.envelope()["data"] is None

    def test_from_error(self):
        response = Response.from_error(NotFoundError())
        assert (response.status_code, response.message) == (404, "Resource not found")
