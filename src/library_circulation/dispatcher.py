"""
Operation dispatcher for the library backend.

Every externally callable operation is registered once with:

- a name (``circulation.issue``)
- a Pydantic input model for its payload
- the set of roles allowed to call it, or ``None`` for public operations

``Dispatcher.dispatch(operation, actor, payload)`` is the single entry
point. It checks the role, validates the payload, runs the handler inside
one database transaction (in a worker thread, since SQLAlchemy sessions are
synchronous) and turns the outcome into a response envelope:

```json
{"success": true, "message": "Book issued successfully", "data": {...}, "errors": null}
```

plus an HTTP-style ``status_code``. Handlers never build envelopes and never
catch ``LibraryError``; they raise and the dispatcher maps the error class to
its status code.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.orm import Session

from .auth import AuthOracle, Identity
from .config import LibraryConfig
from .database.session import DatabaseManager
from .errors import AuthenticationError, AuthorizationError, LibraryError, NotFoundError
from .models.users import Role
from .observability.context import trace_operation
from .observability.metrics import record_operation

logger = logging.getLogger(__name__)

ADMIN = frozenset({Role.ADMIN})
STAFF = frozenset({Role.ADMIN, Role.LIBRARIAN})
STUDENT = frozenset({Role.STUDENT})
ANY_ROLE = frozenset(Role)


class NoInput(BaseModel):
    """Payload model for operations that take no arguments."""


@dataclass
class OperationContext:
    """What a handler gets besides its validated payload."""

    session: Session
    actor: Identity | None
    config: LibraryConfig
    auth: AuthOracle
    now: datetime

    @property
    def actor_id(self) -> int | None:
        return self.actor.user_id if self.actor else None


@dataclass
class OperationResult:
    message: str
    data: Any = None
    status_code: int | None = None


Handler = Callable[[OperationContext, Any], OperationResult]


@dataclass(frozen=True)
class Operation:
    name: str
    handler: Handler
    input_model: type[BaseModel]
    roles: frozenset[Role] | None
    success_status: int = 200
    description: str = ""

    @property
    def is_public(self) -> bool:
        return self.roles is None

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "roles": None if self.roles is None else sorted(r.value for r in self.roles),
            "input_schema": self.input_model.model_json_schema(),
        }


class OperationRegistry:
    """
    A named collection of operations.

    Each tools module owns a registry and decorates its handlers:

    ```python
    registry = OperationRegistry()

    @registry.operation("circulation.issue", IssueBookInput, roles=STAFF)
    def issue_book(ctx, params): ...
    ```
    """

    def __init__(self):
        self._operations: dict[str, Operation] = {}

    def operation(
        self,
        name: str,
        input_model: type[BaseModel] = NoInput,
        *,
        roles: frozenset[Role] | None,
        status: int = 200,
    ):
        def decorator(func: Handler) -> Handler:
            doc = (func.__doc__ or "").strip().splitlines()
            self.register(
                Operation(
                    name=name,
                    handler=func,
                    input_model=input_model,
                    roles=roles,
                    success_status=status,
                    description=doc[0] if doc else "",
                )
            )
            return func

        return decorator

    def register(self, operation: Operation) -> None:
        if operation.name in self._operations:
            raise ValueError(f"Operation {operation.name} is already registered")
        self._operations[operation.name] = operation

    def include(self, other: "OperationRegistry") -> None:
        for operation in other:
            self.register(operation)

    def get(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)


class Response(BaseModel):
    """Outcome of one dispatched operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status_code: int
    success: bool
    message: str
    data: Any = None
    errors: Any = None

    @classmethod
    def ok(cls, status_code: int, message: str, data: Any = None) -> "Response":
        return cls(status_code=status_code, success=True, message=message, data=to_jsonable_python(data))

    @classmethod
    def failure(cls, status_code: int, message: str, errors: Any = None) -> "Response":
        return cls(status_code=status_code, success=False, message=message, errors=to_jsonable_python(errors))

    @classmethod
    def from_error(cls, error: LibraryError) -> "Response":
        return cls.failure(error.status_code, error.message, error.errors)

    def envelope(self) -> dict[str, Any]:
        """The wire shape, without the status code."""
        return {"success": self.success, "message": self.message, "data": self.data, "errors": self.errors}


def _field_errors(error: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]) or "payload", "message": err["msg"]}
        for err in error.errors()
    ]


@dataclass
class Dispatcher:
    """Routes operation calls to handlers with one uniform role check."""

    db: DatabaseManager
    registry: OperationRegistry
    config: LibraryConfig
    auth: AuthOracle
    clock: Callable[[], datetime] = field(default=datetime.now)

    async def dispatch(
        self, operation: str, actor: Identity | None, payload: dict[str, Any] | None = None
    ) -> Response:
        start = time.perf_counter()
        with trace_operation(operation, actor.role.value if actor else None) as span:
            response = await self._dispatch(operation, actor, payload or {})
            span.set_attribute("status_code", response.status_code)
        record_operation(operation, response.status_code, (time.perf_counter() - start) * 1000)
        return response

    async def _dispatch(self, name: str, actor: Identity | None, payload: dict[str, Any]) -> Response:
        operation = self.registry.get(name)
        try:
            if operation is None:
                raise NotFoundError(f"Unknown operation: {name}")
            self.authorize(operation, actor)
            params = operation.input_model.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning("Invalid payload for %s: %s", name, e)
            return Response.failure(400, "Validation failed", _field_errors(e))
        except LibraryError as e:
            logger.warning("Rejected %s: %s", name, e.message)
            return Response.from_error(e)

        try:
            result = await asyncio.to_thread(self._run, operation, actor, params)
        except LibraryError as e:
            if e.status_code >= 500:
                logger.error("Operation %s failed: %s", name, e.message)
            else:
                logger.info("Operation %s refused (%s): %s", name, e.status_code, e.message)
            return Response.from_error(e)
        except PydanticValidationError as e:
            # Raised by repository input schemas built inside a handler
            logger.warning("Invalid data in %s: %s", name, e)
            return Response.failure(400, "Validation failed", _field_errors(e))
        except Exception:
            logger.exception("Unhandled error in operation %s", name)
            return Response.failure(500, "Internal server error")

        return Response.ok(result.status_code or operation.success_status, result.message, result.data)

    def authorize(self, operation: Operation, actor: Identity | None) -> None:
        if operation.is_public:
            return
        if actor is None:
            raise AuthenticationError("Authentication required")
        if actor.role not in operation.roles:
            raise AuthorizationError(
                f"Role {actor.role.value} may not call {operation.name}",
                {"required_roles": sorted(r.value for r in operation.roles)},
            )

    def _run(self, operation: Operation, actor: Identity | None, params: BaseModel) -> OperationResult:
        with self.db.session_scope() as session:
            ctx = OperationContext(
                session=session,
                actor=actor,
                config=self.config,
                auth=self.auth,
                now=self.clock(),
            )
            return operation.handler(ctx, params)
