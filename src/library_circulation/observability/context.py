"""Context managers for tracing database and dispatcher work."""

from contextlib import contextmanager

import logfire


@contextmanager
def trace_repository_operation(repository: str, operation: str, table: str | None = None):
    """Context manager for tracing repository operations."""
    with logfire.span(
        f"db.{repository}.{operation}",
        db_repository=repository,
        db_operation=operation,
        db_table=table or repository,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("db.error", str(e))
            span.set_attribute("db.error_type", type(e).__name__)
            raise


@contextmanager
def trace_operation(operation: str, role: str | None):
    """Span around one dispatched operation; the caller records the status code."""
    with logfire.span(
        f"operation.{operation}",
        _span_name=f"operation {operation}",
        operation=operation,
        actor_role=role or "anonymous",
    ) as span:
        yield span
