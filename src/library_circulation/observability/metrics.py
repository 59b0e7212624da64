"""Custom metrics for the library backend."""

import logfire

operation_counter = logfire.metric_counter(
    "library.operations.total", description="Dispatched operations by name and status code"
)

operation_duration = logfire.metric_histogram(
    "library.operation.duration_ms", unit="milliseconds", description="Operation duration by name"
)

circulation_events = logfire.metric_counter(
    "library.circulation.events", description="Circulation events (issue/return/force_close/overdue)"
)

fees_assessed = logfire.metric_counter(
    "library.fees.assessed", description="Fees assessed by type"
)


def record_circulation_event(event_type: str, count: int = 1):
    """Record a circulation event."""
    if count > 0:
        circulation_events.add(count, {"event_type": event_type})


def record_operation(operation: str, status_code: int, duration_ms: float):
    operation_counter.add(1, {"operation": operation, "status_code": status_code})
    operation_duration.record(duration_ms, {"operation": operation})


def record_fee_assessed(fee_type: str):
    fees_assessed.add(1, {"fee_type": fee_type})
