"""
Operation modules for the library backend.

Each module owns an ``OperationRegistry``; ``build_registry`` merges them
into the one the dispatcher serves.
"""

from ..dispatcher import OperationRegistry
from . import alerts, auth, catalog, circulation, fees, membership, reports, search, student


def build_registry() -> OperationRegistry:
    registry = OperationRegistry()
    for module in (auth, catalog, membership, circulation, fees, alerts, reports, student, search):
        registry.include(module.registry)
    return registry


__all__ = ["build_registry"]
