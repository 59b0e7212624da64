"""
Persistence layer for the library backend.

- schema: SQLAlchemy tables
- session: ``DatabaseManager`` and transaction scope
- *_repository: one repository per aggregate; none of them commit
"""

from .session import DatabaseManager, safe_flush, safe_query

__all__ = ["DatabaseManager", "safe_flush", "safe_query"]
