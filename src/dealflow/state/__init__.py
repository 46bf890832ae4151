"""Deal lifecycle persistence package.

Provides the SQLite schema, row serializers, and the lock-guarded
``DealStore`` that enforces lifecycle invariants at commit time.
"""

from dealflow.state.schema import connect, init_db, init_schema
from dealflow.state.store import DealStore

__all__ = [
    "DealStore",
    "connect",
    "init_db",
    "init_schema",
]
