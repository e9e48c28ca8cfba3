"""Document store drivers.

Architecture:
- base.py: Store interface and store-level exceptions
- memory.py: In-process store (demo mode, tests)
- mongodb.py: MongoDB store (pymongo)

The MongoDB driver is not imported here so the in-memory store can be used
without pymongo installed:

    from scim_docstore.store.mongodb import MongoStore
"""
from .base import (
    Store,
    StoreError,
    UniqueConstraintError,
    RecordNotFoundError,
    WriteRejectedError,
)
from .memory import MemoryStore

__all__ = [
    "Store",
    "StoreError",
    "UniqueConstraintError",
    "RecordNotFoundError",
    "WriteRejectedError",
    "MemoryStore",
]
