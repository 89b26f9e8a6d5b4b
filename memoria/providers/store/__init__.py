"""Document store implementations.

SQLiteDocumentStore keeps documents in a single aiosqlite table with an
FTS5 shadow index for lexical scoring.  InMemoryDocumentStore is a
dict-backed equivalent with the same guards, used by the tests and the
CLI's ``--memory`` mode.
"""

from memoria.providers.store.memory_store import InMemoryDocumentStore
from memoria.providers.store.sqlite_store import SQLiteDocumentStore

__all__ = ["InMemoryDocumentStore", "SQLiteDocumentStore"]
