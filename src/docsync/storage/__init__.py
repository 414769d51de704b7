"""
Storage components for the docsync replication server.

This package provides:
- An aiosqlite database wrapper
- The document store contract with SQLite and in-memory backends
"""

from .database import Database
from .documents import DocumentStore, SQLiteDocumentStore, MemoryDocumentStore

__all__ = [
    'Database',
    'DocumentStore',
    'SQLiteDocumentStore',
    'MemoryDocumentStore',
]
