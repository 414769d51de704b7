"""
Document stores.

A store keeps documents keyed by id, each stamped with the ``updated_at`` of
its last write, and scans them in ``(updated_at, id)`` order. Two backends
share the same contract: SQLite through aiosqlite, and an in-memory dict.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .database import Database
from ..replication.models import Document
from ..utils.errors import StoreError
from ..utils.logging import get_logger

logger = get_logger("docsync.storage.documents")


class DocumentStore(ABC):
    """Contract the replication engines rely on."""

    async def initialize(self) -> None:
        """Open resources and create schema."""

    async def close(self) -> None:
        """Release resources."""

    @abstractmethod
    async def get(self, doc_id: str) -> Optional[Document]:
        """Fetch a document by id."""

    @abstractmethod
    async def upsert(self, document: Document) -> None:
        """Insert or fully replace a document."""

    @abstractmethod
    async def scan_after(
        self,
        updated_at: int,
        doc_id: str,
        limit: int,
        before: Optional[int] = None,
    ) -> List[Document]:
        """
        Documents strictly after ``(updated_at, doc_id)``.

        Args:
            updated_at: Position timestamp
            doc_id: Position id, the tiebreak for equal timestamps
            limit: Maximum documents to return
            before: Exclusive upper bound on ``updated_at``

        Returns:
            Documents ascending by ``(updated_at, id)``
        """

    @abstractmethod
    async def scan_all(self, limit: int, before: Optional[int] = None) -> List[Document]:
        """First ``limit`` documents ascending by ``(updated_at, id)``."""

    @abstractmethod
    async def latest(self, before: Optional[int] = None) -> Optional[Document]:
        """The document with the highest ``(updated_at, id)`` below ``before``."""

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": type(self).__name__}

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class SQLiteDocumentStore(DocumentStore):
    """Durable store on a single SQLite table."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS documents (
            id TEXT PRIMARY KEY,
            data TEXT NOT NULL,
            updated_at INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_documents_position
            ON documents(updated_at, id);
    """

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def from_path(cls, db_path: Path | str, **kwargs) -> "SQLiteDocumentStore":
        return cls(Database(db_path, **kwargs))

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.executescript(self.SCHEMA)
        logger.info("document_store_initialized", path=str(self.db.db_path))

    async def close(self) -> None:
        await self.db.close()

    async def get(self, doc_id: str) -> Optional[Document]:
        row = await self.db.fetchone(
            "SELECT id, data, updated_at FROM documents WHERE id = ?",
            (doc_id,)
        )
        return self._row_to_document(row) if row else None

    async def upsert(self, document: Document) -> None:
        await self.db.execute(
            """
            INSERT INTO documents (id, data, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (document.id, json.dumps(document.data), document.updated_at)
        )

    async def scan_after(
        self,
        updated_at: int,
        doc_id: str,
        limit: int,
        before: Optional[int] = None,
    ) -> List[Document]:
        where = "(updated_at > ? OR (updated_at = ? AND id > ?))"
        params: List[Any] = [updated_at, updated_at, doc_id]
        if before is not None:
            where += " AND updated_at < ?"
            params.append(before)
        rows = await self.db.fetchall(
            f"""
            SELECT id, data, updated_at
            FROM documents
            WHERE {where}
            ORDER BY updated_at ASC, id ASC
            LIMIT ?
            """,
            (*params, limit)
        )
        return [self._row_to_document(row) for row in rows]

    async def scan_all(self, limit: int, before: Optional[int] = None) -> List[Document]:
        where = ""
        params: List[Any] = []
        if before is not None:
            where = "WHERE updated_at < ?"
            params.append(before)
        rows = await self.db.fetchall(
            f"""
            SELECT id, data, updated_at
            FROM documents
            {where}
            ORDER BY updated_at ASC, id ASC
            LIMIT ?
            """,
            (*params, limit)
        )
        return [self._row_to_document(row) for row in rows]

    async def latest(self, before: Optional[int] = None) -> Optional[Document]:
        where = ""
        params: tuple = ()
        if before is not None:
            where = "WHERE updated_at < ?"
            params = (before,)
        row = await self.db.fetchone(
            f"""
            SELECT id, data, updated_at
            FROM documents
            {where}
            ORDER BY updated_at DESC, id DESC
            LIMIT 1
            """,
            params
        )
        return self._row_to_document(row) if row else None

    async def health_check(self) -> Dict[str, Any]:
        row = await self.db.fetchone("SELECT COUNT(*) FROM documents")
        return {
            "backend": "sqlite",
            "path": str(self.db.db_path),
            "document_count": row[0] if row else 0,
        }

    @staticmethod
    def _row_to_document(row: tuple) -> Document:
        doc_id, data, updated_at = row
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt payload for document {doc_id}", cause=e) from e
        return Document(id=doc_id, data=payload, updated_at=updated_at)


class MemoryDocumentStore(DocumentStore):
    """
    Dict-backed store.

    Documents are deep-copied on the way in and out so callers never share
    mutable payloads with the store.
    """

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._lock = asyncio.Lock()

    async def get(self, doc_id: str) -> Optional[Document]:
        document = self._documents.get(doc_id)
        return copy.deepcopy(document) if document else None

    async def upsert(self, document: Document) -> None:
        async with self._lock:
            self._documents[document.id] = copy.deepcopy(document)

    async def scan_after(
        self,
        updated_at: int,
        doc_id: str,
        limit: int,
        before: Optional[int] = None,
    ) -> List[Document]:
        position = (updated_at, doc_id)
        return self._scan(lambda d: d.position > position, limit, before)

    async def scan_all(self, limit: int, before: Optional[int] = None) -> List[Document]:
        return self._scan(lambda d: True, limit, before)

    async def latest(self, before: Optional[int] = None) -> Optional[Document]:
        candidates = [
            d for d in list(self._documents.values())
            if before is None or d.updated_at < before
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda d: d.position))

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": "memory", "document_count": len(self._documents)}

    def _scan(self, predicate, limit: int, before: Optional[int]) -> List[Document]:
        matches = [
            d for d in list(self._documents.values())
            if predicate(d) and (before is None or d.updated_at < before)
        ]
        matches.sort(key=lambda d: d.position)
        return [copy.deepcopy(d) for d in matches[:limit]]


__all__ = [
    'DocumentStore',
    'SQLiteDocumentStore',
    'MemoryDocumentStore',
]
