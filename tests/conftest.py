"""
Pytest configuration and shared fixtures for docsync tests.
"""

import pytest
import asyncio
import tempfile
import shutil
from pathlib import Path
from typing import Generator, AsyncGenerator, Optional

# Add src to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from docsync.replication.concurrency import WriteClock
from docsync.replication.models import Document
from docsync.service import ReplicationService
from docsync.storage.documents import (
    DocumentStore,
    MemoryDocumentStore,
    SQLiteDocumentStore,
)


class FakeNow:
    """Controllable millisecond wall clock."""

    def __init__(self, start: int = 1_000):
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int = 1) -> None:
        self.value += ms


class SlowMemoryStore(MemoryDocumentStore):
    """Memory store that yields to the event loop on every read."""

    def __init__(self, delay: float = 0.01):
        super().__init__()
        self.delay = delay

    async def get(self, doc_id: str) -> Optional[Document]:
        document = await super().get(doc_id)
        await asyncio.sleep(self.delay)
        return document


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def fake_now() -> FakeNow:
    return FakeNow()


@pytest.fixture
async def sqlite_store(temp_dir: Path) -> AsyncGenerator[SQLiteDocumentStore, None]:
    """SQLite document store on a fresh database file."""
    store = SQLiteDocumentStore.from_path(temp_dir / "documents.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, temp_dir: Path) -> AsyncGenerator[DocumentStore, None]:
    """Each store backend in turn."""
    if request.param == "memory":
        store = MemoryDocumentStore()
    else:
        store = SQLiteDocumentStore.from_path(temp_dir / "documents.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def service(store: DocumentStore, fake_now: FakeNow) -> ReplicationService:
    """Replication service over the parametrized store with a fake clock."""
    service = ReplicationService(store, clock=WriteClock(now=fake_now))
    await service.initialize()
    return service


async def seed(store: DocumentStore, *documents) -> None:
    """Write ``(id, updated_at, data)`` tuples straight into a store."""
    for doc_id, updated_at, data in documents:
        await store.upsert(Document(id=doc_id, data=dict(data), updated_at=updated_at))
