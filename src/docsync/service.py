"""
Replication service.

Owns the document store and the shared in-process state (write clock and
per-document lock table) and exposes the three protocol calls: pull, push
and current checkpoint.
"""

from typing import Any, Dict, List, Optional, Sequence

from .replication import checkpoint as codec
from .replication.checkpoint import Checkpoint
from .replication.concurrency import KeyLockTable, WriteClock
from .replication.pull import PullEngine, PullResult
from .replication.push import PushEngine
from .storage.documents import DocumentStore, MemoryDocumentStore, SQLiteDocumentStore
from .utils.config import DocSyncConfig
from .utils.logging import get_logger

logger = get_logger("docsync.service")


class ReplicationService:
    """Entry point for the transport layer."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Optional[WriteClock] = None,
        locks: Optional[KeyLockTable] = None,
        default_pull_limit: int = 10,
        max_pull_limit: int = 1000,
    ):
        self.store = store
        self.clock = clock or WriteClock()
        self.locks = locks or KeyLockTable()
        self.puller = PullEngine(
            store,
            clock=self.clock,
            default_limit=default_pull_limit,
            max_limit=max_pull_limit,
        )
        self.pusher = PushEngine(store, clock=self.clock, locks=self.locks)
        self._initialized = False

    @classmethod
    def from_config(cls, config: DocSyncConfig) -> "ReplicationService":
        """Build a service with the store backend named in the configuration."""
        if config.replication.store == "memory":
            store: DocumentStore = MemoryDocumentStore()
        else:
            store = SQLiteDocumentStore.from_path(
                config.database.path,
                timeout=config.database.timeout,
                journal_mode=config.database.journal_mode,
                synchronous=config.database.synchronous,
            )
        return cls(
            store,
            default_pull_limit=config.replication.default_pull_limit,
            max_pull_limit=config.replication.max_pull_limit,
        )

    async def initialize(self) -> None:
        """Open the store and seed the clock past every stored stamp."""
        if self._initialized:
            return
        await self.store.initialize()
        latest = await self.store.latest()
        if latest is not None:
            self.clock.observe(latest.updated_at)
        self._initialized = True
        logger.info(
            "replication_service_initialized",
            store=type(self.store).__name__,
            latest_checkpoint=codec.encode(latest.updated_at, latest.id) if latest else None,
        )

    async def close(self) -> None:
        if self._initialized:
            await self.store.close()
            self._initialized = False
            logger.info("replication_service_closed")

    async def pull(
        self,
        checkpoint: Optional[Checkpoint] = None,
        limit: Optional[int] = None,
    ) -> PullResult:
        """Next page of documents after ``checkpoint`` (sentinel when None)."""
        return await self.puller.pull(checkpoint or codec.SENTINEL, limit)

    async def pull_from_params(
        self,
        updated_at: Any = None,
        doc_id: Any = None,
        limit: Optional[int] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Pull using raw request parameters and return the JSON response body.

        A checkpoint ``token`` wins over separate position parameters.
        """
        if token:
            checkpoint = codec.from_token(token)
        else:
            checkpoint = codec.from_params(updated_at, doc_id)
        result = await self.pull(checkpoint, limit)
        return result.to_wire()

    async def push(self, rows: Sequence[Any]) -> List[Dict[str, Any]]:
        """Apply change rows; returns conflicts and malformed-row markers."""
        return await self.pusher.push(rows)

    async def current_checkpoint(self) -> str:
        """
        Token for the most recently written document, or the sentinel.

        Bounded by the write clock's visibility horizon like pulls, so the
        token never sorts past a push that is still landing.
        """
        latest = await self.store.latest(before=self.clock.visibility_horizon())
        if latest is None:
            return codec.SENTINEL.encode()
        return codec.encode(latest.updated_at, latest.id)

    async def health_check(self) -> Dict[str, Any]:
        details = await self.store.health_check()
        details["last_stamp"] = self.clock.last_stamp
        details["locked_documents"] = len(self.locks)
        return details

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


__all__ = ['ReplicationService']
