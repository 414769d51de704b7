"""
Pull engine: cursor-stable pagination over the document store.

Documents come back ascending by ``(updated_at, id)`` and the next checkpoint
is taken from the last document returned, never from the current time, so a
client that stops mid-sync resumes exactly where it left off.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .checkpoint import Checkpoint
from .concurrency import WriteClock
from .models import Document
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..storage.documents import DocumentStore

logger = get_logger("docsync.replication.pull")

DEFAULT_PULL_LIMIT = 10
MAX_PULL_LIMIT = 1000


@dataclass
class PullResult:
    """One page of changes and the checkpoint that follows it."""
    documents: List[Document] = field(default_factory=list)
    checkpoint: Checkpoint = field(default_factory=Checkpoint)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "documents": [d.to_wire() for d in self.documents],
            "checkpoint": self.checkpoint.encode(),
        }


class PullEngine:
    """Reads pages of changed documents. Takes no locks."""

    def __init__(
        self,
        store: "DocumentStore",
        clock: Optional[WriteClock] = None,
        default_limit: int = DEFAULT_PULL_LIMIT,
        max_limit: int = MAX_PULL_LIMIT,
    ):
        self.store = store
        self.clock = clock
        self.default_limit = default_limit
        self.max_limit = max_limit

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Non-positive or missing limits fall back to the default."""
        if limit is None or isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            return self.default_limit
        return min(limit, self.max_limit)

    async def pull(self, checkpoint: Checkpoint, limit: Optional[int] = None) -> PullResult:
        """
        Fetch the page of documents after ``checkpoint``.

        Args:
            checkpoint: Position the client has already observed
            limit: Page size

        Returns:
            PullResult; its checkpoint equals the input when the page is empty
        """
        page_size = self.clamp_limit(limit)
        horizon = self.clock.visibility_horizon() if self.clock else None

        if checkpoint.is_sentinel:
            documents = await self.store.scan_all(page_size, before=horizon)
        else:
            documents = await self.store.scan_after(
                checkpoint.updated_at, checkpoint.doc_id, page_size, before=horizon
            )

        if documents:
            last = documents[-1]
            next_checkpoint = Checkpoint(last.updated_at, last.id)
        else:
            next_checkpoint = checkpoint

        logger.debug(
            "pull_completed",
            checkpoint=checkpoint.encode(),
            limit=page_size,
            returned=len(documents),
            next_checkpoint=next_checkpoint.encode(),
            horizon=horizon,
        )
        return PullResult(documents=documents, checkpoint=next_checkpoint)


__all__ = [
    'PullEngine',
    'PullResult',
    'DEFAULT_PULL_LIMIT',
    'MAX_PULL_LIMIT',
]
