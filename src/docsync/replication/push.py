"""
Push engine: applies client change rows under last-write-wins rules.

Each row is read, checked and written while holding the lock for its
document id, so two pushes against the same document can never both pass
the conflict check. Rows for different ids do not wait on each other.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from .concurrency import KeyLockTable, WriteClock
from .conflict import ConflictReason, detect_conflict
from .models import (
    ChangeRow,
    Document,
    ID_FIELD,
    PushOutcome,
    malformed_row_entry,
    strip_protocol_fields,
)
from ..utils.errors import MalformedChangeRowError
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..storage.documents import DocumentStore

logger = get_logger("docsync.replication.push")


def validate_change_row(row: ChangeRow) -> str:
    """
    Check a row's shape and return its document id.

    Raises:
        MalformedChangeRowError: If the row cannot be applied or compared
    """
    state = row.new_document_state
    if not isinstance(state, Mapping):
        raise MalformedChangeRowError("newDocumentState", state, "must be an object")

    doc_id = state.get(ID_FIELD)
    if not isinstance(doc_id, str) or not doc_id:
        raise MalformedChangeRowError("newDocumentState.id", doc_id, "must be a non-empty string")

    assumed = row.assumed_master_state
    if assumed is not None and not isinstance(assumed, Mapping):
        raise MalformedChangeRowError("assumedMasterState", assumed, "must be an object or absent")

    return doc_id


class PushEngine:
    """Applies change rows and reports conflicts."""

    def __init__(self, store: "DocumentStore", clock: WriteClock, locks: KeyLockTable):
        self.store = store
        self.clock = clock
        self.locks = locks

    async def push(self, rows: Sequence[Any]) -> List[Dict[str, Any]]:
        """
        Apply a batch of change rows.

        Args:
            rows: ChangeRow objects or raw JSON change rows

        Returns:
            In input order, the server state of every conflicting document and
            a marker for every malformed row; empty when all rows applied
        """
        outcome = await self.push_detailed(rows)
        return outcome.conflicts

    async def push_detailed(self, rows: Sequence[Any]) -> PushOutcome:
        outcome = PushOutcome()

        # One stamp per call so the batch lands as a single checkpoint step.
        with self.clock.reserve() as stamp:
            outcome.updated_at = stamp
            for raw in rows:
                row = raw if isinstance(raw, ChangeRow) else ChangeRow.from_wire(raw)
                try:
                    doc_id = validate_change_row(row)
                except MalformedChangeRowError as e:
                    logger.warning("malformed_change_row", field=e.field, error=e.message)
                    outcome.conflicts.append(malformed_row_entry(self._describe(raw, e)))
                    outcome.malformed += 1
                    continue

                conflict = await self._apply_row(doc_id, row, stamp)
                if conflict is None:
                    outcome.applied.append(doc_id)
                else:
                    outcome.conflicts.append(conflict)

        logger.info(
            "push_completed",
            rows=len(rows),
            applied=len(outcome.applied),
            conflicts=len(outcome.conflicts) - outcome.malformed,
            malformed=outcome.malformed,
            updated_at=stamp,
        )
        return outcome

    async def _apply_row(self, doc_id: str, row: ChangeRow, stamp: int) -> Optional[Dict[str, Any]]:
        """Read, decide and write one row; returns the conflict entry if rejected."""
        async with self.locks.hold(doc_id):
            current = await self.store.get(doc_id)
            reason = detect_conflict(current, row.assumed_master_state)

            # A stored stamp at or past ours would make the write go backwards.
            if not reason.is_conflict and current is not None and current.updated_at >= stamp:
                reason = ConflictReason.VERSION_MISMATCH

            if reason.is_conflict:
                logger.info(
                    "push_conflict",
                    doc_id=doc_id,
                    reason=reason.value,
                    server_updated_at=current.updated_at if current else None,
                )
                # Nothing stored means nothing to show but the empty state.
                return current.to_wire() if current else {}

            await self.store.upsert(Document(
                id=doc_id,
                data=strip_protocol_fields(row.new_document_state),
                updated_at=stamp,
            ))
            logger.debug("push_applied", doc_id=doc_id, updated_at=stamp)
            return None

    @staticmethod
    def _describe(raw: Any, error: MalformedChangeRowError) -> str:
        return f"{error.message}: {raw!r}"[:500]


__all__ = [
    'PushEngine',
    'validate_change_row',
]
