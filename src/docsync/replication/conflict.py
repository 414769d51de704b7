"""
Conflict detection for pushed change rows.

Pure optimistic-concurrency check on the ``updatedAt`` version stamp; the
document content is never compared.
"""

from enum import Enum
from typing import Any, Mapping, Optional

from .checkpoint import parse_updated_at
from .models import Document, UPDATED_AT_FIELD
from ..utils.errors import MalformedCheckpointError


class ConflictReason(Enum):
    """Why a change row was rejected."""
    NONE = "none"
    EXISTS_BUT_ASSUMED_NEW = "exists_but_assumed_new"
    MISSING_BUT_ASSUMED_EXISTING = "missing_but_assumed_existing"
    VERSION_MISMATCH = "version_mismatch"

    @property
    def is_conflict(self) -> bool:
        return self is not ConflictReason.NONE


def assumed_updated_at(assumed: Mapping[str, Any]) -> Optional[int]:
    """The stamp a client assumed, or None when missing or unparsable."""
    value = assumed.get(UPDATED_AT_FIELD)
    if value is None:
        return None
    try:
        return parse_updated_at(value)
    except MalformedCheckpointError:
        return None


def detect_conflict(
    current: Optional[Document],
    assumed: Optional[Mapping[str, Any]],
) -> ConflictReason:
    """
    Decide whether a proposed write conflicts with the stored document.

    Args:
        current: The stored document, or None if the id is unknown
        assumed: The client's assumed master state, or None if the client
            believes the document is new

    Returns:
        ConflictReason.NONE when the write may proceed
    """
    if current is None:
        if assumed is None:
            return ConflictReason.NONE
        return ConflictReason.MISSING_BUT_ASSUMED_EXISTING

    if assumed is None:
        return ConflictReason.EXISTS_BUT_ASSUMED_NEW

    # None never equals a stored stamp.
    if current.updated_at is None or assumed_updated_at(assumed) != current.updated_at:
        return ConflictReason.VERSION_MISMATCH

    return ConflictReason.NONE


__all__ = [
    'ConflictReason',
    'detect_conflict',
    'assumed_updated_at',
]
