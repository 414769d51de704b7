"""Data models shared by the replication engines and the document stores."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

# Keys owned by the replication protocol rather than the application.
ID_FIELD = "id"
UPDATED_AT_FIELD = "updatedAt"
PROTOCOL_FIELDS = (ID_FIELD, UPDATED_AT_FIELD, "_rev", "_attachments")

MALFORMED_ROW_ERROR = "Malformed change row"


@dataclass
class Document:
    """A stored document: opaque payload plus its replication position."""
    id: str
    data: Dict[str, Any]
    updated_at: int

    def to_wire(self) -> Dict[str, Any]:
        """Payload with ``id`` and ``updatedAt`` injected, as clients see it."""
        wire = dict(self.data)
        wire[ID_FIELD] = self.id
        wire[UPDATED_AT_FIELD] = self.updated_at
        return wire

    @property
    def position(self) -> tuple:
        return (self.updated_at, self.id)


@dataclass
class ChangeRow:
    """One client-proposed mutation plus the state the client last saw."""
    new_document_state: Any
    assumed_master_state: Any = None

    @classmethod
    def from_wire(cls, row: Any) -> "ChangeRow":
        """Build from a JSON change row; shape problems surface at validation."""
        if not isinstance(row, Mapping):
            return cls(new_document_state=None)
        return cls(
            new_document_state=row.get("newDocumentState"),
            assumed_master_state=row.get("assumedMasterState"),
        )


@dataclass
class PushOutcome:
    """Per-call push summary, kept for logging and tests."""
    applied: List[str] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    malformed: int = 0
    updated_at: Optional[int] = None


def strip_protocol_fields(state: Mapping[str, Any]) -> Dict[str, Any]:
    """Isolate the application payload from a client document state."""
    return {k: v for k, v in state.items() if k not in PROTOCOL_FIELDS}


def malformed_row_entry(details: str) -> Dict[str, Any]:
    return {"error": MALFORMED_ROW_ERROR, "details": details}


def is_error_entry(entry: Mapping[str, Any]) -> bool:
    """True for malformed-row markers in a push response."""
    return "error" in entry and ID_FIELD not in entry


__all__ = [
    'Document',
    'ChangeRow',
    'PushOutcome',
    'ID_FIELD',
    'UPDATED_AT_FIELD',
    'PROTOCOL_FIELDS',
    'MALFORMED_ROW_ERROR',
    'strip_protocol_fields',
    'malformed_row_entry',
    'is_error_entry',
]
