"""
Checkpoint codec.

A checkpoint is the ``(updatedAt, id)`` position of the last document a
client has observed. On the wire it travels as ``"<updatedAt>_<id>"``; the
split happens on the first underscore, so ids may contain underscores.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from ..utils.errors import MalformedCheckpointError
from ..utils.logging import get_logger

logger = get_logger("docsync.checkpoint")

TOKEN_SEPARATOR = "_"

MIN_UPDATED_AT = -(2 ** 63)
MAX_UPDATED_AT = 2 ** 63 - 1


@dataclass(frozen=True, order=True)
class Checkpoint:
    """Cursor position, ordered lexicographically by (updated_at, doc_id)."""
    updated_at: int = 0
    doc_id: str = ""

    @property
    def is_sentinel(self) -> bool:
        return self == SENTINEL

    def encode(self) -> str:
        return encode(self.updated_at, self.doc_id)

    def to_dict(self) -> dict:
        return {"lastUpdatedAt": self.updated_at, "lastDocId": self.doc_id}


SENTINEL = Checkpoint(0, "")


def encode(updated_at: int, doc_id: str) -> str:
    """Encode a position as an opaque token."""
    return f"{int(updated_at)}{TOKEN_SEPARATOR}{doc_id}"


def parse_updated_at(value: Any) -> int:
    """
    Parse a timestamp coming from a client.

    Accepts ints, integral floats and decimal strings that fit a signed
    64-bit integer, the range the SQLite store can compare against.

    Raises:
        MalformedCheckpointError: If the value is not an integer timestamp
    """
    parsed: Optional[int] = None
    if isinstance(value, bool):
        pass
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            pass

    if parsed is None:
        raise MalformedCheckpointError("updatedAt", value, "must be an integer")
    if not MIN_UPDATED_AT <= parsed <= MAX_UPDATED_AT:
        raise MalformedCheckpointError("updatedAt", value, "must fit in a signed 64-bit integer")
    return parsed


def parse(token: str) -> Checkpoint:
    """
    Strictly parse a token.

    Raises:
        MalformedCheckpointError: If the token is not ``<int>_<id>``
    """
    if not isinstance(token, str) or TOKEN_SEPARATOR not in token:
        raise MalformedCheckpointError(
            "checkpoint", token, "must look like '<updatedAt>_<docId>'"
        )
    updated_at, _, doc_id = token.partition(TOKEN_SEPARATOR)
    return Checkpoint(parse_updated_at(updated_at), doc_id)


def decode(token: Optional[str]) -> Tuple[int, str]:
    """Decode a token, degrading to the sentinel on anything unparsable."""
    checkpoint = from_token(token)
    return checkpoint.updated_at, checkpoint.doc_id


def from_token(token: Optional[str]) -> Checkpoint:
    if not token:
        return SENTINEL
    try:
        return parse(token)
    except MalformedCheckpointError as e:
        logger.warning("malformed_checkpoint_token", token=token, error=e.message)
        return SENTINEL


def from_params(updated_at: Any = None, doc_id: Any = None) -> Checkpoint:
    """
    Build a checkpoint from separate request parameters.

    An unparsable ``updated_at`` degrades to 0 and a missing id to "".
    """
    position = 0
    if updated_at not in (None, ""):
        try:
            position = parse_updated_at(updated_at)
        except MalformedCheckpointError as e:
            logger.warning("malformed_checkpoint_param", value=updated_at, error=e.message)
    return Checkpoint(position, "" if doc_id is None else str(doc_id))


__all__ = [
    'Checkpoint',
    'SENTINEL',
    'encode',
    'decode',
    'parse',
    'parse_updated_at',
    'from_token',
    'from_params',
]
