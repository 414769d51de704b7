"""
Replication protocol engine.

This package provides:
- The checkpoint codec
- The pull engine (cursor-stable pagination)
- The push engine and its conflict detector
- The write clock and per-document lock table they share
"""

from .checkpoint import Checkpoint, SENTINEL, encode, decode
from .concurrency import KeyLockTable, WriteClock
from .conflict import ConflictReason, detect_conflict
from .models import ChangeRow, Document
from .pull import PullEngine, PullResult
from .push import PushEngine

__all__ = [
    'Checkpoint',
    'SENTINEL',
    'encode',
    'decode',
    'KeyLockTable',
    'WriteClock',
    'ConflictReason',
    'detect_conflict',
    'ChangeRow',
    'Document',
    'PullEngine',
    'PullResult',
    'PushEngine',
]
