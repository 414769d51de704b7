"""
docsync - server side of a checkpoint-based document replication protocol.

Clients pull documents changed since a checkpoint and push local changes
together with the state they last observed; the server applies them under
last-write-wins rules and reports conflicts.
"""

__version__ = "0.1.0"

__all__ = [
    '__version__',
]
