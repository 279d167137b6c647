"""
Document store adapter and typed flag facade.
"""

from .base import (
    PERMISSION_LIMITED,
    PERMISSION_NONE,
    PERMISSION_OBSERVER,
    PERMISSION_OWNER,
    DocumentStore,
)
from .flags import ActorFlags
from .memory import MemoryDocumentStore, WorldSnapshot

__all__ = [
    "DocumentStore",
    "MemoryDocumentStore",
    "WorldSnapshot",
    "ActorFlags",
    "PERMISSION_NONE",
    "PERMISSION_LIMITED",
    "PERMISSION_OBSERVER",
    "PERMISSION_OWNER",
]
