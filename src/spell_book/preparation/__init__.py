"""
Spell preparation for multiclass actors.

Per-class prepared sets, cantrip limits and swap windows, ritual-only
copies and the engine that reconciles a submitted preparation state.
The engine itself is imported from ``spell_book.preparation.engine``.
"""

from .state import make_key, parse_key
from .types import (
    ChangeContext,
    ChangeSet,
    DesiredSpell,
    LimitStatus,
    PreparationState,
    PreparationStats,
    PreparationStatus,
    RejectedSpell,
    SaveResult,
)

__all__ = [
    "make_key",
    "parse_key",
    "ChangeContext",
    "ChangeSet",
    "DesiredSpell",
    "LimitStatus",
    "PreparationState",
    "PreparationStats",
    "PreparationStatus",
    "RejectedSpell",
    "SaveResult",
]
