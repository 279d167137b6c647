"""
Spell Book - spellcasting management core for dnd5e actors.

Computes what a character can prepare and cast, enforces preparation and
swapping rules per class, keeps wizard spellbooks, and coordinates spell
choices across a party. All host access goes through a ``DocumentStore``.
"""

from .constants import MODULE_ID, MODULE_VERSION
from .core import Core, configure_logging
from .errors import ChangeDecision, Reason, Result, SpellBookError
from .store import DocumentStore, MemoryDocumentStore

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("spell-book-core")
except Exception:
    __version__ = MODULE_VERSION  # Fallback if metadata unavailable
__all__ = [
    "Core",
    "configure_logging",
    "DocumentStore",
    "MemoryDocumentStore",
    "ChangeDecision",
    "Reason",
    "Result",
    "SpellBookError",
    "MODULE_ID",
    "MODULE_VERSION",
]
