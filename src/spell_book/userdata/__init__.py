"""Per-user spell notes, favorites and usage counters."""

from .codec import decode_key, encode_key
from .records import ActorSpellData, SpellUserData, SpellView, UsageStats, UserRecord
from .store import UserSpellData
from .tables import parse_tables, render_tables, sanitize_notes
from .usage import UsageTracker

__all__ = [
    "ActorSpellData",
    "SpellUserData",
    "SpellView",
    "UsageStats",
    "UserRecord",
    "UserSpellData",
    "UsageTracker",
    "decode_key",
    "encode_key",
    "parse_tables",
    "render_tables",
    "sanitize_notes",
]
