"""
Spell discovery: the spell index, class spell lists, custom lists,
the preload cache and progression limits.
"""

from .custom_lists import CustomListManager, ListComparison
from .index import SpellIndex, organize_spells_by_level
from .lists import SpellListResolver, merge_spell_sets
from .preloader import SpellDataPreloader
from .progression import ProgressionCalculator

__all__ = [
    "CustomListManager",
    "ListComparison",
    "SpellIndex",
    "organize_spells_by_level",
    "SpellListResolver",
    "merge_spell_sets",
    "SpellDataPreloader",
    "ProgressionCalculator",
]
