"""
Process-wide spell preload cache.

Holds the discovered spell lists and enriched spell documents so the
resolver and the spell index can answer without re-reading packs. The
cache is tied to the module version and is dropped whenever a spell-list
page in an enabled pack changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..constants import ListType
from ..models import JournalPage, Spell, SpellListRef, normalize_uuid

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.preloader")


@dataclass
class PreloadCache:
    """Snapshot stored by the preloader."""

    spell_lists: list[SpellListRef]
    enriched_spells: dict[str, Spell]
    timestamp: float
    version: str
    mode: str
    list_count: int = field(init=False)

    def __post_init__(self) -> None:
        self.list_count = len(self.spell_lists)


class SpellDataPreloader:
    """Builds and serves the preload cache."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._cache: PreloadCache | None = None

    # -----------------------------------------------------------------
    # Building
    # -----------------------------------------------------------------

    async def preload(self) -> PreloadCache:
        """Preload for the current user: every list and spell for a GM, own spells for a player."""
        user = self.core.store.current_user()
        if user.is_gm:
            return await self.preload_for_gm()
        return await self.preload_for_player(user.character_id)

    async def preload_for_gm(self) -> PreloadCache:
        spell_lists = sorted(await self.core.resolver.discover_lists(), key=lambda ref: ref.name)
        spells = await self.core.index.fetch_all()
        return self._store(spell_lists, spells, "gm-setup")

    async def preload_for_player(self, actor_id: str | None) -> PreloadCache:
        if not actor_id:
            logger.debug("No player character, caching empty preload")
            return self._store([], [], "no-character")
        uuids: set[str] = set()
        for class_id in await self.core.progression.class_identifiers(actor_id):
            uuids |= await self.core.resolver.resolve(actor_id, class_id)
            if await self.core.wizard.is_wizard_class(actor_id, class_id):
                uuids |= await self.core.wizard.get_spellbook_spells(actor_id, class_id)
        spells = await self.core.index.fetch(uuids, use_cache=False) if uuids else []
        return self._store([], spells, "player")

    def _store(self, spell_lists: list[SpellListRef], spells: list[Spell], mode: str) -> PreloadCache:
        self._cache = PreloadCache(
            spell_lists=spell_lists,
            enriched_spells={normalize_uuid(s.uuid): s for s in spells},
            timestamp=self.core.clock(),
            version=self.core.version,
            mode=mode,
        )
        logger.info(f"Preloaded {len(spell_lists)} spell lists and {len(spells)} spells ({mode})")
        return self._cache

    # -----------------------------------------------------------------
    # Reading
    # -----------------------------------------------------------------

    def get(self) -> PreloadCache | None:
        """The cache, or None when absent or built by another module version."""
        if self._cache is None or self._cache.version != self.core.version:
            return None
        return self._cache

    def spell_lists(self) -> list[SpellListRef]:
        cache = self.get()
        return list(cache.spell_lists) if cache else []

    def lookup(self, uuids: list[str]) -> list[Spell] | None:
        """Cached spells for ``uuids`` only when every one of them is cached."""
        cache = self.get()
        if cache is None or not cache.enriched_spells:
            return None
        found = []
        for uuid in uuids:
            spell = cache.enriched_spells.get(normalize_uuid(uuid))
            if spell is None:
                return None
            found.append(spell.model_copy())
        return found

    # -----------------------------------------------------------------
    # Invalidation
    # -----------------------------------------------------------------

    def invalidate(self) -> None:
        if self._cache is not None:
            logger.debug("Invalidating spell list cache")
        self._cache = None

    async def should_invalidate_for_page(self, page: JournalPage, pack_id: str | None) -> bool:
        """Only spell-list pages of class or subclass type inside an enabled pack matter."""
        if not page.is_spell_list:
            return False
        if page.list_type == ListType.OTHER or page.list_type == ListType.OTHER.value:
            return False
        if pack_id is None:
            return True
        return await self.core.settings.is_pack_enabled(pack_id)

    async def handle_page_change(self, page: JournalPage, pack_id: str | None) -> bool:
        """Host hook for page create/update/delete. Returns True when the cache was dropped."""
        if await self.should_invalidate_for_page(page, pack_id):
            self.invalidate()
            return True
        return False
