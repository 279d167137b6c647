"""
Spell usage counters.

Each cast of a spell by a character increments that actor's counters in
the owning user's spell data, split into combat and exploration. Casts of
the same spell by the same actor within one second count once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..constants import UsageContext
from ..models import SpellItem
from ..settings import SettingKey
from .records import UsageStats

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.userdata")

DEDUP_WINDOW = 1.0


class UsageTracker:
    def __init__(self, core: Core) -> None:
        self.core = core
        self._recent: dict[tuple[str, str], float] = {}

    def clear_cache(self) -> None:
        self._recent.clear()

    async def record_usage(self, actor_id: str, spell: SpellItem | str, in_combat: bool) -> UsageStats | None:
        """Record one cast.

        Args:
            actor_id: Casting actor; only ``character`` actors are tracked.
            spell: The owned spell item, or its UUID.
            in_combat: Whether the actor is a combatant in the active combat.

        Returns:
            Updated counters, or None when tracking is off, the cast is a
            duplicate, or nothing could be stored.
        """
        if not await self.core.settings.get(SettingKey.ENABLE_SPELL_USAGE_TRACKING):
            return None
        actor = await self.core.get_actor(actor_id)
        if actor is None or actor.type != "character":
            return None
        uuid = spell.canonical_uuid if isinstance(spell, SpellItem) else spell
        uuid = await self.core.user_data.canonical_uuid(uuid)

        now = self.core.clock()
        self._recent = {k: t for k, t in self._recent.items() if now - t < DEDUP_WINDOW}
        key = (actor_id, uuid)
        if key in self._recent:
            logger.debug(f"Ignoring duplicate usage of {uuid} by {actor.name}")
            return None
        self._recent[key] = now

        owner = next((u for u in await self.core.store.list_users() if u.character_id == actor_id), None)
        user_id = owner.id if owner else None
        context = UsageContext.COMBAT if in_combat else UsageContext.EXPLORATION
        stats = await self.core.user_data.record_usage(uuid, actor_id, context, user_id)
        if stats is not None:
            logger.debug(f"Tracked spell usage for {actor.name}: {uuid} ({context.value})")
        return stats
