"""
Named snapshots of a class's prepared spells.

Loadouts are stored per actor under the ``spellLoadouts`` flag. Applying
one produces a desired preparation state that goes through the normal
save path, so every preparation rule still applies.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from shortuuid import random as shortuuid_random

from .errors import LoadoutError
from .models import Loadout, normalize_uuid
from .preparation.types import DesiredSpell, SaveResult

if TYPE_CHECKING:
    from .core import Core

logger = logging.getLogger("spell-book.loadouts")

CACHE_TTL = 30.0


class LoadoutManager:
    """Save, list, apply and delete spell loadouts."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._cache: dict[str, tuple[float, dict[str, Loadout]]] = {}

    def clear_cache(self, actor_id: str | None = None) -> None:
        if actor_id is None:
            self._cache.clear()
        else:
            self._cache.pop(actor_id, None)

    async def _all(self, actor_id: str) -> dict[str, Loadout]:
        now = self.core.clock()
        cached = self._cache.get(actor_id)
        if cached and cached[0] > now:
            return cached[1]
        loadouts = await self.core.flags.get_loadouts(actor_id)
        self._cache[actor_id] = (now + CACHE_TTL, loadouts)
        return loadouts

    async def get_available(self, actor_id: str, class_id: str | None = None) -> list[Loadout]:
        """Loadouts of the actor; with ``class_id``, those for that class or for every class."""
        loadouts = list((await self._all(actor_id)).values())
        if class_id:
            loadouts = [lo for lo in loadouts if lo.class_identifier in (None, class_id)]
        return sorted(loadouts, key=lambda lo: lo.created_at)

    async def capture(self, actor_id: str, class_id: str) -> list[str]:
        """Prepared UUIDs of a class as currently stored."""
        return sorted(await self.core.state.prepared_uuids(actor_id, class_id))

    async def save(
        self,
        actor_id: str,
        name: str,
        spell_configuration: Sequence[str],
        class_id: str | None = None,
        description: str = "",
    ) -> Loadout:
        """Store a new loadout.

        Raises:
            LoadoutError: If the name is blank or the actor is missing.
        """
        if not name or not name.strip():
            raise LoadoutError("Loadout name is required")
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            raise LoadoutError(f"Actor {actor_id} not found")
        now = self.core.now_ms()
        loadout = Loadout(
            id=shortuuid_random(length=16),
            name=name.strip(),
            description=(description or "").strip(),
            class_identifier=class_id,
            spell_configuration=[normalize_uuid(u) for u in spell_configuration],
            created_at=now,
            updated_at=now,
        )
        await self.core.flags.set_loadout(actor_id, loadout)
        self.clear_cache(actor_id)
        logger.info(f"Saved loadout {loadout.name} for {class_id or 'all classes'} on {actor.name}")
        return loadout

    async def load(self, actor_id: str, loadout_id: str) -> Loadout | None:
        return (await self.core.flags.get_loadouts(actor_id)).get(loadout_id)

    async def delete(self, actor_id: str, loadout_id: str) -> bool:
        loadout = await self.load(actor_id, loadout_id)
        if loadout is None:
            logger.warning(f"Loadout {loadout_id} not found on {actor_id}")
            return False
        await self.core.flags.remove_loadout(actor_id, loadout_id)
        self.clear_cache(actor_id)
        logger.info(f"Deleted loadout {loadout.name}")
        return True

    async def build_desired(self, actor_id: str, loadout_id: str, class_id: str) -> list[DesiredSpell]:
        """Desired state that prepares exactly the loadout's spells for ``class_id``.

        Spells currently prepared but absent from the loadout are unprepared.

        Raises:
            LoadoutError: If the loadout does not exist.
        """
        loadout = await self.load(actor_id, loadout_id)
        if loadout is None:
            raise LoadoutError(f"Loadout {loadout_id} not found")
        wanted = set(loadout.spell_configuration)
        current = {normalize_uuid(u) for u in await self.core.state.prepared_uuids(actor_id, class_id)}
        spells = {normalize_uuid(s.uuid): s for s in await self.core.index.fetch(wanted | current)}
        desired = []
        for uuid in sorted(wanted | current):
            spell = spells.get(uuid)
            if spell is None:
                logger.warning(f"Loadout spell {uuid} could not be loaded; skipped")
                continue
            desired.append(
                DesiredSpell(
                    uuid=uuid,
                    name=spell.name,
                    level=spell.level,
                    is_prepared=uuid in wanted,
                    was_prepared=uuid in current,
                    is_ritual=spell.is_ritual,
                )
            )
        return desired

    async def apply(self, actor_id: str, loadout_id: str, class_id: str) -> SaveResult:
        """Apply a loadout through the preparation engine."""
        desired = await self.build_desired(actor_id, loadout_id, class_id)
        result = await self.core.preparation.save(actor_id, class_id, desired)
        logger.info(f"Applied loadout {loadout_id} to {class_id} on {actor_id}")
        return result
