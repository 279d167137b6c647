"""
Preparation state store.

Per actor, a map of class identifier -> set of class spell keys
(``"<class>:<canonicalUuid>"``), plus the flattened list of prepared UUIDs
kept for older consumers. The flat list is always derived from the per-class
sets, never written independently.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..models import Actor, normalize_uuid

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.preparation")


def make_key(class_id: str, uuid: str) -> str:
    return f"{class_id}:{normalize_uuid(uuid)}"


def parse_key(key: str) -> tuple[str, str]:
    """Split a class spell key on its first colon."""
    class_id, _, uuid = key.partition(":")
    return class_id, uuid


def flatten(prepared_by_class: dict[str, set[str]]) -> list[str]:
    """De-duplicated prepared UUIDs across every class, in class then key order."""
    seen: dict[str, None] = {}
    for class_id in sorted(prepared_by_class):
        for key in sorted(prepared_by_class[class_id]):
            seen.setdefault(parse_key(key)[1], None)
    return list(seen)


class PreparationStateStore:
    """Reads and writes the per-class prepared sets of actors."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def get_prepared_by_class(self, actor_id: str) -> dict[str, set[str]]:
        raw = await self.core.flags.get_prepared_by_class(actor_id)
        return {class_id: set(keys) for class_id, keys in raw.items()}

    async def get_class_prepared(self, actor_id: str, class_id: str) -> set[str]:
        return (await self.get_prepared_by_class(actor_id)).get(class_id, set())

    async def prepared_uuids(self, actor_id: str, class_id: str) -> set[str]:
        return {parse_key(key)[1] for key in await self.get_class_prepared(actor_id, class_id)}

    async def set_class_prepared(self, actor_id: str, class_id: str, keys: Iterable[str]) -> None:
        """Persist one class's set, then rebuild the flat mirror."""
        await self.core.flags.set_class_prepared(actor_id, class_id, sorted(set(keys)))
        await self.rebuild_mirror(actor_id)

    async def remove_keys(self, actor_id: str, class_id: str, keys: Iterable[str]) -> None:
        doomed = set(keys)
        current = await self.get_class_prepared(actor_id, class_id)
        await self.set_class_prepared(actor_id, class_id, current - doomed)

    async def rebuild_mirror(self, actor_id: str) -> list[str]:
        mirror = flatten(await self.get_prepared_by_class(actor_id))
        await self.core.flags.set_prepared_spells(actor_id, mirror)
        return mirror

    async def find_other_class(self, actor_id: str, class_id: str, uuid: str) -> str | None:
        """Another class that has ``uuid`` prepared, if any."""
        uuid = normalize_uuid(uuid)
        for other, keys in sorted((await self.get_prepared_by_class(actor_id)).items()):
            if other != class_id and make_key(other, uuid) in keys:
                return other
        return None

    # -----------------------------------------------------------------
    # Cleanup passes
    # -----------------------------------------------------------------

    async def cleanup_stale_preparation_flags(self, actor_id: str) -> int:
        """Drop keys with no owned copy for their class.

        Returns:
            Number of keys removed.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        prepared = await self.get_prepared_by_class(actor_id)
        removed = 0
        cleaned: dict[str, set[str]] = {}
        for class_id, keys in prepared.items():
            kept = {key for key in keys if self._has_owned_copy(actor, class_id, parse_key(key)[1])}
            removed += len(keys) - len(kept)
            cleaned[class_id] = kept
        if removed:
            await self.core.flags.set_prepared_by_class(
                actor_id, {class_id: sorted(keys) for class_id, keys in cleaned.items()}
            )
            await self.rebuild_mirror(actor_id)
            logger.info(f"Removed {removed} stale preparation keys from {actor.name}")
        return removed

    @staticmethod
    def _has_owned_copy(actor: Actor, class_id: str, uuid: str) -> bool:
        return any(
            item.source_class in (class_id, None)
            for item in actor.copies_of(uuid)
        )

    async def cleanup_cantrips_for_class(self, actor_id: str, class_id: str) -> int:
        """Drop cantrip keys from a class's set (used when the class hides cantrips)."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        keys = await self.get_class_prepared(actor_id, class_id)
        levels: dict[str, int] = {}
        unknown: list[str] = []
        for key in keys:
            uuid = parse_key(key)[1]
            copies = actor.copies_of(uuid)
            if copies:
                levels[uuid] = copies[0].level
            else:
                unknown.append(uuid)
        if unknown:
            for spell in await self.core.index.fetch(unknown):
                levels[normalize_uuid(spell.uuid)] = spell.level
        cantrips = {key for key in keys if levels.get(parse_key(key)[1], -1) == 0}
        if cantrips:
            await self.remove_keys(actor_id, class_id, cantrips)
            logger.debug(f"Removed {len(cantrips)} cantrips from {class_id} on {actor.name}")
        return len(cantrips)
