"""
Bulk spell fetching.

Compendium spells are read through pack indexes with an explicit field
projection, one index read per pack per batch. World spells fall back to
single UUID lookups bounded by the core's lookup semaphore. Per-spell
failures never raise; they are collected as ``FetchError`` records.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..constants import MAX_SPELL_LEVEL, SPELL_INDEX_FIELDS
from ..errors import FetchError, Reason
from ..models import Spell, SpellItem, normalize_uuid, parse_uuid

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.index")


def spell_from_index(entry: dict[str, Any], uuid: str) -> Spell:
    """Build a ``Spell`` from a projected pack index entry."""
    data = {k: v for k, v in entry.items() if k not in ("_id", "uuid", "type")}
    return Spell.model_validate({**data, "id": entry["_id"], "uuid": uuid})


def organize_spells_by_level(spells: Iterable[Spell]) -> list[dict[str, Any]]:
    """Group spells into ``[{"level": n, "spells": [...]}]`` sorted by level then name."""
    by_level: dict[int, list[Spell]] = defaultdict(list)
    for spell in spells:
        by_level[spell.level].append(spell)
    return [
        {"level": level, "spells": sorted(by_level[level], key=lambda s: s.name)}
        for level in sorted(by_level)
    ]


class SpellIndex:
    """Fetch spell documents for sets of UUIDs."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def fetch(
        self,
        uuids: Iterable[str],
        max_level: int = MAX_SPELL_LEVEL,
        use_cache: bool = True,
        errors: list[FetchError] | None = None,
    ) -> list[Spell]:
        """Fetch spells, dropping those above ``max_level``.

        Args:
            uuids: Spell UUIDs in either compendium form.
            max_level: Highest spell level to keep.
            use_cache: Answer from the preload cache when it covers the request.
            errors: Caller-owned list that receives one ``FetchError`` per
                UUID that could not be resolved.

        Returns:
            Spells sorted by level then name.
        """
        requested = sorted({normalize_uuid(u) for u in uuids if u})
        if errors is None:
            errors = []
        already_failed = len(errors)

        if use_cache:
            cached = self.core.preloader.lookup(requested)
            if cached is not None:
                logger.debug(f"Served {len(cached)} spells from preload cache")
                return self._finish(cached, max_level)

        by_pack: dict[str, list[tuple[str, str]]] = defaultdict(list)
        world: list[str] = []
        for uuid in requested:
            parsed = parse_uuid(uuid)
            if parsed["scope"] == "compendium" and parsed["document_id"]:
                by_pack[parsed["pack"] or ""].append((uuid, parsed["document_id"]))
            else:
                world.append(uuid)

        spells: list[Spell] = []
        for pack_id, entries in by_pack.items():
            spells.extend(await self._fetch_from_pack(pack_id, entries, errors))
        if world:
            spells.extend(await self._fetch_world(world, errors))

        failed = errors[already_failed:]
        if failed:
            logger.error(f"Failed to fetch {len(failed)} spells out of {len(requested)}")
            for error in failed:
                logger.debug(f"  {error.uuid}: {error.reason.value} {error.detail}")
        return self._finish(spells, max_level)

    async def fetch_all(self, max_level: int = MAX_SPELL_LEVEL) -> list[Spell]:
        """Every spell in every enabled Item pack."""
        spells: list[Spell] = []
        for pack in await self.core.store.list_packs():
            if pack.document_type != "Item":
                continue
            if not await self.core.settings.is_pack_enabled(pack.id):
                continue
            index = await self.core.store.get_index(pack.id, SPELL_INDEX_FIELDS)
            for entry in index:
                if entry.get("type") != "spell":
                    continue
                uuid = normalize_uuid(entry.get("uuid") or f"Compendium.{pack.id}.Item.{entry['_id']}")
                try:
                    spells.append(spell_from_index(entry, uuid))
                except ValidationError as e:
                    logger.warning(f"Skipping invalid spell {uuid}: {e}")
        return self._finish(spells, max_level)

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    async def _fetch_from_pack(
        self, pack_id: str, entries: list[tuple[str, str]], errors: list[FetchError]
    ) -> list[Spell]:
        pack = await self.core.store.get_pack(pack_id)
        if pack is None:
            for uuid, _ in entries:
                errors.append(FetchError(uuid=uuid, reason=Reason.PACK_NOT_FOUND, detail=pack_id))
            return []

        index = await self.core.store.get_index(pack_id, SPELL_INDEX_FIELDS)
        by_id = {entry["_id"]: entry for entry in index}
        found: list[Spell] = []
        for uuid, doc_id in entries:
            entry = by_id.get(doc_id)
            if entry is None:
                errors.append(FetchError(uuid=uuid, reason=Reason.NOT_IN_COMPENDIUM))
                continue
            if entry.get("type") != "spell":
                errors.append(FetchError(uuid=uuid, reason=Reason.NOT_A_SPELL, detail=str(entry.get("type"))))
                continue
            try:
                found.append(spell_from_index(entry, uuid))
            except ValidationError as e:
                errors.append(FetchError(uuid=uuid, reason=Reason.INVALID_SHAPE, detail=str(e)))
        return found

    async def _fetch_world(self, uuids: list[str], errors: list[FetchError]) -> list[Spell]:
        semaphore = self.core.lookup_semaphore

        async def _lookup_one(uuid: str) -> tuple[str, Any]:
            async with semaphore:
                return uuid, await self.core.store.from_uuid(uuid)

        results = await asyncio.gather(*[_lookup_one(uuid) for uuid in uuids])
        found: list[Spell] = []
        for uuid, doc in results:
            if doc is None:
                errors.append(FetchError(uuid=uuid, reason=Reason.NOT_FOUND))
            elif isinstance(doc, Spell):
                found.append(doc)
            elif isinstance(doc, SpellItem):
                data = doc.model_dump(include=set(Spell.model_fields))
                found.append(Spell.model_validate({**data, "uuid": doc.canonical_uuid}))
            else:
                errors.append(FetchError(uuid=uuid, reason=Reason.NOT_A_SPELL))
        return found

    @staticmethod
    def _finish(spells: list[Spell], max_level: int) -> list[Spell]:
        kept = [s for s in spells if s.level <= max_level]
        dropped = len(spells) - len(kept)
        if dropped:
            logger.debug(f"Filtered out {dropped} spells above level {max_level}")
        return sorted(kept, key=lambda s: (s.level, s.name))
