"""
Spell-list discovery and per-class resolution.

Resolution order for a class, first non-empty result wins:

    1. Per-class custom override lists (merged when several).
    2. Preloaded list matching the class identifier, same source folder first.
    3. Module custom pack list flagged custom or new.
    4. Enabled journal packs in the class's source folder.
    5. Every enabled journal pack.

The subclass list, when one exists, is then unioned in. Packs are scanned
one at a time in host order so the same snapshot always yields the same
answer. Custom mappings (original list -> replacement list) are applied
whenever an original list is about to be returned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from ..classes import get_spellcasting_class
from ..constants import MODULE_ID, PACK_CUSTOM_LISTS, ListType
from ..models import JournalEntry, JournalPage, Pack, SpellListRef, parse_uuid
from ..settings import SettingKey

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.lists")


def merge_spell_sets(spell_sets: Sequence[Iterable[str]], source_names: Sequence[str] = ()) -> set[str]:
    """Union of spell sets, logging how many each source contributed."""
    merged: set[str] = set()
    for i, spells in enumerate(spell_sets):
        spells = set(spells)
        name = source_names[i] if i < len(source_names) else f"List {i + 1}"
        new = spells - merged
        logger.debug(f"Merging {name}: {len(new)} new, {len(spells) - len(new)} duplicates")
        merged |= spells
    if len(spell_sets) > 1:
        logger.debug(f"Merged {len(spell_sets)} lists into {len(merged)} unique spells")
    return merged


def page_flags(page: JournalPage) -> dict:
    return page.flags.get(MODULE_ID, {}) or {}


def make_list_ref(page: JournalPage, journal: JournalEntry, pack: Pack) -> SpellListRef:
    flags = page_flags(page)
    return SpellListRef(
        uuid=page.uuid,
        name=page.name,
        journal_name=journal.name,
        pack=pack.id,
        pack_label=pack.label,
        folder=pack.folder,
        identifier=page.identifier.lower(),
        list_type=str(getattr(page.list_type, "value", page.list_type)),
        spells=sorted(page.spells),
        is_custom=bool(flags.get("isCustom") or flags.get("isNewList")),
        is_merged=bool(flags.get("isMerged")),
        original_uuid=flags.get("originalUuid"),
    )


class SpellListResolver:
    """Find spell-list pages and resolve class spell lists."""

    def __init__(self, core: Core) -> None:
        self.core = core

    # -----------------------------------------------------------------
    # Discovery
    # -----------------------------------------------------------------

    async def journal_packs(self, enabled_only: bool = True) -> list[Pack]:
        packs = []
        for pack in await self.core.store.list_packs():
            if pack.document_type != "JournalEntry":
                continue
            if enabled_only and not await self.core.settings.is_pack_enabled(pack.id):
                continue
            packs.append(pack)
        return packs

    async def iter_list_pages(self, pack: Pack) -> list[tuple[JournalEntry, JournalPage]]:
        """Valid spell-list pages of a pack; pages without an identifier are skipped."""
        pages = []
        for doc in await self.core.store.get_documents(pack.id):
            if not isinstance(doc, JournalEntry):
                continue
            for page in doc.pages:
                if not page.is_spell_list:
                    continue
                if not page.identifier:
                    logger.warning(f"Skipping spell list '{page.name}' in {pack.id}: no identifier")
                    continue
                pages.append((doc, page))
        return pages

    async def discover_lists(self, include_module_pack: bool = True) -> list[SpellListRef]:
        """Every spell list in enabled journal packs (plus the module's custom pack)."""
        refs: list[SpellListRef] = []
        seen_packs: set[str] = set()
        for pack in await self.journal_packs():
            seen_packs.add(pack.id)
            for journal, page in await self.iter_list_pages(pack):
                refs.append(make_list_ref(page, journal, pack))
        if include_module_pack and PACK_CUSTOM_LISTS not in seen_packs:
            custom_pack = await self.core.store.get_pack(PACK_CUSTOM_LISTS)
            if custom_pack is not None:
                for journal, page in await self.iter_list_pages(custom_pack):
                    refs.append(make_list_ref(page, journal, custom_pack))
        logger.debug(f"Discovered {len(refs)} spell lists")
        return refs

    async def load_list(self, uuid: str) -> JournalPage | None:
        doc = await self.core.store.from_uuid(uuid)
        if not isinstance(doc, JournalPage):
            logger.info(f"Spell list {uuid} not found")
            return None
        if not doc.is_spell_list:
            logger.warning(f"Document {uuid} is not a spell list")
            return None
        return doc

    async def class_source_folder(self, compendium_source: str | None) -> str | None:
        """Top-level folder of the pack a class item came from."""
        if not compendium_source:
            return None
        parsed = parse_uuid(compendium_source)
        if parsed["scope"] != "compendium" or not parsed["pack"]:
            return None
        pack = await self.core.store.get_pack(parsed["pack"])
        return pack.folder if pack else None

    # -----------------------------------------------------------------
    # Resolution
    # -----------------------------------------------------------------

    async def resolve(self, actor_id: str, class_id: str, ignore_custom: bool = False) -> set[str]:
        """Spell UUIDs available to ``class_id`` on the actor. Never raises; empty means no list.

        Args:
            actor_id: Actor to resolve for.
            class_id: Class identifier.
            ignore_custom: Skip the per-class override lists (the class's
                default list is wanted).
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return set()
        caster = get_spellcasting_class(actor, class_id)
        if caster is None:
            logger.info(f"No spellcasting class {class_id} on {actor.name}")
            return set()
        identifier = caster.identifier
        mappings: dict[str, str] = await self.core.settings.get(SettingKey.CUSTOM_SPELL_MAPPINGS) or {}

        result = set() if ignore_custom else await self._from_custom_rules(actor_id, identifier)
        folder = await self.class_source_folder(caster.class_item.compendium_source)
        if not result:
            result = await self._from_preloaded(identifier, folder, mappings)
        if not result:
            result = await self.find_custom_list(identifier)
        if not result and folder:
            result = await self.find_list_by_identifier(ListType.CLASS, identifier, mappings, folder=folder)
            if not result:
                logger.warning(f"No spell list in folder '{folder}' for {identifier}")
        if not result:
            result = await self.find_list_by_identifier(ListType.CLASS, identifier, mappings)

        if caster.subclass is not None:
            sub_id = caster.subclass.identifier.lower()
            if sub_id:
                sub_spells = await self.find_list_by_identifier(ListType.SUBCLASS, sub_id, mappings)
                if sub_spells:
                    logger.debug(f"Adding {len(sub_spells)} subclass spells for {sub_id}")
                    result = result | sub_spells

        if not result:
            logger.warning(f"No spell list found for class {caster.name} ({identifier})")
        return set(result)

    async def _from_custom_rules(self, actor_id: str, identifier: str) -> set[str]:
        rules = await self.core.rules.get_class_rules(actor_id, identifier)
        if not rules.custom_spell_list:
            return set()
        sets: list[list[str]] = []
        names: list[str] = []
        for uuid in rules.custom_spell_list:
            page = await self.load_list(uuid)
            if page is None or not page.spells:
                logger.warning(f"Custom spell list has no spells: {uuid}")
                continue
            sets.append(page.spells)
            names.append(page.name)
        if not sets:
            logger.warning(f"No valid custom spell lists for {identifier}, falling back to discovery")
            return set()
        return merge_spell_sets(sets, names)

    async def _from_preloaded(self, identifier: str, folder: str | None, mappings: dict[str, str]) -> set[str]:
        lists = [
            ref for ref in self.core.preloader.spell_lists()
            if ref.identifier == identifier and ref.list_type == ListType.CLASS.value
        ]
        if not lists:
            return set()
        match = None
        if folder:
            match = next((ref for ref in lists if ref.folder == folder), None)
        if match is None:
            match = lists[0]
            if folder:
                logger.warning(
                    f"No spell list from source '{folder}' for {identifier}, using fallback: {match.name} from {match.pack}"
                )
        if not match.spells:
            return set()
        return await self._apply_mapping(match.uuid, set(match.spells), mappings)

    async def find_custom_list(self, identifier: str) -> set[str]:
        """A list in the module's custom pack flagged custom or new."""
        pack = await self.core.store.get_pack(PACK_CUSTOM_LISTS)
        if pack is None:
            return set()
        for _, page in await self.iter_list_pages(pack):
            flags = page_flags(page)
            if not (flags.get("isCustom") or flags.get("isNewList")):
                continue
            if page.identifier.lower() == identifier and page.spells:
                return set(page.spells)
        return set()

    async def find_list_by_identifier(
        self,
        list_type: ListType,
        identifier: str,
        mappings: dict[str, str] | None = None,
        folder: str | None = None,
    ) -> set[str]:
        """First matching list across enabled journal packs, scanned serially.

        Args:
            list_type: ``class`` or ``subclass``.
            identifier: Lowercase class or subclass identifier.
            mappings: Original list UUID -> replacement list UUID.
            folder: Restrict the scan to packs in this top-level folder.
        """
        mappings = mappings or {}
        for pack in await self.journal_packs():
            if folder is not None and pack.folder != folder:
                continue
            for _, page in await self.iter_list_pages(pack):
                if page.list_type != list_type.value or page.identifier.lower() != identifier:
                    continue
                spells = await self._apply_mapping(page.uuid, set(page.spells), mappings)
                if spells:
                    return spells
        return set()

    async def _apply_mapping(self, page_uuid: str, spells: set[str], mappings: dict[str, str]) -> set[str]:
        replacement_uuid = mappings.get(page_uuid)
        if replacement_uuid:
            replacement = await self.load_list(replacement_uuid)
            if replacement is not None and replacement.spells:
                logger.debug(f"Using mapped list {replacement.name} for {page_uuid}")
                return set(replacement.spells)
        return spells
