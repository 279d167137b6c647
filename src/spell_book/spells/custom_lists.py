"""
Custom spell lists in the module's journal pack.

GMs duplicate a system list to edit it (the duplicate replaces the original
through the ``customSpellListMappings`` setting), create new empty lists,
and merge several lists into one. Lists enabled in the registry setting are
offered as selectable lists.

Folder layout inside the pack:
    Modified  duplicates of existing lists
    Custom    lists created from scratch
    Merged    unions of several lists
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from ..constants import (
    FOLDER_CUSTOM,
    FOLDER_MERGED,
    FOLDER_MODIFIED,
    MODULE_ID,
    MODULE_VERSION,
    PACK_CUSTOM_LISTS,
    ListType,
)
from ..errors import CustomListError
from ..models import JournalEntry, JournalPage, SpellListRef, parse_uuid
from ..settings import SettingKey
from ..store.base import PERMISSION_LIMITED, PERMISSION_OWNER
from .lists import make_list_ref, merge_spell_sets, page_flags

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.lists")


class ListComparison(BaseModel):
    """Differences between an original list and its duplicate."""

    can_compare: bool
    reason: str = ""
    has_original_changed: bool = False
    added: int = 0
    removed: int = 0
    original_spell_count: int = 0
    custom_spell_count: int = 0
    original_mod_time: float = 0
    saved_original_mod_time: float = 0


class CustomListManager:
    """Create, duplicate, merge and register custom spell lists."""

    def __init__(self, core: Core) -> None:
        self.core = core

    # -----------------------------------------------------------------
    # Mappings
    # -----------------------------------------------------------------

    async def get_mappings(self) -> dict[str, str]:
        return dict(await self.core.settings.get(SettingKey.CUSTOM_SPELL_MAPPINGS) or {})

    async def get_valid_mappings(self) -> dict[str, str]:
        """Mappings whose replacement still exists; stale entries are removed from the setting."""
        mappings = await self.get_mappings()
        valid = {}
        for original, custom in mappings.items():
            if await self.core.store.from_uuid(custom) is not None:
                valid[original] = custom
            else:
                logger.warning(f"Custom list {custom} no longer exists, removing mapping")
        if len(valid) != len(mappings):
            await self.core.settings.set(SettingKey.CUSTOM_SPELL_MAPPINGS, valid)
        return valid

    async def _set_mapping(self, original_uuid: str, custom_uuid: str | None) -> None:
        mappings = await self.get_mappings()
        if custom_uuid is None:
            mappings.pop(original_uuid, None)
        else:
            mappings[original_uuid] = custom_uuid
        await self.core.settings.set(SettingKey.CUSTOM_SPELL_MAPPINGS, mappings)
        self.core.preloader.invalidate()

    # -----------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------

    async def _require_pack(self) -> None:
        if await self.core.store.get_pack(PACK_CUSTOM_LISTS) is None:
            logger.error("Custom spell lists pack not found")
            raise CustomListError(f"Pack {PACK_CUSTOM_LISTS} not found")

    async def list_custom_lists(self) -> list[SpellListRef]:
        pack = await self.core.store.get_pack(PACK_CUSTOM_LISTS)
        if pack is None:
            return []
        refs = []
        for journal, page in await self.core.resolver.iter_list_pages(pack):
            ref = make_list_ref(page, journal, pack)
            ref.folder = journal.folder
            refs.append(ref)
        return refs

    async def find_duplicate(self, original_uuid: str) -> JournalPage | None:
        """The duplicate of ``original_uuid`` in the custom pack, if any."""
        if await self.core.store.get_pack(PACK_CUSTOM_LISTS) is None:
            return None
        for doc in await self.core.store.get_documents(PACK_CUSTOM_LISTS):
            if not isinstance(doc, JournalEntry):
                continue
            for page in doc.pages:
                if page_flags(page).get("originalUuid") == original_uuid:
                    return page
        return None

    # -----------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------

    async def duplicate_list(self, original_uuid: str) -> JournalPage:
        """Copy a list into the Modified folder and map the original to it.

        An existing duplicate is returned instead of creating a second one.

        Raises:
            CustomListError: If the pack or the original list is missing.
        """
        await self._require_pack()
        existing = await self.find_duplicate(original_uuid)
        if existing is not None:
            return existing
        original = await self.core.resolver.load_list(original_uuid)
        if original is None:
            raise CustomListError(f"Spell list {original_uuid} not found")

        parsed = parse_uuid(original_uuid)
        parent = None
        if parsed["pack"] and parsed["document_id"]:
            parent = await self.core.store.get_document(parsed["pack"], parsed["document_id"])
        journal_name = f"{parent.name} - {original.name}" if isinstance(parent, JournalEntry) else original.name

        flags = dict(original.flags)
        flags[MODULE_ID] = {
            "originalUuid": original_uuid,
            "originalName": original.name,
            "originalModTime": original.modified_time,
            "originalVersion": MODULE_VERSION,
            "isDuplicate": True,
        }
        page = JournalPage(
            id="",
            name=original.name,
            identifier=original.identifier,
            list_type=original.list_type,
            spells=list(original.spells),
            flags=flags,
        )
        journal = await self.core.store.create_journal(
            PACK_CUSTOM_LISTS, JournalEntry(id="", name=journal_name, folder=FOLDER_MODIFIED, pages=[page])
        )
        created = journal.pages[0]
        await self._set_mapping(original_uuid, created.uuid)
        logger.info(f"Duplicated spell list {original.name} to {created.uuid}")
        return created

    async def remove_custom_list(self, duplicate_uuid: str) -> bool:
        """Delete a custom list's journal and drop its mapping.

        Returns:
            False when the list does not exist.
        """
        page = await self.core.store.from_uuid(duplicate_uuid)
        if not isinstance(page, JournalPage):
            return False
        parsed = parse_uuid(duplicate_uuid)
        if not parsed["pack"] or not parsed["document_id"]:
            return False
        original_uuid = page_flags(page).get("originalUuid")
        if original_uuid:
            await self._set_mapping(original_uuid, None)
        await self.core.store.delete_journal(parsed["pack"], parsed["document_id"])
        self.core.preloader.invalidate()
        logger.info(f"Removed custom spell list {page.name}")
        return True

    async def create_list(self, name: str, identifier: str, list_type: str = ListType.CLASS.value) -> JournalPage:
        """Create an empty list in the Custom folder, owned by the current user.

        An unknown ``list_type`` falls back to ``class``.
        """
        await self._require_pack()
        valid_types = {t.value for t in ListType}
        if list_type not in valid_types:
            logger.warning(f"Invalid spell list type '{list_type}', defaulting to 'class'")
            list_type = ListType.CLASS.value
        ownership = {"default": PERMISSION_LIMITED, self.core.store.current_user().id: PERMISSION_OWNER}
        page = JournalPage(
            id="",
            name=name,
            identifier=identifier.lower(),
            list_type=list_type,
            content=f"Custom spell list for {identifier}",
            flags={
                MODULE_ID: {
                    "isCustom": True,
                    "isNewList": True,
                    "isDuplicate": False,
                    "creationDate": self.core.now_ms(),
                }
            },
            ownership=ownership,
        )
        journal = await self.core.store.create_journal(
            PACK_CUSTOM_LISTS,
            JournalEntry(id="", name=name, folder=FOLDER_CUSTOM, pages=[page], ownership=ownership),
        )
        created = journal.pages[0]
        self.core.preloader.invalidate()
        logger.debug(f"Created {list_type} spell list: {name}")
        return created

    async def merge_lists(self, list_uuids: Sequence[str], name: str) -> JournalPage:
        """Union several lists into a new list in the Merged folder.

        The merged list takes the identifier of the first source list.

        Raises:
            CustomListError: With fewer than two lists, or when one cannot be loaded.
        """
        if len(list_uuids) < 2:
            raise CustomListError("At least two spell lists are required to merge")
        await self._require_pack()
        pages = []
        for uuid in list_uuids:
            page = await self.core.resolver.load_list(uuid)
            if page is None:
                raise CustomListError(f"Unable to load spell list: {uuid}")
            pages.append(page)
        spells = merge_spell_sets([p.spells for p in pages], [p.name for p in pages])
        identifier = (pages[0].identifier or "merged").lower()
        names = ", ".join(p.name for p in pages)
        page = JournalPage(
            id="",
            name=name,
            identifier=identifier,
            list_type=pages[0].list_type,
            spells=sorted(spells),
            content=f"Merged from {len(pages)} lists: {names}",
            flags={
                MODULE_ID: {
                    "isCustom": True,
                    "isMerged": True,
                    "isDuplicate": False,
                    "creationDate": self.core.now_ms(),
                    "sourceListUuids": list(list_uuids),
                }
            },
        )
        journal = await self.core.store.create_journal(
            PACK_CUSTOM_LISTS, JournalEntry(id="", name=name, folder=FOLDER_MERGED, pages=[page])
        )
        self.core.preloader.invalidate()
        logger.debug(f"Created merged spell list {name} with {len(spells)} spells from {len(pages)} lists")
        return journal.pages[0]

    # -----------------------------------------------------------------
    # Editing
    # -----------------------------------------------------------------

    async def add_spell(self, list_uuid: str, spell_uuid: str) -> JournalPage | None:
        return await self._edit_spells(list_uuid, spell_uuid, add=True)

    async def remove_spell(self, list_uuid: str, spell_uuid: str) -> JournalPage | None:
        return await self._edit_spells(list_uuid, spell_uuid, add=False)

    async def _edit_spells(self, list_uuid: str, spell_uuid: str, add: bool) -> JournalPage | None:
        page = await self.core.resolver.load_list(list_uuid)
        if page is None:
            return None
        spells = set(page.spells)
        if (spell_uuid in spells) == add:
            logger.debug(f"Spell {spell_uuid} already {'in' if add else 'absent from'} list {page.name}")
            return page
        if add:
            spells.add(spell_uuid)
        else:
            spells.discard(spell_uuid)
        updated = await self.core.store.update_page(list_uuid, {"spells": sorted(spells)})
        await self.core.preloader.handle_page_change(updated, parse_uuid(list_uuid)["pack"])
        logger.debug(f"{'Added' if add else 'Removed'} spell {spell_uuid} {'to' if add else 'from'} list {page.name}")
        return updated

    async def compare_list_versions(self, original_uuid: str, custom_uuid: str) -> ListComparison:
        """Count differences and detect whether the original changed since it was copied."""
        original = await self.core.store.from_uuid(original_uuid)
        custom = await self.core.store.from_uuid(custom_uuid)
        if not isinstance(original, JournalPage) or not isinstance(custom, JournalPage):
            reason = "Original not found" if not isinstance(original, JournalPage) else "Custom not found"
            return ListComparison(can_compare=False, reason=reason)
        flags = page_flags(custom)
        saved_mod_time = float(flags.get("originalModTime") or 0)
        original_spells = set(original.spells)
        custom_spells = set(custom.spells)
        return ListComparison(
            can_compare=True,
            has_original_changed=original.modified_time > saved_mod_time,
            added=len(custom_spells - original_spells),
            removed=len(original_spells - custom_spells),
            original_spell_count=len(original_spells),
            custom_spell_count=len(custom_spells),
            original_mod_time=original.modified_time,
            saved_original_mod_time=saved_mod_time,
        )

    # -----------------------------------------------------------------
    # Registry
    # -----------------------------------------------------------------

    async def registry_enabled_lists(self) -> list[str]:
        return list(await self.core.settings.get(SettingKey.REGISTRY_ENABLED_LISTS) or [])

    async def is_enabled_for_registry(self, uuid: str) -> bool:
        return uuid in await self.registry_enabled_lists()

    async def toggle_registry(self, uuid: str) -> bool:
        """Flip registry membership of a list.

        Returns:
            The new enabled state.
        """
        enabled = await self.registry_enabled_lists()
        if uuid in enabled:
            enabled.remove(uuid)
            state = False
        else:
            enabled.append(uuid)
            state = True
        await self.core.settings.set(SettingKey.REGISTRY_ENABLED_LISTS, enabled)
        return state

    async def register_enabled_lists(self) -> dict[str, Any]:
        """Validate enabled lists; invalid entries are dropped from the setting.

        Returns:
            Counts ``total``, ``registered`` and ``skipped`` plus the valid
            ``lists`` as ``SpellListRef`` records.
        """
        enabled = await self.registry_enabled_lists()
        result: dict[str, Any] = {"total": len(enabled), "registered": 0, "skipped": 0, "lists": []}
        valid: list[str] = []
        for uuid in enabled:
            page = await self.core.store.from_uuid(uuid)
            if not isinstance(page, JournalPage) or not page.is_spell_list:
                logger.warning(f"Invalid spell list (will be removed from settings): {uuid}")
                result["skipped"] += 1
                continue
            if not page.identifier or not page.list_type:
                logger.warning(f"Missing required fields (will be removed from settings): {page.name}")
                result["skipped"] += 1
                continue
            valid.append(uuid)
            result["registered"] += 1
            result["lists"].append(
                SpellListRef(
                    uuid=uuid,
                    name=page.name,
                    pack=parse_uuid(uuid)["pack"] or "",
                    identifier=page.identifier.lower(),
                    list_type=str(getattr(page.list_type, "value", page.list_type)),
                    spells=sorted(page.spells),
                )
            )
        if len(valid) != len(enabled):
            logger.debug(f"Removing {len(enabled) - len(valid)} invalid spell list(s) from settings")
            await self.core.settings.set(SettingKey.REGISTRY_ENABLED_LISTS, valid)
        return result

    async def available_lists(self) -> list[SpellListRef]:
        """Discovered lists plus registry-enabled lists, de-duplicated by UUID."""
        refs = {ref.uuid: ref for ref in await self.core.resolver.discover_lists()}
        registered = await self.register_enabled_lists()
        for ref in registered["lists"]:
            refs.setdefault(ref.uuid, ref)
        return sorted(refs.values(), key=lambda r: (r.name.lower(), r.uuid))
