"""
Journal-backed per-user spell data.

All users share one journal, "User Spell Data", in the module's user-data
pack; each user owns one text page in it. Pages are created on the first
write, never on read. Records are cached for a few seconds per user, and
flattened per-spell views for as long.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..constants import MODULE_ID, PACK_USER_DATA, USER_DATA_JOURNAL_NAME, USER_DATA_VERSION, UsageContext
from ..models import JournalEntry, JournalPage, SpellItem, normalize_uuid, parse_uuid
from ..settings import SettingKey
from ..store.base import PERMISSION_NONE, PERMISSION_OWNER
from .records import SpellView, UsageStats, UserRecord
from .tables import parse_tables, render_tables, sanitize_notes

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.userdata")

CACHE_TTL = 5.0


class UserSpellData:
    """Notes, favorites and usage counters per user."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._records: dict[str, tuple[float, UserRecord]] = {}
        self._views: dict[tuple[str, str | None, str], tuple[float, SpellView]] = {}

    def clear_cache(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._records.clear()
            self._views.clear()
            return
        self._records.pop(user_id, None)
        for key in [k for k in self._views if k[0] == user_id]:
            del self._views[key]

    def _user_id(self, user_id: str | None) -> str:
        return user_id or self.core.store.current_user().id

    async def canonical_uuid(self, uuid: str) -> str:
        """Owned spell UUIDs resolve to their compendium source."""
        uuid = normalize_uuid(uuid)
        if parse_uuid(uuid)["scope"] == "actor":
            item = await self.core.store.from_uuid(uuid)
            if isinstance(item, SpellItem):
                return normalize_uuid(item.canonical_uuid)
        return uuid

    # -----------------------------------------------------------------
    # Journal
    # -----------------------------------------------------------------

    async def _find_journal(self) -> JournalEntry | None:
        if await self.core.store.get_pack(PACK_USER_DATA) is None:
            return None
        for doc in await self.core.store.get_documents(PACK_USER_DATA):
            if (
                isinstance(doc, JournalEntry)
                and doc.name == USER_DATA_JOURNAL_NAME
                and doc.flags.get(MODULE_ID, {}).get("isUserSpellDataJournal")
            ):
                return doc
        return None

    async def _find_page(self, user_id: str) -> JournalPage | None:
        journal = await self._find_journal()
        if journal is None:
            return None
        for page in journal.pages:
            if page.flags.get(MODULE_ID, {}).get("userId") == user_id:
                return page
        return None

    async def _ensure_page(self, user_id: str) -> JournalPage | None:
        page = await self._find_page(user_id)
        if page is not None:
            return page
        if await self.core.store.get_pack(PACK_USER_DATA) is None:
            logger.error("User spell data pack not found")
            return None
        user = await self.core.store.get_user(user_id)
        if user is None:
            logger.warning(f"User {user_id} not found, cannot create user data page")
            return None

        journal = await self._find_journal()
        if journal is None:
            journal = await self.core.store.create_journal(
                PACK_USER_DATA,
                JournalEntry(
                    id="",
                    name=USER_DATA_JOURNAL_NAME,
                    flags={MODULE_ID: {"isUserSpellDataJournal": True, "version": USER_DATA_VERSION}},
                    ownership={"default": PERMISSION_NONE},
                ),
            )
            logger.info("Created user spell data journal")

        now = self.core.now_ms()
        record = UserRecord(user_id=user_id, user_name=user.name)
        page = await self.core.store.create_page(
            journal.uuid,
            JournalPage(
                id="",
                name=user.name,
                type="text",
                content=render_tables(user.name, {}, {}, {}),
                flags={MODULE_ID: {**record.to_flags(), "created": now, "lastUpdated": now}},
                ownership={"default": PERMISSION_NONE, user_id: PERMISSION_OWNER},
            ),
        )
        logger.debug(f"Created user data page for {user.name}")
        return page

    # -----------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------

    async def get_record(self, user_id: str | None = None, use_cache: bool = True) -> UserRecord:
        """The user's record; pages from before structured storage are migrated on read."""
        user_id = self._user_id(user_id)
        now = self.core.clock()
        cached = self._records.get(user_id)
        if use_cache and cached and cached[0] > now:
            return cached[1].model_copy(deep=True)

        page = await self._find_page(user_id)
        if page is None:
            record = UserRecord(user_id=user_id)
        else:
            flags = page.flags.get(MODULE_ID, {})
            record = UserRecord.from_flags(user_id, flags)
            if record.data_version != USER_DATA_VERSION:
                record = await self._migrate(page, record)
        self._records[user_id] = (now + CACHE_TTL, record)
        return record.model_copy(deep=True)

    async def _migrate(self, page: JournalPage, record: UserRecord) -> UserRecord:
        parsed = parse_tables(page.content)
        for uuid, data in parsed.items():
            record.spells.setdefault(uuid, data)
        record.data_version = USER_DATA_VERSION
        record.user_name = record.user_name or page.name
        await self._write_page(page, record)
        logger.info(f"Migrated user spell data for {record.user_name}: {len(parsed)} spells")
        return record

    async def _write(self, record: UserRecord) -> bool:
        page = await self._ensure_page(record.user_id)
        if page is None:
            return False
        if not record.user_name:
            user = await self.core.store.get_user(record.user_id)
            record.user_name = user.name if user else page.name
        await self._write_page(page, record)
        self.clear_cache(record.user_id)
        self._records[record.user_id] = (self.core.clock() + CACHE_TTL, record.model_copy(deep=True))
        return True

    async def _write_page(self, page: JournalPage, record: UserRecord) -> None:
        spell_names = {}
        for uuid in record.spells:
            doc = self.core.store.from_uuid_sync(uuid)
            if doc is not None and hasattr(doc, "name"):
                spell_names[uuid] = doc.name
        actor_names = {}
        for actor_id in {a for data in record.spells.values() for a in data.by_actor}:
            actor = await self.core.store.get_actor(actor_id)
            if actor is not None:
                actor_names[actor_id] = actor.name
        await self.core.store.update_page(
            page.uuid,
            {
                "content": render_tables(record.user_name, record.spells, spell_names, actor_names),
                "flags": {MODULE_ID: {**record.to_flags(), "lastUpdated": self.core.now_ms()}},
            },
        )

    # -----------------------------------------------------------------
    # Per-spell access
    # -----------------------------------------------------------------

    async def get_spell(self, uuid: str, user_id: str | None = None, actor_id: str | None = None) -> SpellView:
        """Notes of a spell plus, with ``actor_id``, that actor's favorite and usage."""
        user_id = self._user_id(user_id)
        uuid = await self.canonical_uuid(uuid)
        key = (user_id, actor_id, uuid)
        now = self.core.clock()
        cached = self._views.get(key)
        if cached and cached[0] > now:
            return cached[1].model_copy(deep=True)
        record = await self.get_record(user_id)
        data = record.spells.get(uuid)
        view = SpellView(uuid=uuid)
        if data is not None:
            view.notes = data.notes
            actor_data = data.by_actor.get(actor_id) if actor_id else None
            if actor_data is not None:
                view.favorited = actor_data.favorited
                view.usage = actor_data.usage.model_copy()
        self._views[key] = (now + CACHE_TTL, view)
        return view.model_copy(deep=True)

    async def set_notes(self, uuid: str, notes: str, user_id: str | None = None) -> bool:
        """Store sanitized notes, cut to the ``spellNotesMaxLength`` setting."""
        max_length = await self.core.settings.get(SettingKey.SPELL_NOTES_LENGTH)
        record = await self.get_record(user_id, use_cache=False)
        uuid = await self.canonical_uuid(uuid)
        record.spell(uuid).notes = sanitize_notes(notes, max_length)
        written = await self._write(record)
        if written:
            logger.debug(f"Updated notes for {uuid}")
        return written

    async def set_favorite(self, uuid: str, favorited: bool, actor_id: str, user_id: str | None = None) -> bool:
        record = await self.get_record(user_id, use_cache=False)
        uuid = await self.canonical_uuid(uuid)
        record.spell(uuid).for_actor(actor_id).favorited = favorited
        written = await self._write(record)
        if written:
            logger.debug(f"Favorite {uuid} for {actor_id}: {favorited}")
        return written

    async def favorites(self, actor_id: str, user_id: str | None = None) -> set[str]:
        record = await self.get_record(user_id)
        return {
            uuid
            for uuid, data in record.spells.items()
            if data.by_actor.get(actor_id) is not None and data.by_actor[actor_id].favorited
        }

    async def sync_actor_favorites(
        self, actor_id: str, favorited_uuids: Iterable[str], user_id: str | None = None
    ) -> int:
        """Make the actor's favorites exactly ``favorited_uuids``.

        The record is read once, every difference applied in memory, and
        the result written once.

        Returns:
            Number of spells whose favorite state changed.
        """
        record = await self.get_record(user_id, use_cache=False)
        wanted = {await self.canonical_uuid(uuid) for uuid in favorited_uuids}
        current = {
            uuid
            for uuid, data in record.spells.items()
            if actor_id in data.by_actor and data.by_actor[actor_id].favorited
        }
        for uuid in wanted - current:
            record.spell(uuid).for_actor(actor_id).favorited = True
        for uuid in current - wanted:
            record.spell(uuid).for_actor(actor_id).favorited = False
        changed = len(wanted ^ current)
        if changed:
            await self._write(record)
            logger.debug(f"Synced {changed} favorites for {actor_id}")
        return changed

    async def record_usage(
        self, uuid: str, actor_id: str, context: UsageContext, user_id: str | None = None
    ) -> UsageStats | None:
        """Count one cast of a spell in ``combat`` or ``exploration``."""
        record = await self.get_record(user_id, use_cache=False)
        uuid = await self.canonical_uuid(uuid)
        stats = record.spell(uuid).for_actor(actor_id).usage
        stats.count += 1
        stats.last_used = self.core.now_ms()
        if context == UsageContext.COMBAT:
            stats.combat += 1
        else:
            stats.exploration += 1
        if not await self._write(record):
            return None
        return stats.model_copy()
