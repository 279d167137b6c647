"""
Tests for SpellListResolver and the preload cache.
"""

import pytest

from spell_book.models import JournalPage
from spell_book.settings import SettingKey

from .helpers import (
    CLERIC_LIST,
    CLERIC_SPELLS,
    FIRE_BOLT,
    LIFE_LIST,
    LIFE_SPELLS,
    LIST_PACK,
    SPELL_PACK,
    WIZARD_LIST,
    WIZARD_SPELLS,
    list_uuid,
    make_cleric,
    make_wizard,
)

pytestmark = pytest.mark.anyio


# ─── Discovery ─────────────────────────────────────────────────────────


class TestDiscovery:
    async def test_discovers_spell_list_pages_only(self, core):
        refs = await core.resolver.discover_lists()

        assert sorted(ref.uuid for ref in refs) == sorted([WIZARD_LIST, CLERIC_LIST, LIFE_LIST])
        life = next(ref for ref in refs if ref.uuid == LIFE_LIST)
        assert (life.identifier, life.list_type, life.journal_name) == ("life", "subclass", "Class Spell Lists")

    async def test_load_list_rejects_other_pages(self, core):
        notes_uuid = list_uuid("notes")

        assert await core.resolver.load_list(notes_uuid) is None
        assert (await core.resolver.load_list(WIZARD_LIST)).name == "Wizard Spells"


# ─── Resolution ────────────────────────────────────────────────────────


class TestResolve:
    """Resolving the spell list of a class."""

    async def test_class_list(self, core, store):
        """A class resolves to its journal page list."""
        store.add_actor(make_wizard())

        assert await core.resolver.resolve("elara", "wizard") == set(WIZARD_SPELLS)

    async def test_subclass_list_is_unioned(self, core, store):
        store.add_actor(make_cleric(subclass=True))

        assert await core.resolver.resolve("brom", "cleric") == set(CLERIC_SPELLS) | set(LIFE_SPELLS)

    async def test_unknown_class_or_actor(self, core, store):
        store.add_actor(make_wizard())

        assert await core.resolver.resolve("elara", "druid") == set()
        assert await core.resolver.resolve("nobody", "wizard") == set()

    async def test_custom_override_replaces_the_class_list(self, core, store):
        store.add_actor(make_wizard())
        await core.rules.update_class_rules("elara", "wizard", {"customSpellList": [CLERIC_LIST]})

        assert await core.resolver.resolve("elara", "wizard") == set(CLERIC_SPELLS)
        assert await core.resolver.resolve("elara", "wizard", ignore_custom=True) == set(WIZARD_SPELLS)

    async def test_several_overrides_are_merged(self, core, store):
        store.add_actor(make_wizard())
        await core.rules.update_class_rules("elara", "wizard", {"customSpellList": [CLERIC_LIST, LIFE_LIST]})

        assert await core.resolver.resolve("elara", "wizard") == set(CLERIC_SPELLS) | set(LIFE_SPELLS)

    async def test_legacy_single_string_override(self, core, store):
        store.add_actor(make_wizard())
        await store.set_flag("elara", "classRules.wizard", {"customSpellList": CLERIC_LIST})

        assert await core.resolver.resolve("elara", "wizard") == set(CLERIC_SPELLS)

    async def test_broken_override_falls_back(self, core, store):
        store.add_actor(make_wizard())
        await core.rules.update_class_rules(
            "elara", "wizard", {"customSpellList": ["Compendium.dnd5e.lists.JournalEntry.x.JournalEntryPage.y"]}
        )

        assert await core.resolver.resolve("elara", "wizard") == set(WIZARD_SPELLS)

    async def test_mapping_replaces_original(self, core, store):
        store.add_actor(make_wizard())
        await core.settings.set(SettingKey.CUSTOM_SPELL_MAPPINGS, {WIZARD_LIST: CLERIC_LIST})

        assert await core.resolver.resolve("elara", "wizard") == set(CLERIC_SPELLS)

    async def test_disabled_pack_is_ignored(self, core, store):
        store.add_actor(make_wizard())
        await core.settings.set(SettingKey.INDEXED_COMPENDIUMS, {SPELL_PACK: True, LIST_PACK: False})

        assert await core.resolver.resolve("elara", "wizard") == set()


# ─── Preload cache ─────────────────────────────────────────────────────


class TestPreload:
    """The preload cache and its invalidation."""

    async def test_gm_preload_caches_lists_and_spells(self, core):
        cache = await core.preloader.preload()

        assert cache.mode == "gm-setup"
        assert cache.list_count == 3
        assert len(cache.enriched_spells) == 13

    async def test_fetch_is_served_from_cache(self, core, store):
        await core.preloader.preload()
        reads = len(store.index_reads)

        spells = await core.index.fetch([FIRE_BOLT])

        assert [s.name for s in spells] == ["Fire Bolt"]
        assert len(store.index_reads) == reads

    async def test_resolver_uses_preloaded_lists_until_invalidated(self, core, store):
        store.add_actor(make_wizard())
        await core.preloader.preload()
        page = await store.update_page(WIZARD_LIST, {"spells": [FIRE_BOLT]})

        assert await core.resolver.resolve("elara", "wizard") == set(WIZARD_SPELLS)

        assert await core.preloader.handle_page_change(page, LIST_PACK)
        assert await core.resolver.resolve("elara", "wizard") == {FIRE_BOLT}

    async def test_player_preload_covers_own_spells(self, core, store):
        store.add_actor(make_wizard())
        store.set_current_user("player1")

        cache = await core.preloader.preload()

        assert cache.mode == "player"
        assert cache.spell_lists == []
        assert set(cache.enriched_spells) == set(WIZARD_SPELLS)

    async def test_unrelated_pages_keep_the_cache(self, core):
        await core.preloader.preload()
        text_page = JournalPage(id="notes", name="Notes", type="text")
        other_list = JournalPage(id="misc", name="Misc", list_type="other")

        assert not await core.preloader.handle_page_change(text_page, LIST_PACK)
        assert not await core.preloader.handle_page_change(other_list, LIST_PACK)
        assert core.preloader.get() is not None

    async def test_version_change_drops_the_cache(self, core):
        await core.preloader.preload()

        core.version = "0.0.0"

        assert core.preloader.get() is None
