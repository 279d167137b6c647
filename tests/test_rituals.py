"""
Tests for RitualManager: ritual-only copies of spellbook rituals.
"""

import pytest

from spell_book.constants import Method, Prepared
from spell_book.preparation.rituals import is_module_ritual

from .helpers import DETECT_MAGIC, FIND_FAMILIAR, MAGIC_MISSILE, make_cleric, make_wizard, owned

pytestmark = pytest.mark.anyio


async def wizard_with_spellbook(core, store, items=None):
    store.add_actor(make_wizard(items))
    for uuid in (DETECT_MAGIC, FIND_FAMILIAR, MAGIC_MISSILE):
        await core.wizard.add_spell("elara", "wizard", uuid)


def ritual_items(actor):
    return [item for item in actor.spell_items() if item.method == Method.RITUAL]


class TestInitialize:
    """Creating ritual-only copies for spellbook rituals."""

    async def test_creates_copies_for_spellbook_rituals(self, core, store):
        await wizard_with_spellbook(core, store)

        created = await core.rituals.initialize_ritual_spells("elara", "wizard")

        assert sorted(item.name for item in created) == ["Detect Magic", "Find Familiar"]
        actor = await store.get_actor("elara")
        rituals = ritual_items(actor)
        assert len(rituals) == 2
        assert all(item.prepared == Prepared.UNPREPARED for item in rituals)
        assert all(item.source_class == "wizard" for item in rituals)
        assert all(is_module_ritual(item) for item in rituals)

    async def test_is_idempotent(self, core, store):
        """A second pass creates nothing new."""
        await wizard_with_spellbook(core, store)
        await core.rituals.initialize_ritual_spells("elara", "wizard")

        assert await core.rituals.initialize_ritual_spells("elara", "wizard") == []
        assert len(ritual_items(await store.get_actor("elara"))) == 2

    async def test_unprepared_copy_is_converted(self, core, store):
        await wizard_with_spellbook(
            core, store, [owned("find-familiar", "wizard", prepared=Prepared.UNPREPARED)]
        )

        created = await core.rituals.initialize_ritual_spells("elara", "wizard")

        assert [item.name for item in created] == ["Detect Magic"]
        converted = (await store.get_actor("elara")).get_item("item-find-familiar")
        assert converted.method == Method.RITUAL

    async def test_prepared_copy_gets_a_sibling(self, core, store):
        await wizard_with_spellbook(core, store, [owned("detect-magic", "wizard")])

        await core.rituals.initialize_ritual_spells("elara", "wizard")

        copies = (await store.get_actor("elara")).copies_of(DETECT_MAGIC)
        assert sorted(item.method.value for item in copies) == ["ritual", "spell"]

    async def test_classes_without_spellbook_get_nothing(self, core, store):
        store.add_actor(make_cleric())

        assert await core.rituals.initialize_ritual_spells("brom", "cleric") == []

    async def test_empty_spellbook(self, core, store):
        store.add_actor(make_wizard())

        assert await core.rituals.initialize_ritual_spells("elara", "wizard") == []


class TestSync:
    async def test_switching_ritual_casting_off_removes_copies(self, core, store):
        await wizard_with_spellbook(core, store)
        await core.rituals.sync("elara")
        assert len(ritual_items(await store.get_actor("elara"))) == 2

        await core.rules.update_class_rules("elara", "wizard", {"ritualCasting": "none"})
        await core.rituals.sync("elara")

        assert ritual_items(await store.get_actor("elara")) == []

    async def test_removal_keeps_foreign_ritual_copies(self, core, store):
        store.add_actor(
            make_wizard([owned("find-familiar", "wizard", prepared=Prepared.UNPREPARED, method=Method.RITUAL)])
        )

        removed = await core.rituals.remove_module_rituals("elara", "wizard")

        assert removed == 0
        assert len(ritual_items(await store.get_actor("elara"))) == 1
