"""
Tests for the per-class preparation state and its flat mirror.
"""

import pytest

from spell_book.constants import Prepared
from spell_book.preparation.state import flatten, make_key, parse_key

from .helpers import FIRE_BOLT, LIGHT, MAGIC_MISSILE, SHIELD, SPELL_PACK, make_multiclass, make_wizard, owned

pytestmark = pytest.mark.anyio


class TestKeys:
    def test_make_key_normalizes(self):
        assert make_key("wizard", f"Compendium.{SPELL_PACK}.shield") == f"wizard:{SHIELD}"

    def test_parse_key_splits_on_first_colon(self):
        assert parse_key(f"wizard:{SHIELD}") == ("wizard", SHIELD)
        assert parse_key("wizard:Item:odd") == ("wizard", "Item:odd")

    def test_flatten_deduplicates(self):
        """A spell prepared by two classes appears once in the mirror."""
        mirror = flatten(
            {
                "wizard": {make_key("wizard", SHIELD), make_key("wizard", LIGHT)},
                "cleric": {make_key("cleric", LIGHT)},
            }
        )

        assert mirror == [LIGHT, SHIELD]


class TestStore:
    async def test_set_rebuilds_mirror(self, core, store):
        store.add_actor(make_multiclass())

        await core.state.set_class_prepared("sable", "wizard", [make_key("wizard", SHIELD)])
        await core.state.set_class_prepared("sable", "cleric", [make_key("cleric", LIGHT)])

        assert await core.flags.get_prepared_spells("sable") == [LIGHT, SHIELD]
        assert await core.state.prepared_uuids("sable", "wizard") == {SHIELD}

    async def test_remove_keys(self, core, store):
        store.add_actor(make_wizard())
        await core.state.set_class_prepared("elara", "wizard", [make_key("wizard", SHIELD), make_key("wizard", LIGHT)])

        await core.state.remove_keys("elara", "wizard", [make_key("wizard", SHIELD)])

        assert await core.state.prepared_uuids("elara", "wizard") == {LIGHT}
        assert await core.flags.get_prepared_spells("elara") == [LIGHT]

    async def test_find_other_class(self, core, store):
        store.add_actor(make_multiclass())
        await core.state.set_class_prepared("sable", "cleric", [make_key("cleric", LIGHT)])

        assert await core.state.find_other_class("sable", "wizard", LIGHT) == "cleric"
        assert await core.state.find_other_class("sable", "cleric", LIGHT) is None
        assert await core.state.find_other_class("sable", "wizard", SHIELD) is None


class TestCleanup:
    """Cleanup passes over the prepared sets."""

    async def test_stale_keys_are_dropped(self, core, store):
        store.add_actor(make_wizard([owned("shield", "wizard"), owned("light", None)]))
        await core.state.set_class_prepared(
            "elara",
            "wizard",
            [make_key("wizard", SHIELD), make_key("wizard", LIGHT), make_key("wizard", MAGIC_MISSILE)],
        )

        removed = await core.state.cleanup_stale_preparation_flags("elara")

        assert removed == 1
        assert await core.state.prepared_uuids("elara", "wizard") == {SHIELD, LIGHT}
        assert await core.flags.get_prepared_spells("elara") == [LIGHT, SHIELD]

    async def test_nothing_stale(self, core, store):
        store.add_actor(make_wizard([owned("shield", "wizard")]))
        await core.state.set_class_prepared("elara", "wizard", [make_key("wizard", SHIELD)])

        assert await core.state.cleanup_stale_preparation_flags("elara") == 0

    async def test_cantrips_for_class(self, core, store):
        store.add_actor(make_wizard([owned("light", "wizard", prepared=Prepared.PREPARED)]))
        await core.state.set_class_prepared(
            "elara",
            "wizard",
            [make_key("wizard", LIGHT), make_key("wizard", FIRE_BOLT), make_key("wizard", SHIELD)],
        )

        removed = await core.state.cleanup_cantrips_for_class("elara", "wizard")

        assert removed == 2
        assert await core.state.prepared_uuids("elara", "wizard") == {SHIELD}
