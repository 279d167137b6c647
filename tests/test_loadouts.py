"""
Tests for LoadoutManager: saving, listing and applying spell loadouts.
"""

from unittest.mock import AsyncMock, patch

import pytest

from spell_book.errors import LoadoutError, Reason
from spell_book.preparation.types import DesiredSpell, SaveResult

from .helpers import CURE_WOUNDS, FIREBALL, MAGIC_MISSILE, SHIELD, make_wizard

pytestmark = pytest.mark.anyio


@pytest.fixture
async def elara(core, store):
    store.add_actor(make_wizard())
    await core.preparation.save(
        "elara", "wizard", [DesiredSpell(uuid=MAGIC_MISSILE, name="Magic Missile", is_prepared=True)]
    )
    return "elara"


class TestSave:
    """Saving, listing and deleting loadouts."""

    async def test_save_and_list(self, core, clock, elara):
        """Class-less loadouts are offered to every class."""
        combat = await core.loadouts.save(elara, "  Combat  ", [SHIELD, FIREBALL], class_id="wizard")
        clock.advance(10)
        general = await core.loadouts.save(elara, "General", [SHIELD])
        clock.advance(10)
        await core.loadouts.save(elara, "Healing", [CURE_WOUNDS], class_id="cleric")

        available = await core.loadouts.get_available(elara, "wizard")

        assert combat.name == "Combat"
        assert combat.created_at == 1_700_000_000_000
        assert [lo.id for lo in available] == [combat.id, general.id]
        assert len(await core.loadouts.get_available(elara)) == 3

    async def test_blank_name(self, core, elara):
        with pytest.raises(LoadoutError):
            await core.loadouts.save(elara, "   ", [SHIELD])

    async def test_missing_actor(self, core):
        with pytest.raises(LoadoutError):
            await core.loadouts.save("nobody", "Combat", [SHIELD])

    async def test_capture_current_preparation(self, core, elara):
        assert await core.loadouts.capture(elara, "wizard") == [MAGIC_MISSILE]

    async def test_delete(self, core, elara):
        loadout = await core.loadouts.save(elara, "Combat", [SHIELD], class_id="wizard")

        assert await core.loadouts.delete(elara, loadout.id)
        assert await core.loadouts.get_available(elara) == []
        assert not await core.loadouts.delete(elara, loadout.id)


class TestApply:
    """Applying a loadout through the preparation engine."""

    async def test_desired_state_unprepares_the_rest(self, core, elara):
        loadout = await core.loadouts.save(elara, "Combat", [SHIELD, FIREBALL], class_id="wizard")

        desired = await core.loadouts.build_desired(elara, loadout.id, "wizard")

        assert [(d.uuid, d.is_prepared, d.was_prepared) for d in desired] == [
            (FIREBALL, True, False),
            (MAGIC_MISSILE, False, True),
            (SHIELD, True, False),
        ]

    async def test_apply_goes_through_preparation(self, core, elara):
        loadout = await core.loadouts.save(elara, "Combat", [SHIELD, FIREBALL], class_id="wizard")

        result = await core.loadouts.apply(elara, loadout.id, "wizard")

        assert sorted(result.spell_changes.added) == ["Fireball", "Shield"]
        assert result.spell_changes.removed == ["Magic Missile"]
        assert await core.state.prepared_uuids(elara, "wizard") == {SHIELD, FIREBALL}

    async def test_preparation_rules_still_apply(self, core, elara):
        """Loadouts cannot sneak in spells the class cannot prepare."""
        loadout = await core.loadouts.save(elara, "Healer", [CURE_WOUNDS], class_id="wizard")

        result = await core.loadouts.apply(elara, loadout.id, "wizard")

        assert [(r.uuid, r.reason) for r in result.rejected] == [(CURE_WOUNDS, Reason.NOT_ON_CLASS_LIST)]

    async def test_unloadable_spells_are_skipped(self, core, elara):
        unknown = "Compendium.dnd5e.spells.Item.unknown"
        loadout = await core.loadouts.save(elara, "Odd", [unknown, SHIELD], class_id="wizard")

        desired = await core.loadouts.build_desired(elara, loadout.id, "wizard")

        assert unknown not in [d.uuid for d in desired]

    async def test_missing_loadout(self, core, elara):
        with pytest.raises(LoadoutError):
            await core.loadouts.apply(elara, "missing", "wizard")

    async def test_apply_submits_desired_state_once(self, core, elara):
        """Apply hands the whole desired state to a single save call."""
        loadout = await core.loadouts.save(elara, "Combat", [SHIELD], class_id="wizard")
        save = AsyncMock(return_value=SaveResult(class_identifier="wizard"))

        with patch.object(core.preparation, "save", save):
            await core.loadouts.apply(elara, loadout.id, "wizard")

        save.assert_awaited_once()
        actor_id, class_id, desired = save.await_args.args
        assert (actor_id, class_id) == (elara, "wizard")
        assert {d.uuid: d.is_prepared for d in desired} == {MAGIC_MISSILE: False, SHIELD: True}
