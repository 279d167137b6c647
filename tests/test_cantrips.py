"""
Tests for CantripEngine: cantrip maxima, validation and swap windows.
"""

from __future__ import annotations

import pytest

from spell_book.constants import Enforcement, RuleSetName, SwapContext
from spell_book.errors import Reason
from spell_book.models import ItemUpdate
from spell_book.preparation.types import ChangeContext
from spell_book.settings import SettingKey

from .helpers import FIRE_BOLT, LIGHT, MAGE_HAND, PRESTIDIGITATION, make_cleric, make_wizard, owned

pytestmark = pytest.mark.anyio

LONG_REST = ChangeContext(is_long_rest=True)
LONG_REST_ONE_UNCHECKED = ChangeContext(is_long_rest=True, ui_count=1)


async def enforced_wizard(core, store, cantrips=("fire-bolt", "light"), maximum=4):
    store.add_actor(make_wizard([owned(s, "wizard") for s in cantrips], cantrips=maximum))
    await core.flags.set_enforcement("elara", Enforcement.ENFORCED)


# ─── Maxima ────────────────────────────────────────────────────────────


class TestMaxCantrips:
    """Cantrip maxima from scale values and class rules."""

    async def test_reads_scale_value(self, core, store):
        """The first defined scale value is the maximum."""
        store.add_actor(make_wizard(cantrips=4))

        assert await core.cantrips.max_cantrips("elara", "wizard") == 4

    async def test_plain_scale_value_and_bonus(self, core, store):
        store.add_actor(make_cleric())
        await core.rules.update_class_rules("brom", "cleric", {"cantripPreparationBonus": 2})

        assert await core.cantrips.max_cantrips("brom", "cleric") == 5

    async def test_hidden_cantrips_give_zero(self, core, store):
        store.add_actor(make_wizard())
        await core.rules.update_class_rules("elara", "wizard", {"showCantrips": False})

        assert await core.cantrips.max_cantrips("elara", "wizard") == 0

    async def test_scale_key_setting_controls_lookup(self, core, store):
        store.add_actor(make_wizard(cantrips=4))
        await core.settings.set(SettingKey.CANTRIP_SCALE_VALUES, "cantrips")

        assert await core.cantrips.max_cantrips("elara", "wizard") == 0

    async def test_current_count_only_prepared_cantrips(self, core, store):
        store.add_actor(make_wizard([owned("fire-bolt", "wizard"), owned("magic-missile", "wizard")]))

        assert await core.cantrips.current_count("elara", "wizard") == 1


# ─── Validation ────────────────────────────────────────────────────────


class TestCanChange:
    """Cantrip toggles under each swap mode."""

    async def test_maximum_reached(self, core, store):
        await enforced_wizard(core, store, cantrips=("fire-bolt", "light", "mage-hand", "prestidigitation"))
        await core.settings.set(SettingKey.RULE_SET, RuleSetName.MODERN)

        decision = await core.cantrips.can_change(
            "elara", "wizard", "Compendium.dnd5e.spells.Item.minor-illusion", True, ChangeContext()
        )

        assert decision.reason == Reason.MAXIMUM_REACHED

    async def test_legacy_class_learns_below_the_maximum(self, core, store):
        """Swap rules only govern swaps; a free slot can always be filled."""
        await enforced_wizard(core, store, cantrips=("fire-bolt",))

        decision = await core.cantrips.can_change("elara", "wizard", MAGE_HAND, True, ChangeContext())

        assert decision.allowed

    async def test_free_slot_inside_level_up_window(self, core, store):
        store.add_actor(make_cleric([owned("light", "cleric")]))
        await core.flags.set_enforcement("brom", Enforcement.ENFORCED)
        await core.rules.update_class_rules("brom", "cleric", {"cantripSwapping": "levelUp"})
        level_up = ChangeContext(is_level_up=True)

        first = await core.cantrips.can_change("brom", "cleric", MAGE_HAND, True, level_up)
        await core.cantrips.track_change("brom", "cleric", MAGE_HAND, True, level_up)
        second = await core.cantrips.can_change("brom", "cleric", PRESTIDIGITATION, True, level_up)

        assert first.allowed
        assert second.reason == Reason.ONLY_ONE_SWAP

    async def test_legacy_wizard_cannot_swap(self, core, store):
        await enforced_wizard(core, store)

        decision = await core.cantrips.can_change("elara", "wizard", FIRE_BOLT, False, LONG_REST)

        assert decision.reason == Reason.LOCKED_LEGACY

    async def test_modern_wizard_needs_long_rest(self, core, store):
        await enforced_wizard(core, store)
        await core.settings.set(SettingKey.RULE_SET, RuleSetName.MODERN)

        decision = await core.cantrips.can_change("elara", "wizard", FIRE_BOLT, False, ChangeContext())

        assert decision.reason == Reason.LOCKED_OUTSIDE_LONG_REST

    async def test_long_rest_swap_for_non_wizard_is_refused(self, core, store):
        store.add_actor(make_cleric([owned("light", "cleric")]))
        await core.flags.set_enforcement("brom", Enforcement.ENFORCED)
        await core.rules.update_class_rules("brom", "cleric", {"cantripSwapping": "longRest"})

        decision = await core.cantrips.can_change("brom", "cleric", LIGHT, False, LONG_REST)

        assert decision.reason == Reason.WIZARD_RULE_ONLY

    async def test_level_up_swap_outside_level_up(self, core, store):
        store.add_actor(make_cleric([owned("light", "cleric")]))
        await core.flags.set_enforcement("brom", Enforcement.ENFORCED)
        await core.rules.update_class_rules("brom", "cleric", {"cantripSwapping": "levelUp"})

        outside = await core.cantrips.can_change("brom", "cleric", LIGHT, False, ChangeContext())
        inside = await core.cantrips.can_change("brom", "cleric", LIGHT, False, ChangeContext(is_level_up=True))

        assert outside.reason == Reason.LOCKED_OUTSIDE_LEVEL_UP
        assert inside.allowed

    async def test_notify_gm_never_blocks(self, core, store):
        store.add_actor(make_wizard([owned(s, "wizard") for s in ("fire-bolt", "light")], cantrips=2))

        decision = await core.cantrips.can_change("elara", "wizard", MAGE_HAND, True, ChangeContext())

        assert decision.allowed
        assert decision.message == "Over limit: 3/2 cantrips"


# ─── Swap windows ──────────────────────────────────────────────────────


class TestLongRestSwap:
    """One unlearn and one learn per long rest for a modern wizard at its maximum."""

    @pytest.fixture
    async def wizard(self, core, store):
        await enforced_wizard(core, store, maximum=2)
        await core.settings.set(SettingKey.RULE_SET, RuleSetName.MODERN)
        return "elara"

    async def test_learning_requires_unlearning_first(self, core, wizard):
        decision = await core.cantrips.can_change(wizard, "wizard", MAGE_HAND, True, LONG_REST)

        assert decision.reason == Reason.MUST_UNLEARN_FIRST

    async def test_one_swap_per_window(self, core, wizard):
        tracking = await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, False, LONG_REST)
        assert tracking.original_checked == sorted([FIRE_BOLT, LIGHT])
        assert tracking.unlearned == FIRE_BOLT

        assert (await core.cantrips.can_change(wizard, "wizard", MAGE_HAND, True, LONG_REST_ONE_UNCHECKED)).allowed
        await core.cantrips.track_change(wizard, "wizard", MAGE_HAND, True, LONG_REST)

        second_learn = await core.cantrips.can_change(wizard, "wizard", PRESTIDIGITATION, True, LONG_REST_ONE_UNCHECKED)
        second_unlearn = await core.cantrips.can_change(wizard, "wizard", LIGHT, False, LONG_REST)
        assert second_learn.reason == Reason.ONLY_ONE_SWAP
        assert second_unlearn.reason == Reason.ONLY_ONE_SWAP

    async def test_toggling_back_undoes_the_unlearn(self, core, wizard):
        await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, False, LONG_REST)
        tracking = await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, True, LONG_REST)

        assert not tracking.has_unlearned
        assert tracking.unlearned is None
        assert (await core.cantrips.can_change(wizard, "wizard", LIGHT, False, LONG_REST)).allowed

    async def test_toggling_a_learned_cantrip_twice_restores_the_window(self, core, wizard):
        await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, False, LONG_REST)
        await core.cantrips.track_change(wizard, "wizard", MAGE_HAND, True, LONG_REST)
        tracking = await core.cantrips.track_change(wizard, "wizard", MAGE_HAND, False, LONG_REST)

        assert not tracking.has_learned
        assert tracking.learned is None
        assert tracking.unlearned == FIRE_BOLT
        decision = await core.cantrips.can_change(wizard, "wizard", PRESTIDIGITATION, True, LONG_REST_ONE_UNCHECKED)
        assert decision.allowed

    async def test_no_tracking_outside_the_window(self, core, wizard):
        assert await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, False, ChangeContext()) is None

    async def test_completing_the_rest_clears_tracking(self, core, wizard):
        await core.cantrips.track_change(wizard, "wizard", FIRE_BOLT, False, LONG_REST)

        await core.cantrips.complete_swap(wizard, is_level_up=False)

        assert await core.flags.get_swap_tracking(wizard, "wizard", SwapContext.LONG_REST) is None


# ─── Level-up detection ────────────────────────────────────────────────


class TestLevelUp:
    """Level-up window detection."""

    async def test_new_actor_can_level_up(self, core, store):
        store.add_actor(make_wizard())

        assert await core.cantrips.can_be_leveled_up("elara")

    async def test_gaining_a_level_reopens_the_window(self, core, store):
        store.add_actor(make_wizard(levels=5))
        await core.cantrips.complete_level_up("elara")
        assert not await core.cantrips.can_be_leveled_up("elara")

        await store.update_items("elara", [ItemUpdate(id="cls-wizard", changes={"levels": 6})])

        assert await core.cantrips.can_be_leveled_up("elara")

    async def test_higher_cantrip_maximum_reopens_the_window(self, core, store):
        store.add_actor(make_wizard(cantrips=3))
        await core.cantrips.complete_level_up("elara")

        await store.update_items(
            "elara", [ItemUpdate(id="cls-wizard", changes={"scale_values": {"cantrips-known": {"value": 4}}})]
        )
        core.cantrips.clear_cache("elara")

        assert await core.cantrips.can_be_leveled_up("elara")
