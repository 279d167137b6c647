"""
Tests for UsageTracker: cast counting and de-duplication.
"""

import pytest

from spell_book.models import Actor
from spell_book.settings import SettingKey

from .helpers import FIRE_BOLT, make_multiclass, make_wizard, owned

pytestmark = pytest.mark.anyio


@pytest.fixture
def elara(store):
    store.add_actor(make_wizard([owned("fire-bolt", "wizard")]))
    return "elara"


class TestRecordUsage:
    """Counting casts per actor and user."""

    async def test_counts_for_the_owning_player(self, core, elara):
        stats = await core.usage.record_usage(elara, FIRE_BOLT, in_combat=True)

        assert (stats.count, stats.combat, stats.exploration) == (1, 1, 0)
        assert stats.last_used == 1_700_000_000_000
        view = await core.user_data.get_spell(FIRE_BOLT, user_id="player1", actor_id=elara)
        assert view.usage.count == 1
        assert (await core.user_data.get_spell(FIRE_BOLT, actor_id=elara)).usage.count == 0

    async def test_owned_item_counts_against_its_source(self, core, store, elara):
        item = (await store.get_actor(elara)).get_item("item-fire-bolt")

        stats = await core.usage.record_usage(elara, item, in_combat=False)

        assert stats.exploration == 1
        view = await core.user_data.get_spell(FIRE_BOLT, user_id="player1", actor_id=elara)
        assert view.usage.exploration == 1

    async def test_repeat_within_a_second_counts_once(self, core, clock, elara):
        await core.usage.record_usage(elara, FIRE_BOLT, in_combat=True)
        clock.advance(0.5)
        assert await core.usage.record_usage(elara, FIRE_BOLT, in_combat=True) is None

        clock.advance(1.0)
        stats = await core.usage.record_usage(elara, FIRE_BOLT, in_combat=False)

        assert (stats.count, stats.combat, stats.exploration) == (2, 1, 1)

    async def test_disabled_tracking(self, core, elara):
        await core.settings.set(SettingKey.ENABLE_SPELL_USAGE_TRACKING, False)

        assert await core.usage.record_usage(elara, FIRE_BOLT, in_combat=True) is None

    async def test_only_characters_are_tracked(self, core, store):
        store.add_actor(Actor(id="goblin", name="Goblin Shaman", type="npc"))

        assert await core.usage.record_usage("goblin", FIRE_BOLT, in_combat=True) is None

    async def test_unclaimed_actor_uses_current_user(self, core, store):
        store.add_actor(make_multiclass())

        await core.usage.record_usage("sable", FIRE_BOLT, in_combat=True)

        assert (await core.user_data.get_spell(FIRE_BOLT, actor_id="sable")).usage.count == 1
