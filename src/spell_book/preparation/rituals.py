"""
Ritual-only spell copies.

Wizard-like classes whose ``ritualCasting`` rule is ``always`` may cast any
ritual in their spellbook without preparing it. Each such spell gets an
unprepared copy with method ``ritual``, marked with the module flag
``isModuleRitual`` so it can be told apart from ritual copies the actor
received some other way.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..classes import spellcasting_classes
from ..constants import MODULE_ID, Method, Prepared, RitualCasting
from ..models import Actor, ItemUpdate, SpellFields, SpellItem, normalize_uuid

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.preparation")

MODULE_RITUAL_FLAG = "isModuleRitual"


def is_module_ritual(item: SpellItem) -> bool:
    return bool(item.flags.get(MODULE_ID, {}).get(MODULE_RITUAL_FLAG))


def make_ritual_copy(source: SpellFields, class_id: str) -> SpellItem:
    """Unprepared ritual-method copy of ``source`` owned by ``class_id``."""
    return SpellItem.from_spell(
        source,
        source_class=class_id,
        method=Method.RITUAL,
        prepared=Prepared.UNPREPARED,
        flags={MODULE_ID: {MODULE_RITUAL_FLAG: True}},
    )


def has_ritual_copy(actor: Actor, class_id: str, uuid: str) -> bool:
    return any(
        item.method == Method.RITUAL and item.source_class == class_id
        for item in actor.copies_of(uuid)
    )


class RitualManager:
    """Creates and removes ritual-only copies per class rules."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def initialize_ritual_spells(self, actor_id: str, class_id: str) -> list[SpellItem]:
        """Create missing ritual copies for the spellbook rituals of a class.

        Only wizard-like classes with ``ritualCasting=always`` get copies.
        A spellbook spell the actor already owns for the class in any other
        unprepared method is switched to ritual mode instead.

        Returns:
            Newly created items.
        """
        rules = await self.core.rules.get_class_rules(actor_id, class_id)
        if rules.ritual_casting != RitualCasting.ALWAYS:
            return []
        if not await self.core.wizard.is_wizard_class(actor_id, class_id):
            return []
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return []

        spellbook = await self.core.wizard.get_spellbook_spells(actor_id, class_id)
        if not spellbook:
            return []
        spells = await self.core.index.fetch(spellbook)

        to_create: list[SpellItem] = []
        to_convert: list[str] = []
        for spell in spells:
            if not spell.is_ritual or spell.level == 0:
                continue
            uuid = normalize_uuid(spell.uuid)
            if has_ritual_copy(actor, class_id, uuid):
                continue
            mine = [item for item in actor.copies_of(uuid) if item.source_class in (class_id, None)]
            if any(item.prepared != Prepared.UNPREPARED or item.is_immutable for item in mine):
                # A prepared copy exists; the ritual copy is created next to it
                if any(item.prepared == Prepared.PREPARED and not item.is_immutable for item in mine):
                    to_create.append(make_ritual_copy(spell, class_id))
                continue
            if mine:
                to_convert.append(mine[0].id)
            else:
                to_create.append(make_ritual_copy(spell, class_id))

        if to_convert:
            await self.core.store.update_items(
                actor_id,
                [
                    ItemUpdate(id=item_id, changes={"method": Method.RITUAL, "prepared": Prepared.UNPREPARED, "source_class": class_id})
                    for item_id in to_convert
                ],
            )
        created: list[SpellItem] = []
        if to_create:
            created = await self.core.store.create_items(actor_id, to_create)
        if created or to_convert:
            logger.info(
                f"Ritual copies for {class_id} on {actor.name}: {len(created)} created, {len(to_convert)} converted"
            )
        return created

    async def remove_module_rituals(self, actor_id: str, class_id: str) -> int:
        """Delete module-created ritual copies of a class.

        Returns:
            Number of items deleted.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        doomed = [
            item.id
            for item in actor.spell_items()
            if item.source_class == class_id
            and item.method == Method.RITUAL
            and item.prepared == Prepared.UNPREPARED
            and is_module_ritual(item)
        ]
        if doomed:
            await self.core.store.delete_items(actor_id, doomed)
            logger.info(f"Removed {len(doomed)} ritual copies for {class_id} on {actor.name}")
        return len(doomed)

    async def sync(self, actor_id: str) -> None:
        """Bring every class's ritual copies in line with its rules."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return
        for class_id in spellcasting_classes(actor):
            rules = await self.core.rules.get_class_rules(actor_id, class_id)
            if rules.ritual_casting == RitualCasting.ALWAYS:
                await self.initialize_ritual_spells(actor_id, class_id)
            else:
                await self.remove_module_rituals(actor_id, class_id)
