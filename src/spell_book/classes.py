"""
Spellcasting class discovery on an actor.

A class item is a spellcasting class when its own spellcasting progression
is not ``none``, or when its subclass supplies one (e.g. Eldritch Knight on
a fighter).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import Actor, ClassItem, SpellcastingConfig, SubclassItem


def class_identifier(item: ClassItem | SubclassItem) -> str:
    """Lowercase identifier, falling back to the item name."""
    return (item.identifier or item.name).lower()


@dataclass
class SpellcastingClass:
    """A spellcasting class on an actor with its effective configuration."""

    identifier: str
    class_item: ClassItem
    subclass: SubclassItem | None
    spellcasting: SpellcastingConfig

    @property
    def name(self) -> str:
        return self.class_item.name

    @property
    def levels(self) -> int:
        return self.class_item.levels

    @property
    def progression(self) -> str:
        return self.spellcasting.progression

    @property
    def is_pact(self) -> bool:
        return self.spellcasting.type == "pact" or self.spellcasting.progression == "pact"

    @property
    def source_item(self) -> ClassItem | SubclassItem:
        """The item that carries the spellcasting progression."""
        own = self.class_item.spellcasting
        if own and own.progression != "none":
            return self.class_item
        return self.subclass or self.class_item

    @property
    def scale_values(self) -> dict[str, Any]:
        merged = dict(self.class_item.scale_values)
        if self.subclass:
            merged.update(self.subclass.scale_values)
        return merged


def _has_progression(config: SpellcastingConfig | None) -> bool:
    return bool(config and config.progression and config.progression != "none")


def spellcasting_classes(actor: Actor) -> dict[str, SpellcastingClass]:
    """Spellcasting classes keyed by identifier, in item order."""
    subclasses: dict[str, SubclassItem] = {
        sub.class_identifier.lower(): sub for sub in actor.subclass_items()
    }
    result: dict[str, SpellcastingClass] = {}
    for class_item in actor.class_items():
        identifier = class_identifier(class_item)
        subclass = subclasses.get(identifier)
        if _has_progression(class_item.spellcasting):
            config = class_item.spellcasting
        elif subclass is not None and _has_progression(subclass.spellcasting):
            config = subclass.spellcasting
        else:
            continue
        result[identifier] = SpellcastingClass(
            identifier=identifier,
            class_item=class_item,
            subclass=subclass,
            spellcasting=config,
        )
    return result


def get_spellcasting_class(actor: Actor, identifier: str) -> SpellcastingClass | None:
    return spellcasting_classes(actor).get(identifier.lower())
