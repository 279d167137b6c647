"""
Spellcasting progression: maximum spell level, cantrips known and prepared
spell limits for a class on an actor.

Multi-level models convert class levels into a caster level and read the
highest slot level with a positive count from the standard slot table.
Single-level (pact) models return the pact slot level.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..classes import SpellcastingClass, get_spellcasting_class, spellcasting_classes
from ..constants import MAX_SPELL_LEVEL

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.progression")


# Standard slot table: caster level -> slots per spell level 1..9
SPELL_SLOT_TABLE: list[list[int]] = [
    [2],
    [3],
    [4, 2],
    [4, 3],
    [4, 3, 2],
    [4, 3, 3],
    [4, 3, 3, 1],
    [4, 3, 3, 2],
    [4, 3, 3, 3, 1],
    [4, 3, 3, 3, 2],
    [4, 3, 3, 3, 2, 1],
    [4, 3, 3, 3, 2, 1],
    [4, 3, 3, 3, 2, 1, 1],
    [4, 3, 3, 3, 2, 1, 1],
    [4, 3, 3, 3, 2, 1, 1, 1],
    [4, 3, 3, 3, 2, 1, 1, 1],
    [4, 3, 3, 3, 2, 1, 1, 1, 1],
    [4, 3, 3, 3, 3, 1, 1, 1, 1],
    [4, 3, 3, 3, 3, 2, 1, 1, 1],
    [4, 3, 3, 3, 3, 2, 2, 1, 1],
]

# Pact slot level by warlock level (index = level - 1)
PACT_SLOT_LEVELS: list[int] = [1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5]

CasterLevelFn = Callable[[int], int]

# Multi-level models: class levels -> caster level on the standard table
STANDARD_MODELS: dict[str, CasterLevelFn] = {
    "full": lambda levels: levels,
    "half": lambda levels: levels // 2,
    "third": lambda levels: levels // 3,
    "artificer": lambda levels: math.ceil(levels / 2),
}


def slots_for_caster_level(caster_level: int) -> dict[int, int]:
    """Slot maxima keyed by spell level for a caster level."""
    if caster_level <= 0:
        return {}
    row = SPELL_SLOT_TABLE[min(caster_level, len(SPELL_SLOT_TABLE)) - 1]
    return {level: count for level, count in enumerate(row, start=1)}


def pact_slot_level(levels: int) -> int:
    if levels <= 0:
        return 0
    return PACT_SLOT_LEVELS[min(levels, len(PACT_SLOT_LEVELS)) - 1]


class ProgressionCalculator:
    """Per-class limits derived from progression tables and class rules."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._models: dict[str, CasterLevelFn] = dict(STANDARD_MODELS)
        self._single_level: dict[str, CasterLevelFn] = {"pact": pact_slot_level}

    def register_model(self, name: str, caster_level: CasterLevelFn, single_level: bool = False) -> None:
        """Add a custom progression model.

        Args:
            name: Progression name as it appears on class items.
            caster_level: For multi-level models, class levels -> caster level.
                For single-level models, class levels -> slot level.
            single_level: Whether the model behaves like pact magic.
        """
        if single_level:
            self._single_level[name] = caster_level
        else:
            self._models[name] = caster_level

    # -----------------------------------------------------------------
    # Spell level
    # -----------------------------------------------------------------

    def max_spell_level_for(self, caster: SpellcastingClass) -> int:
        progression = caster.progression
        if progression in self._single_level:
            return min(self._single_level[progression](caster.levels), MAX_SPELL_LEVEL)
        model = self._models.get(progression)
        if model is None:
            logger.debug(f"No spellcasting model for progression '{progression}' on {caster.identifier}")
            return 0
        slots = slots_for_caster_level(model(caster.levels))
        return max((level for level, count in slots.items() if count > 0), default=0)

    async def max_spell_level(self, actor_id: str, class_id: str) -> int:
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        caster = get_spellcasting_class(actor, class_id)
        if caster is None:
            return 0
        return self.max_spell_level_for(caster)

    async def class_identifiers(self, actor_id: str) -> list[str]:
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return []
        return list(spellcasting_classes(actor))

    # -----------------------------------------------------------------
    # Cantrips
    # -----------------------------------------------------------------

    @staticmethod
    def base_cantrips(caster: SpellcastingClass, scale_keys: list[str]) -> int:
        """First defined cantrip scale value for the class, or 0."""
        values = caster.scale_values
        for key in scale_keys:
            if key not in values:
                continue
            raw: Any = values[key]
            if isinstance(raw, dict):
                raw = raw.get("value")
            if raw is None:
                continue
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning(f"Non-numeric cantrip scale value {key}={raw!r} on {caster.identifier}")
                return 0
        return 0

    # -----------------------------------------------------------------
    # Prepared spells
    # -----------------------------------------------------------------

    async def max_prepared(self, actor_id: str, class_id: str) -> int:
        """Base preparation maximum of the class plus the class rules bonus."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        caster = get_spellcasting_class(actor, class_id)
        if caster is None:
            return 0
        rules = await self.core.rules.get_class_rules(actor_id, caster.identifier)
        return max(0, caster.spellcasting.preparation_max + rules.spell_preparation_bonus)
