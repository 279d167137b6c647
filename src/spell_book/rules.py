"""
Rule set registry.

Default class rules per class identifier and rule set (legacy / modern),
per-actor overrides stored in the ``classRules`` flag, and the guarded
update path for custom spell-list changes.

Key components:
- CLASS_DEFAULTS: Static table of swap, ritual and cantrip defaults
- RuleSetRegistry: Reads, initializes and updates class rules on actors
- SpellSettings: Enforcement behaviour plus class rules for one class
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .classes import spellcasting_classes
from .constants import Enforcement, RitualCasting, RuleSetName, SwapMode, Template
from .models import ClassRules, Spell, SpellItem
from .preparation.state import parse_key

if TYPE_CHECKING:
    from .core import Core

logger = logging.getLogger("spell-book.rules")


# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------
# (cantripSwapping, spellSwapping, ritualCasting, showCantrips)

_RuleRow = tuple[SwapMode, SwapMode, RitualCasting, bool]

_NONE, _LEVEL_UP, _LONG_REST = SwapMode.NONE, SwapMode.LEVEL_UP, SwapMode.LONG_REST

CLASS_DEFAULTS: dict[RuleSetName, dict[str, _RuleRow]] = {
    RuleSetName.LEGACY: {
        "wizard": (_NONE, _LONG_REST, RitualCasting.ALWAYS, True),
        "cleric": (_NONE, _LONG_REST, RitualCasting.PREPARED, True),
        "druid": (_NONE, _LONG_REST, RitualCasting.PREPARED, True),
        "paladin": (_NONE, _LONG_REST, RitualCasting.NONE, False),
        "ranger": (_NONE, _LEVEL_UP, RitualCasting.NONE, False),
        "bard": (_NONE, _LEVEL_UP, RitualCasting.PREPARED, True),
        "sorcerer": (_NONE, _LEVEL_UP, RitualCasting.NONE, True),
        "warlock": (_NONE, _LEVEL_UP, RitualCasting.NONE, True),
        "artificer": (_NONE, _LONG_REST, RitualCasting.NONE, True),
    },
    RuleSetName.MODERN: {
        "wizard": (_LONG_REST, _LONG_REST, RitualCasting.ALWAYS, True),
        "cleric": (_NONE, _LONG_REST, RitualCasting.NONE, True),
        "druid": (_NONE, _LONG_REST, RitualCasting.NONE, True),
        "paladin": (_NONE, _LONG_REST, RitualCasting.NONE, False),
        "ranger": (_NONE, _LONG_REST, RitualCasting.NONE, False),
        "bard": (_LEVEL_UP, _LEVEL_UP, RitualCasting.NONE, True),
        "sorcerer": (_LEVEL_UP, _LEVEL_UP, RitualCasting.NONE, True),
        "warlock": (_LEVEL_UP, _LEVEL_UP, RitualCasting.NONE, True),
        "artificer": (_LEVEL_UP, _LONG_REST, RitualCasting.NONE, True),
    },
}

GENERIC_DEFAULTS: dict[RuleSetName, _RuleRow] = {
    RuleSetName.LEGACY: (_NONE, _LEVEL_UP, RitualCasting.NONE, True),
    RuleSetName.MODERN: (_LEVEL_UP, _LEVEL_UP, RitualCasting.NONE, True),
}


def class_defaults(class_id: str, rule_set: RuleSetName) -> ClassRules:
    """Default rules for a class under a rule set. Unknown classes get the generic row."""
    row = CLASS_DEFAULTS[rule_set].get(class_id.lower(), GENERIC_DEFAULTS[rule_set])
    cantrip_swapping, spell_swapping, ritual_casting, show_cantrips = row
    return ClassRules(
        cantrip_swapping=cantrip_swapping,
        spell_swapping=spell_swapping,
        ritual_casting=ritual_casting,
        show_cantrips=show_cantrips,
    )


def _alias_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Accept snake_case or camelCase keys; return camelCase."""
    out: dict[str, Any] = {}
    for key, value in patch.items():
        field = ClassRules.model_fields.get(key)
        out[field.alias if field and field.alias else key] = value
    return out


class AffectedSpell(BaseModel):
    """A prepared spell that a spell-list change would remove."""

    name: str
    uuid: str
    level: int
    key: str = Field(description="Class spell key in the prepared set")


class SpellSettings(BaseModel):
    """Enforcement behaviour and rules governing one class."""

    behavior: Enforcement
    rules: ClassRules


class RuleSetRegistry:
    """Class rules per actor, backed by the ``classRules`` flag."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._cache: dict[tuple[str, str], ClassRules] = {}

    def clear_cache(self, actor_id: str | None = None) -> None:
        if actor_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == actor_id]:
            del self._cache[key]

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    async def effective_rule_set(self, actor_id: str) -> RuleSetName:
        """Actor override, else the world setting, else legacy."""
        override = await self.core.flags.get_rule_set_override(actor_id)
        if override is not None:
            return override
        return await self.core.settings.rule_set()

    async def get_class_rules(self, actor_id: str, class_id: str) -> ClassRules:
        """Persisted rules merged over defaults.

        Rules stored for a class the actor no longer has are ignored in
        favour of fresh defaults.
        """
        cache_key = (actor_id, class_id)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached.model_copy()

        rule_set = await self.effective_rule_set(actor_id)
        defaults = class_defaults(class_id, rule_set)
        stored = await self.core.flags.get_class_rules_raw(actor_id, class_id)
        actor = await self.core.store.get_actor(actor_id)
        class_exists = actor is not None and class_id in spellcasting_classes(actor)
        if stored and class_exists:
            rules = ClassRules.model_validate({**defaults.dump(), **stored})
        else:
            rules = defaults
        self._cache[cache_key] = rules
        return rules.model_copy()

    async def get_settings(self, actor_id: str, class_id: str) -> SpellSettings:
        """Enforcement from the actor flag, else the world default, else notify-GM."""
        behavior = await self.core.flags.get_enforcement(actor_id)
        if behavior is None:
            behavior = await self.core.settings.enforcement_default()
        return SpellSettings(behavior=behavior, rules=await self.get_class_rules(actor_id, class_id))

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    async def apply_rule_set_to_actor(self, actor_id: str, rule_set: RuleSetName) -> None:
        """Set the actor's rule set override and fill in defaults for every class.

        Existing per-class values are preserved; only missing fields take
        the new rule set's defaults.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return
        for class_id in spellcasting_classes(actor):
            defaults = class_defaults(class_id, rule_set).dump()
            existing = await self.core.flags.get_class_rules_raw(actor_id, class_id) or {}
            merged = ClassRules.model_validate({**defaults, **existing})
            await self.core.flags.set_class_rules(actor_id, class_id, merged)
        await self.core.flags.set_rule_set_override(actor_id, rule_set)
        self.clear_cache(actor_id)
        logger.info(f"Applied {rule_set.value} rule set to {actor.name}")

    async def initialize_new_classes(self, actor_id: str) -> list[str]:
        """Add default rules for spellcasting classes that have none yet.

        Returns:
            Identifiers of the classes that were initialized.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return []
        rule_set = await self.effective_rule_set(actor_id)
        added = []
        for class_id in spellcasting_classes(actor):
            if await self.core.flags.has_class_rules(actor_id, class_id):
                continue
            await self.core.flags.set_class_rules(actor_id, class_id, class_defaults(class_id, rule_set))
            added.append(class_id)
        if added:
            self.clear_cache(actor_id)
            logger.debug(f"Initialized rules for new classes on {actor.name}: {', '.join(added)}")
        return added

    async def update_class_rules(self, actor_id: str, class_id: str, patch: dict[str, Any]) -> bool:
        """Merge ``patch`` into the class rules and persist.

        A change to ``customSpellList`` (compared as a set) that would drop
        currently prepared spells asks for confirmation first; on
        confirmation those spells are unprepared.

        Returns:
            False if the user cancelled, True otherwise.
        """
        patch = _alias_patch(patch)
        current = await self.get_class_rules(actor_id, class_id)

        if "customSpellList" in patch:
            new_list = ClassRules.model_validate({"customSpellList": patch["customSpellList"]}).custom_spell_list
            patch["customSpellList"] = new_list
            if sorted(new_list) != sorted(current.custom_spell_list):
                affected = await self.get_affected_spells(actor_id, class_id, new_list)
                if affected:
                    if not await self._confirm_list_change(actor_id, class_id, affected):
                        logger.info(f"Spell list change for {class_id} cancelled")
                        return False
                    await self._unprepare_affected(actor_id, class_id, affected)

        merged = ClassRules.model_validate({**current.dump(), **patch})
        await self.core.flags.set_class_rules(actor_id, class_id, merged)
        self.core.clear_actor_caches(actor_id)
        logger.debug(f"Updated class rules for {class_id} on {actor_id}")
        return True

    # -----------------------------------------------------------------
    # Spell-list change fallout
    # -----------------------------------------------------------------

    async def get_affected_spells(self, actor_id: str, class_id: str, new_list: list[str]) -> list[AffectedSpell]:
        """Prepared spells of the class that are absent from the new list.

        An empty ``new_list`` means the class's default list.
        """
        prepared = await self.core.state.get_class_prepared(actor_id, class_id)
        if not prepared:
            return []
        if new_list:
            sets = []
            for uuid in new_list:
                page = await self.core.resolver.load_list(uuid)
                if page is not None and page.spells:
                    sets.append(set(page.spells))
            available: set[str] = set().union(*sets) if sets else set()
        else:
            available = await self.core.resolver.resolve(actor_id, class_id, ignore_custom=True)

        affected = []
        for key in sorted(prepared):
            _, uuid = parse_key(key)
            if uuid in available:
                continue
            doc = await self.core.store.from_uuid(uuid)
            if not isinstance(doc, (Spell, SpellItem)):
                continue
            affected.append(AffectedSpell(name=doc.name, uuid=uuid, level=doc.level, key=key))
        return affected

    async def _confirm_list_change(self, actor_id: str, class_id: str, affected: list[AffectedSpell]) -> bool:
        actor = await self.core.store.get_actor(actor_id)
        caster = spellcasting_classes(actor).get(class_id) if actor else None
        context = {
            "className": caster.name if caster else class_id,
            "totalAffected": len(affected),
            "cantripCount": sum(1 for s in affected if s.level == 0),
            "spellCount": sum(1 for s in affected if s.level > 0),
            "affectedSpells": [s.model_dump() for s in affected],
        }
        content = await self.core.store.render_template(Template.SPELL_LIST_CHANGE_CONFIRMATION.value, context)
        return await self.core.store.confirm("Spell List Change", content)

    async def _unprepare_affected(self, actor_id: str, class_id: str, affected: list[AffectedSpell]) -> None:
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return
        uuids = {s.uuid for s in affected}
        doomed = [
            item.id for item in actor.spell_items()
            if item.source_class == class_id
            and _matches_any(item, uuids)
            and not item.is_immutable
        ]
        if doomed:
            await self.core.store.delete_items(actor_id, doomed)
            logger.debug(f"Removed {len(doomed)} spell items after list change for {class_id}")
        await self.core.state.remove_keys(actor_id, class_id, {s.key for s in affected})


def _matches_any(item: SpellItem, uuids: set[str]) -> bool:
    return any(item.matches(uuid) for uuid in uuids)
