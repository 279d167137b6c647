"""
Typed facade over the module's actor flags.

One method per named flag. Callers never build flag paths by hand; values
cross this boundary as typed records (``ClassRules``, ``SwapTracking``,
``CopiedSpell``, ``Loadout``) or plain typed containers.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from ..constants import Enforcement, Flag, RuleSetName, SwapContext
from ..models import ClassRules, CopiedSpell, Loadout, SwapTracking
from .base import DocumentStore

logger = logging.getLogger("spell-book.store")


class ActorFlags:
    """Read and write the spell book flags of actors through a document store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # -----------------------------------------------------------------
    # Preparation state
    # -----------------------------------------------------------------

    async def get_prepared_by_class(self, actor_id: str) -> dict[str, list[str]]:
        raw = await self.store.get_flag(actor_id, Flag.PREPARED_SPELLS_BY_CLASS.value) or {}
        return {cls: list(keys or []) for cls, keys in raw.items()}

    async def set_class_prepared(self, actor_id: str, class_id: str, keys: list[str]) -> None:
        await self.store.set_flag(actor_id, f"{Flag.PREPARED_SPELLS_BY_CLASS.value}.{class_id}", list(keys))

    async def set_prepared_by_class(self, actor_id: str, mapping: dict[str, list[str]]) -> None:
        """Replace the whole map; classes missing from ``mapping`` are dropped."""
        await self.store.unset_flag(actor_id, Flag.PREPARED_SPELLS_BY_CLASS.value)
        await self.store.set_flag(
            actor_id,
            Flag.PREPARED_SPELLS_BY_CLASS.value,
            {cls: list(keys) for cls, keys in mapping.items()},
        )

    async def get_prepared_spells(self, actor_id: str) -> list[str]:
        return list(await self.store.get_flag(actor_id, Flag.PREPARED_SPELLS.value) or [])

    async def set_prepared_spells(self, actor_id: str, uuids: list[str]) -> None:
        await self.store.set_flag(actor_id, Flag.PREPARED_SPELLS.value, list(uuids))

    # -----------------------------------------------------------------
    # Rules
    # -----------------------------------------------------------------

    async def get_class_rules(self, actor_id: str) -> dict[str, ClassRules]:
        raw: dict[str, Any] = await self.store.get_flag(actor_id, Flag.CLASS_RULES.value) or {}
        rules: dict[str, ClassRules] = {}
        for class_id, data in raw.items():
            try:
                rules[class_id] = ClassRules.model_validate(data or {})
            except ValidationError as e:
                logger.warning(f"Ignoring invalid class rules for {class_id} on {actor_id}: {e}")
        return rules

    async def get_class_rules_raw(self, actor_id: str, class_id: str) -> dict[str, Any] | None:
        """Stored fields of one class, unmerged; None when the class has no entry."""
        raw = await self.store.get_flag(actor_id, Flag.CLASS_RULES.value) or {}
        value = raw.get(class_id)
        return dict(value) if isinstance(value, dict) else None

    async def has_class_rules(self, actor_id: str, class_id: str) -> bool:
        raw = await self.store.get_flag(actor_id, Flag.CLASS_RULES.value) or {}
        return class_id in raw

    async def set_class_rules(self, actor_id: str, class_id: str, rules: ClassRules) -> None:
        key = f"{Flag.CLASS_RULES.value}.{class_id}"
        await self.store.unset_flag(actor_id, key)
        await self.store.set_flag(actor_id, key, rules.dump())

    async def get_rule_set_override(self, actor_id: str) -> RuleSetName | None:
        value = await self.store.get_flag(actor_id, Flag.RULE_SET_OVERRIDE.value)
        if not value:
            return None
        try:
            return RuleSetName(value)
        except ValueError:
            logger.warning(f"Unknown rule set override '{value}' on {actor_id}")
            return None

    async def set_rule_set_override(self, actor_id: str, rule_set: RuleSetName | None) -> None:
        if rule_set is None:
            await self.store.unset_flag(actor_id, Flag.RULE_SET_OVERRIDE.value)
        else:
            await self.store.set_flag(actor_id, Flag.RULE_SET_OVERRIDE.value, rule_set.value)

    async def get_enforcement(self, actor_id: str) -> Enforcement | None:
        value = await self.store.get_flag(actor_id, Flag.ENFORCEMENT_BEHAVIOR.value)
        if not value:
            return None
        try:
            return Enforcement(value)
        except ValueError:
            return None

    async def set_enforcement(self, actor_id: str, behavior: Enforcement | None) -> None:
        if behavior is None:
            await self.store.unset_flag(actor_id, Flag.ENFORCEMENT_BEHAVIOR.value)
        else:
            await self.store.set_flag(actor_id, Flag.ENFORCEMENT_BEHAVIOR.value, behavior.value)

    # -----------------------------------------------------------------
    # Cantrip swap windows
    # -----------------------------------------------------------------

    @staticmethod
    def _tracking_key(class_id: str, context: SwapContext) -> str:
        return f"{Flag.CANTRIP_SWAP_TRACKING.value}.{class_id}.{context.value}"

    async def get_swap_tracking(self, actor_id: str, class_id: str, context: SwapContext) -> SwapTracking | None:
        raw = await self.store.get_flag(actor_id, self._tracking_key(class_id, context))
        if not raw:
            return None
        return SwapTracking.model_validate(raw)

    async def set_swap_tracking(
        self, actor_id: str, class_id: str, context: SwapContext, tracking: SwapTracking
    ) -> None:
        key = self._tracking_key(class_id, context)
        await self.store.unset_flag(actor_id, key)
        await self.store.set_flag(actor_id, key, tracking.dump())

    async def clear_swap_tracking(self, actor_id: str, class_id: str, context: SwapContext) -> None:
        await self.store.unset_flag(actor_id, self._tracking_key(class_id, context))

    async def tracked_classes(self, actor_id: str) -> list[str]:
        raw = await self.store.get_flag(actor_id, Flag.CANTRIP_SWAP_TRACKING.value) or {}
        return list(raw)

    async def get_previous_level(self, actor_id: str) -> int:
        return int(await self.store.get_flag(actor_id, Flag.PREVIOUS_LEVEL.value) or 0)

    async def set_previous_level(self, actor_id: str, level: int) -> None:
        await self.store.set_flag(actor_id, Flag.PREVIOUS_LEVEL.value, level)

    async def get_previous_cantrip_max(self, actor_id: str) -> int:
        return int(await self.store.get_flag(actor_id, Flag.PREVIOUS_CANTRIP_MAX.value) or 0)

    async def set_previous_cantrip_max(self, actor_id: str, value: int) -> None:
        await self.store.set_flag(actor_id, Flag.PREVIOUS_CANTRIP_MAX.value, value)

    async def get_long_rest_completed(self, actor_id: str) -> bool:
        return bool(await self.store.get_flag(actor_id, Flag.LONG_REST_COMPLETED.value))

    async def set_long_rest_completed(self, actor_id: str, value: bool) -> None:
        await self.store.set_flag(actor_id, Flag.LONG_REST_COMPLETED.value, value)

    # -----------------------------------------------------------------
    # Wizard spellbook
    # -----------------------------------------------------------------

    async def get_copied_spells(self, actor_id: str, class_id: str) -> list[CopiedSpell]:
        raw = await self.store.get_flag(actor_id, f"{Flag.WIZARD_COPIED_SPELLS.value}_{class_id}") or []
        return [CopiedSpell.model_validate(entry) for entry in raw]

    async def set_copied_spells(self, actor_id: str, class_id: str, entries: list[CopiedSpell]) -> None:
        await self.store.set_flag(
            actor_id,
            f"{Flag.WIZARD_COPIED_SPELLS.value}_{class_id}",
            [entry.dump() for entry in entries],
        )

    # -----------------------------------------------------------------
    # Loadouts and party focus
    # -----------------------------------------------------------------

    async def get_loadouts(self, actor_id: str) -> dict[str, Loadout]:
        raw = await self.store.get_flag(actor_id, Flag.SPELL_LOADOUTS.value) or {}
        loadouts: dict[str, Loadout] = {}
        for loadout_id, data in raw.items():
            try:
                loadouts[loadout_id] = Loadout.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping invalid loadout {loadout_id} on {actor_id}: {e}")
        return loadouts

    async def set_loadout(self, actor_id: str, loadout: Loadout) -> None:
        key = f"{Flag.SPELL_LOADOUTS.value}.{loadout.id}"
        await self.store.unset_flag(actor_id, key)
        await self.store.set_flag(actor_id, key, loadout.dump())

    async def remove_loadout(self, actor_id: str, loadout_id: str) -> None:
        await self.store.unset_flag(actor_id, f"{Flag.SPELL_LOADOUTS.value}.{loadout_id}")

    async def get_focus(self, actor_id: str) -> str | None:
        return await self.store.get_flag(actor_id, Flag.SPELLCASTING_FOCUS.value) or None

    async def set_focus(self, actor_id: str, focus_id: str | None) -> None:
        if focus_id is None:
            await self.store.unset_flag(actor_id, Flag.SPELLCASTING_FOCUS.value)
        else:
            await self.store.set_flag(actor_id, Flag.SPELLCASTING_FOCUS.value, focus_id)
