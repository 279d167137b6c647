"""
Spell preparation engine.

Classifies how each spell stands for a class, validates single toggles
against the class rules, and reconciles a submitted per-class preparation
state into the actor's spell items and preparation flags.

Key components:
- PreparationEngine.status: Preparation status of one spell for one class
- PreparationEngine.can_change: Validation of a single checkbox toggle
- PreparationEngine.save / save_all: Reconciliation of desired states
- PreparationEngine.open_spell_book: Housekeeping run when a spell book opens

Items are never rewritten or deleted when they are always-prepared,
granted by another item (``cachedFor``), innate or at-will.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..classes import SpellcastingClass, get_spellcasting_class, spellcasting_classes
from ..constants import IMMUTABLE_METHODS, SPECIAL_METHODS, Enforcement, Method, Prepared, RitualCasting, SwapMode
from ..errors import ChangeDecision, Reason
from ..models import Actor, ClassRules, ItemUpdate, Spell, SpellItem, normalize_uuid
from ..notifications import ClassChange
from ..settings import SettingKey
from .rituals import has_ritual_copy, make_ritual_copy
from .state import make_key
from .types import (
    ChangeContext,
    DesiredSpell,
    LimitStatus,
    PreparationState,
    PreparationStats,
    PreparationStatus,
    RejectedSpell,
    SaveResult,
)

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.preparation")


@dataclass
class _ItemPlan:
    """Item mutations queued during one reconciliation."""

    creates: list[SpellItem] = field(default_factory=list)
    updates: dict[str, dict[str, Any]] = field(default_factory=dict)
    deletes: list[str] = field(default_factory=list)

    def update(self, item_id: str, **changes: Any) -> None:
        self.updates.setdefault(item_id, {}).update(changes)

    def delete(self, item_id: str) -> None:
        if item_id not in self.deletes:
            self.deletes.append(item_id)
        self.updates.pop(item_id, None)

    def creates_ritual(self, class_id: str, uuid: str) -> bool:
        return any(
            item.method == Method.RITUAL and item.source_class == class_id and item.matches(uuid)
            for item in self.creates
        )


def _first(items: Sequence[SpellItem], predicate) -> SpellItem | None:
    for item in items:
        if predicate(item):
            return item
    return None


class PreparationEngine:
    """Per-class spell preparation: status, validation and reconciliation."""

    def __init__(self, core: Core) -> None:
        self.core = core

    # -----------------------------------------------------------------
    # Status classification
    # -----------------------------------------------------------------

    async def status(self, actor_id: str, class_id: str, uuid: str, level: int | None = None) -> PreparationStatus:
        """Classify one spell for one class.

        An unassigned owned copy found along the way is claimed for the class.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return PreparationStatus()
        uuid = normalize_uuid(uuid)
        copies = actor.copies_of(uuid)
        if level is None:
            level = await self._spell_level(uuid, copies)

        mine = [item for item in copies if item.source_class == class_id]
        if mine:
            owned = _first(mine, lambda i: i.prepared == Prepared.PREPARED and i.method != Method.RITUAL) or mine[0]
            return self._owned_status(owned)

        unassigned = _first(copies, lambda i: i.source_class is None)
        if unassigned is not None:
            if not unassigned.is_immutable and unassigned.method not in SPECIAL_METHODS:
                await self._claim(actor, unassigned, class_id)
            return self._owned_status(unassigned)

        if level > 0:
            other = await self.core.state.find_other_class(actor_id, class_id, uuid)
            if other is not None:
                return PreparationStatus(
                    state=PreparationState.PREPARED_BY_OTHER,
                    prepared=True,
                    disabled=True,
                    by_class=other,
                    mode=Method.SPELL,
                    reason=Reason.PREPARED_BY_OTHER,
                )

        if copies:
            special = self._special_status(copies[0])
            if special is not None:
                return special

        prepared = make_key(class_id, uuid) in await self.core.state.get_class_prepared(actor_id, class_id)
        result = PreparationStatus(
            state=PreparationState.PREPARED if prepared else PreparationState.NONE,
            prepared=prepared,
        )
        if level == 0 and not prepared:
            result = await self._overlay_cantrip_lock(actor_id, class_id, result)
        return result

    @staticmethod
    def _owned_status(item: SpellItem) -> PreparationStatus:
        base = {"item_id": item.id, "mode": item.method}
        if item.is_granted:
            return PreparationStatus(
                state=PreparationState.GRANTED, prepared=True, disabled=True, source_item=item.cached_for, **base
            )
        if item.is_always_prepared:
            return PreparationStatus(
                state=PreparationState.ALWAYS, prepared=True, disabled=True, source_item=item.advancement_origin, **base
            )
        if item.method in IMMUTABLE_METHODS:
            return PreparationStatus(state=PreparationState.SPECIAL, prepared=True, disabled=True, **base)
        if item.prepared == Prepared.PREPARED:
            return PreparationStatus(state=PreparationState.PREPARED, prepared=True, **base)
        return PreparationStatus(state=PreparationState.NONE, **base)

    @staticmethod
    def _special_status(item: SpellItem) -> PreparationStatus | None:
        """Status from another class's copy; None when that copy is ordinary."""
        base = {"item_id": item.id, "mode": item.method, "by_class": item.source_class}
        if item.is_always_prepared:
            return PreparationStatus(
                state=PreparationState.ALWAYS, prepared=True, disabled=True, source_item=item.advancement_origin, **base
            )
        if item.is_granted:
            return PreparationStatus(
                state=PreparationState.GRANTED, prepared=True, disabled=True, source_item=item.cached_for, **base
            )
        if item.method in SPECIAL_METHODS:
            return PreparationStatus(state=PreparationState.SPECIAL, prepared=True, disabled=True, **base)
        return None

    async def _overlay_cantrip_lock(
        self, actor_id: str, class_id: str, result: PreparationStatus
    ) -> PreparationStatus:
        maximum = await self.core.cantrips.max_cantrips(actor_id, class_id)
        current = await self.core.cantrips.current_count(actor_id, class_id)
        if current < maximum:
            return result
        settings = await self.core.rules.get_settings(actor_id, class_id)
        if settings.behavior != Enforcement.ENFORCED:
            return result
        return result.model_copy(
            update={"state": PreparationState.CANTRIP_LOCKED, "disabled": True, "reason": Reason.MAXIMUM_REACHED}
        )

    async def _claim(self, actor: Actor, item: SpellItem, class_id: str) -> None:
        if not self.core.store.can_modify(actor):
            item.source_class = class_id
            return
        await self.core.store.update_items(actor.id, [ItemUpdate(id=item.id, changes={"source_class": class_id})])
        item.source_class = class_id
        logger.debug(f"Claimed unassigned {item.name} for {class_id} on {actor.name}")

    async def _spell_level(self, uuid: str, copies: Sequence[SpellItem]) -> int:
        if copies:
            return copies[0].level
        found = await self.core.index.fetch([uuid])
        return found[0].level if found else 1

    # -----------------------------------------------------------------
    # Counts and context
    # -----------------------------------------------------------------

    async def preparation_stats(self, actor_id: str, class_id: str) -> PreparationStats:
        """Prepared leveled spells of the class against its maximum.

        Always-prepared, granted, innate, at-will and pact copies do not count.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return PreparationStats(current=0, maximum=0)
        current = sum(
            1
            for item in actor.spell_items()
            if item.source_class == class_id
            and item.level > 0
            and item.prepared == Prepared.PREPARED
            and not item.is_immutable
            and item.method != Method.PACT
        )
        maximum = await self.core.progression.max_prepared(actor_id, class_id)
        return PreparationStats(current=current, maximum=maximum)

    async def current_context(self, actor_id: str) -> ChangeContext:
        """Open windows: a pending cantrip level-up and a completed long rest."""
        return ChangeContext(
            is_level_up=await self.core.cantrips.can_be_leveled_up(actor_id),
            is_long_rest=await self.core.flags.get_long_rest_completed(actor_id),
        )

    async def record_long_rest(self, actor_id: str) -> None:
        """Open the long-rest swap window with fresh tracking."""
        await self.core.cantrips.reset_swap_tracking(actor_id)
        await self.core.flags.set_long_rest_completed(actor_id, True)
        logger.debug(f"Long rest recorded for {actor_id}")

    # -----------------------------------------------------------------
    # Change validation
    # -----------------------------------------------------------------

    async def can_change(
        self,
        actor_id: str,
        class_id: str,
        uuid: str,
        is_checked: bool,
        was_prepared: bool,
        context: ChangeContext | None = None,
        level: int | None = None,
    ) -> ChangeDecision:
        """Validate toggling one spell for a class.

        Cantrips go to the cantrip engine. Leveled spells first pass the
        structural checks (prepared by another class, above the class's max
        spell level, off the class list, missing from a forced spellbook),
        which apply under every enforcement behaviour, then the count and
        swap rules of the class.
        """
        uuid = normalize_uuid(uuid)
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return ChangeDecision.deny(Reason.NOT_FOUND)
        if not self.core.store.can_modify(actor):
            return ChangeDecision.deny(Reason.PERMISSION_DENIED)
        caster = get_spellcasting_class(actor, class_id)
        if caster is None:
            return ChangeDecision.deny(Reason.NOT_FOUND)
        context = context or await self.current_context(actor_id)
        copies = actor.copies_of(uuid)
        if level is None:
            level = await self._spell_level(uuid, copies)

        if self._immutable_copy(copies, class_id) is not None:
            return ChangeDecision(allowed=True, reason=Reason.IMMUTABLE, no_op=True)
        if level == 0:
            return await self.core.cantrips.can_change(actor_id, class_id, uuid, is_checked, context)

        if is_checked and not await self._already_prepared(actor_id, class_id, uuid, was_prepared):
            rules = await self.core.rules.get_class_rules(actor_id, class_id)
            reason = await self._structural_reason(actor, caster, rules, uuid, level)
            if reason is not None:
                return ChangeDecision.deny(reason)

        settings = await self.core.rules.get_settings(actor_id, class_id)
        if settings.behavior in (Enforcement.UNENFORCED, Enforcement.NOTIFY_GM):
            message = None
            if settings.behavior == Enforcement.NOTIFY_GM and is_checked:
                current, maximum = await self._prepared_count_and_max(actor_id, class_id, context)
                if current >= maximum:
                    message = f"Over limit: {current + 1}/{maximum} spells"
                    self.core.store.notify("info", message)
            return ChangeDecision.allow(message)

        if is_checked:
            current, maximum = await self._prepared_count_and_max(actor_id, class_id, context)
            if current >= maximum:
                return ChangeDecision.deny(Reason.CLASS_AT_MAXIMUM)

        if not is_checked and was_prepared:
            swapping = settings.rules.spell_swapping
            if swapping == SwapMode.NONE:
                return ChangeDecision.deny(Reason.LOCKED_NO_SWAPPING)
            if swapping == SwapMode.LEVEL_UP and not context.is_level_up:
                return ChangeDecision.deny(Reason.LOCKED_OUTSIDE_LEVEL_UP)
            if swapping == SwapMode.LONG_REST and not context.is_long_rest:
                return ChangeDecision.deny(Reason.LOCKED_OUTSIDE_LONG_REST)
        return ChangeDecision.allow()

    async def _already_prepared(self, actor_id: str, class_id: str, uuid: str, was_prepared: bool) -> bool:
        """Whether the class's stored prepared set confirms the claimed prepared state."""
        if not was_prepared:
            return False
        return make_key(class_id, uuid) in await self.core.state.get_class_prepared(actor_id, class_id)

    async def _prepared_count_and_max(self, actor_id: str, class_id: str, context: ChangeContext) -> tuple[int, int]:
        stats = await self.preparation_stats(actor_id, class_id)
        current = context.ui_count if context.ui_count is not None else stats.current
        return current, stats.maximum

    @staticmethod
    def _immutable_copy(copies: Sequence[SpellItem], class_id: str) -> SpellItem | None:
        return _first(copies, lambda i: i.is_immutable and i.source_class in (class_id, None))

    async def _structural_reason(
        self,
        actor: Actor,
        caster: SpellcastingClass,
        rules: ClassRules,
        uuid: str,
        level: int,
        available: set[str] | None = None,
    ) -> Reason | None:
        """Why a leveled spell can never be prepared by this class right now."""
        class_id = caster.identifier
        if await self.core.state.find_other_class(actor.id, class_id, uuid) is not None:
            return Reason.PREPARED_BY_OTHER
        if _first(
            actor.copies_of(uuid),
            lambda i: i.source_class not in (class_id, None) and i.prepared == Prepared.PREPARED and i.method != Method.RITUAL,
        ):
            return Reason.PREPARED_BY_OTHER
        if level > self.core.progression.max_spell_level_for(caster):
            return Reason.ABOVE_MAX_LEVEL
        if available is None:
            available = await self.available_spells(actor.id, class_id)
        owned_here = _first(actor.copies_of(uuid), lambda i: i.source_class in (class_id, None)) is not None
        if uuid not in available and not owned_here:
            return Reason.NOT_ON_CLASS_LIST
        if rules.force_wizard_mode:
            spellbook = await self.core.wizard.get_spellbook_spells(actor.id, class_id)
            if uuid not in spellbook:
                return Reason.NOT_IN_SPELLBOOK
        return None

    async def available_spells(self, actor_id: str, class_id: str) -> set[str]:
        """Class list plus, for wizard-like classes, the personal spellbook."""
        available = set(await self.core.resolver.resolve(actor_id, class_id))
        if await self.core.wizard.is_wizard_class(actor_id, class_id):
            available |= await self.core.wizard.get_spellbook_spells(actor_id, class_id)
        return {normalize_uuid(uuid) for uuid in available}

    # -----------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------

    async def save(self, actor_id: str, class_id: str, desired: Sequence[DesiredSpell]) -> SaveResult:
        """Reconcile one class's desired state. See ``save_all``."""
        results = await self.save_all(actor_id, {class_id: desired})
        return results[0] if results else SaveResult(class_identifier=class_id)

    async def save_all(
        self, actor_id: str, desired_by_class: Mapping[str, Sequence[DesiredSpell]]
    ) -> list[SaveResult]:
        """Reconcile desired states for several classes, then close windows.

        Per class, item creates, updates and deletes are applied before the
        class's prepared set and the flat mirror are written. Afterwards the
        GM is notified of the changes (notify-GM enforcement only), a pending
        cantrip level-up is completed and an open long-rest window is closed.

        Returns:
            One ``SaveResult`` per class that was reconciled.
        """
        async with self.core.actor_lock(actor_id):
            actor = await self.core.get_actor(actor_id)
            if actor is None:
                return []
            if not self.core.store.can_modify(actor):
                logger.warning(f"User {self.core.store.current_user().name} cannot modify {actor.name}; save skipped")
                return [
                    SaveResult(
                        class_identifier=class_id,
                        rejected=[
                            RejectedSpell(uuid=entry.uuid, name=entry.name, reason=Reason.PERMISSION_DENIED)
                            for entry in desired
                            if entry.is_prepared != entry.was_prepared
                        ],
                    )
                    for class_id, desired in desired_by_class.items()
                ]

            results: list[SaveResult] = []
            for class_id, desired in desired_by_class.items():
                result = await self._save_class(actor_id, class_id, desired)
                if result is not None:
                    results.append(result)

            await self._notify(actor_id, results, desired_by_class)
            await self._post_save(actor_id)
            return results

    async def _save_class(self, actor_id: str, class_id: str, desired: Sequence[DesiredSpell]) -> SaveResult | None:
        actor = await self.core.get_actor(actor_id)
        caster = get_spellcasting_class(actor, class_id) if actor else None
        if actor is None or caster is None:
            logger.info(f"Class {class_id} not found on actor {actor_id}; nothing saved")
            return None
        rules = await self.core.rules.get_class_rules(actor_id, class_id)
        default_method = Method.PACT if caster.is_pact else Method.SPELL
        always_rituals = rules.ritual_casting == RitualCasting.ALWAYS

        accepted, rejected = await self._screen(actor, caster, rules, desired)
        result = SaveResult(class_identifier=class_id, rejected=rejected)
        plan = _ItemPlan()
        keys: set[str] = set()

        for entry in accepted:
            uuid = normalize_uuid(entry.uuid)
            changes = result.cantrip_changes if entry.level == 0 else result.spell_changes
            if entry.is_prepared and not entry.was_prepared:
                changes.added.append(entry.name)
            elif entry.was_prepared and not entry.is_prepared:
                changes.removed.append(entry.name)
            method = Method.SPELL if entry.level == 0 else (entry.preparation_mode or default_method)
            wants_ritual = entry.is_ritual and entry.level > 0 and always_rituals

            if entry.is_prepared:
                if await self._ensure_prepared(actor, class_id, uuid, method, rules, plan):
                    keys.add(make_key(class_id, uuid))
            elif entry.was_prepared:
                self._unprepare(actor, class_id, uuid, entry.level, rules, plan)
            if wants_ritual:
                await self._ensure_ritual(actor, class_id, uuid, plan)

        await self._apply(actor_id, plan)
        result.created = len(plan.creates)
        result.updated = len(plan.updates)
        result.deleted = len(plan.deletes)

        await self.core.state.set_class_prepared(actor_id, class_id, keys)
        await self._auto_delete_unprepared(actor_id)
        self.core.clear_actor_caches(actor_id)
        logger.debug(
            f"Saved {class_id} on {actor.name}: {len(keys)} prepared, "
            f"{result.created} created, {result.updated} updated, {result.deleted} deleted"
        )
        return result

    async def _screen(
        self,
        actor: Actor,
        caster: SpellcastingClass,
        rules: ClassRules,
        desired: Sequence[DesiredSpell],
    ) -> tuple[list[DesiredSpell], list[RejectedSpell]]:
        """Drop newly prepared spells that fail a structural check.

        A spell counts as newly prepared unless its key is already in the
        class's stored prepared set, whatever the entry's ``was_prepared``
        says. De-duplicates entries by canonical UUID, keeping the last.
        """
        class_id = caster.identifier
        stored = await self.core.state.get_class_prepared(actor.id, class_id)
        unique: dict[str, DesiredSpell] = {}
        for entry in desired:
            unique[normalize_uuid(entry.uuid)] = entry
        accepted: list[DesiredSpell] = []
        rejected: list[RejectedSpell] = []
        available: set[str] | None = None
        for uuid, entry in unique.items():
            newly_prepared = not entry.was_prepared or make_key(class_id, uuid) not in stored
            if entry.is_prepared and newly_prepared and entry.level > 0:
                if self._immutable_copy(actor.copies_of(uuid), class_id) is None:
                    if available is None:
                        available = await self.available_spells(actor.id, class_id)
                    reason = await self._structural_reason(actor, caster, rules, uuid, entry.level, available)
                    if reason is not None:
                        rejected.append(RejectedSpell(uuid=uuid, name=entry.name, reason=reason))
                        logger.debug(f"Rejected {entry.name or uuid} for {class_id}: {reason.value}")
                        continue
            accepted.append(entry)
        return accepted, rejected

    async def _ensure_prepared(
        self,
        actor: Actor,
        class_id: str,
        uuid: str,
        method: Method,
        rules: ClassRules,
        plan: _ItemPlan,
    ) -> bool:
        """Queue the item change that makes ``uuid`` prepared for the class.

        Returns:
            Whether the class's prepared set should hold the spell.
        """
        copies = actor.copies_of(uuid)
        immutable = self._immutable_copy(copies, class_id)
        if immutable is not None:
            return immutable.source_class == class_id and immutable.prepared != Prepared.UNPREPARED

        mine = [item for item in copies if item.source_class == class_id]
        prepared_copy = _first(mine, lambda i: i.method != Method.RITUAL and i.prepared == Prepared.PREPARED)
        ritual_copy = _first(mine, lambda i: i.method == Method.RITUAL)

        if prepared_copy is not None:
            if prepared_copy.method != method:
                plan.update(prepared_copy.id, method=method, prepared=Prepared.PREPARED)
            return True

        if ritual_copy is not None and rules.ritual_casting == RitualCasting.ALWAYS and method == Method.SPELL:
            return await self._queue_create(uuid, class_id, method, plan)

        existing = _first(copies, lambda i: i.source_class is None) or (mine[0] if mine else None)
        if existing is not None:
            plan.update(existing.id, method=method, prepared=Prepared.PREPARED, source_class=class_id)
            return True

        return await self._queue_create(uuid, class_id, method, plan)

    async def _queue_create(self, uuid: str, class_id: str, method: Method, plan: _ItemPlan) -> bool:
        source = await self._load_source(uuid)
        if source is None:
            logger.warning(f"Could not find source spell {uuid} for {class_id}")
            return False
        plan.creates.append(SpellItem.from_spell(source, class_id, method, Prepared.PREPARED))
        return True

    def _unprepare(
        self,
        actor: Actor,
        class_id: str,
        uuid: str,
        level: int,
        rules: ClassRules,
        plan: _ItemPlan,
    ) -> None:
        mine = [item for item in actor.copies_of(uuid) if item.source_class == class_id]
        target = _first(mine, lambda i: i.prepared == Prepared.PREPARED and i.method != Method.RITUAL) or _first(
            mine, lambda i: i.prepared == Prepared.PREPARED
        )
        if target is None or target.is_immutable:
            return
        if target.is_ritual and level > 0 and rules.ritual_casting == RitualCasting.ALWAYS and target.method == Method.RITUAL:
            return
        plan.delete(target.id)

    async def _ensure_ritual(self, actor: Actor, class_id: str, uuid: str, plan: _ItemPlan) -> None:
        if has_ritual_copy(actor, class_id, uuid) or plan.creates_ritual(class_id, uuid):
            return
        source = await self._load_source(uuid)
        if source is None:
            logger.warning(f"Could not find source spell {uuid} for ritual copy")
            return
        plan.creates.append(make_ritual_copy(source, class_id))

    async def _load_source(self, uuid: str) -> Spell | SpellItem | None:
        doc = await self.core.store.from_uuid(uuid)
        return doc if isinstance(doc, (Spell, SpellItem)) else None

    async def _apply(self, actor_id: str, plan: _ItemPlan) -> None:
        if plan.creates:
            await self.core.store.create_items(actor_id, plan.creates)
        if plan.updates:
            await self.core.store.update_items(
                actor_id, [ItemUpdate(id=item_id, changes=changes) for item_id, changes in plan.updates.items()]
            )
        if plan.deletes:
            await self.core.store.delete_items(actor_id, plan.deletes)

    async def _auto_delete_unprepared(self, actor_id: str) -> int:
        if not await self.core.settings.get(SettingKey.AUTO_DELETE_UNPREPARED_SPELLS):
            return 0
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        doomed = [
            item.id
            for item in actor.spell_items()
            if item.method == Method.SPELL and item.prepared == Prepared.UNPREPARED and not item.is_granted
        ]
        if doomed:
            await self.core.store.delete_items(actor_id, doomed)
            logger.debug(f"Auto-deleted {len(doomed)} unprepared spells from {actor.name}")
        return len(doomed)

    # -----------------------------------------------------------------
    # After a save
    # -----------------------------------------------------------------

    async def _notify(
        self,
        actor_id: str,
        results: Sequence[SaveResult],
        desired_by_class: Mapping[str, Sequence[DesiredSpell]],
    ) -> None:
        behavior = await self.core.flags.get_enforcement(actor_id) or await self.core.settings.enforcement_default()
        if behavior != Enforcement.NOTIFY_GM or not results:
            return
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return
        casters = spellcasting_classes(actor)
        changes: dict[str, ClassChange] = {}
        for result in results:
            class_id = result.class_identifier
            desired = desired_by_class.get(class_id, ())
            rejected = {r.uuid for r in result.rejected}
            prepared = [e for e in desired if e.is_prepared and normalize_uuid(e.uuid) not in rejected]
            cantrip_count = sum(1 for e in prepared if e.level == 0)
            spell_count = sum(1 for e in prepared if e.level > 0)
            max_cantrips = await self.core.cantrips.max_cantrips(actor_id, class_id)
            max_spells = await self.core.progression.max_prepared(actor_id, class_id)
            caster = casters.get(class_id)
            changes[class_id] = ClassChange(
                class_name=caster.name if caster else class_id,
                cantrip_changes=result.cantrip_changes.model_copy(deep=True),
                spell_changes=result.spell_changes.model_copy(deep=True),
                cantrips=LimitStatus(current=cantrip_count, max=max_cantrips),
                spells=LimitStatus(current=spell_count, max=max_spells),
            )
        await self.core.notifier.send(actor.name, changes)

    async def _post_save(self, actor_id: str) -> None:
        if await self.core.cantrips.can_be_leveled_up(actor_id):
            await self.core.cantrips.complete_level_up(actor_id)
        if await self.core.flags.get_long_rest_completed(actor_id):
            await self.core.cantrips.reset_swap_tracking(actor_id)
            await self.core.flags.set_long_rest_completed(actor_id, False)
            logger.debug(f"Closed long-rest window for {actor_id}")

    # -----------------------------------------------------------------
    # Housekeeping
    # -----------------------------------------------------------------

    async def cleanup_stale_preparation_flags(self, actor_id: str) -> int:
        return await self.core.state.cleanup_stale_preparation_flags(actor_id)

    async def cleanup_cantrips_for_class(self, actor_id: str, class_id: str) -> int:
        return await self.core.state.cleanup_cantrips_for_class(actor_id, class_id)

    async def open_spell_book(self, actor_id: str) -> list[str]:
        """Run the housekeeping done when an actor's spell book opens.

        Initializes rules for new classes, prunes stale preparation keys,
        drops cantrip keys of classes that hide cantrips and syncs ritual
        copies. Skipped for users who cannot modify the actor.

        Returns:
            Identifiers of the actor's spellcasting classes.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return []
        class_ids = list(spellcasting_classes(actor))
        if not self.core.store.can_modify(actor):
            logger.warning(f"Read-only spell book for {actor.name}")
            return class_ids
        await self.core.rules.initialize_new_classes(actor_id)
        await self.cleanup_stale_preparation_flags(actor_id)
        for class_id in class_ids:
            rules = await self.core.rules.get_class_rules(actor_id, class_id)
            if not rules.show_cantrips:
                await self.cleanup_cantrips_for_class(actor_id, class_id)
        await self.core.rituals.sync(actor_id)
        return class_ids
