"""
Wizard personal spellbooks and scroll learning.

A wizard-like class (identifier ``wizard``, or any class with
``forceWizardMode`` in its rules) keeps a personal spellbook: a spell-list
page in the module's custom pack, one journal per actor and class, in the
``Actor Spellbooks`` folder. Paid copies are recorded under the actor flag
``wizardCopiedSpells_<class>`` so free and copied spells can be told apart.

Key components:
- WizardSpellbook: Spellbook reads and writes, copy cost and time, free spells
- ScrollScanner: Finds spells on scroll items and learns them into a spellbook
- deduct_currency: Pays a gold cost from an actor's purse
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .classes import SpellcastingClass, get_spellcasting_class, spellcasting_classes
from .constants import (
    FOLDER_ACTOR_SPELLBOOKS,
    MODULE_ID,
    PACK_CUSTOM_LISTS,
    WIZARD_CLASS,
    WIZARD_SPELLS_PER_LEVEL,
    WIZARD_STARTING_SPELLS,
    WizardSpellSource,
)
from .errors import Reason, Result
from .models import Actor, CopiedSpell, JournalEntry, JournalPage, OtherItem, Spell, SpellItem, normalize_uuid
from .settings import SettingKey
from .store.base import PERMISSION_NONE, PERMISSION_OWNER

if TYPE_CHECKING:
    from .core import Core

logger = logging.getLogger("spell-book.wizard")

SPELLBOOK_LIST_TYPE = "actor-spellbook"

# dnd5e currencies: units per gold piece
CURRENCY_CONVERSION: dict[str, float] = {
    "pp": 0.1,
    "gp": 1,
    "ep": 2,
    "sp": 10,
    "cp": 100,
}


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------


def wealth_in_gold(currency: dict[str, int]) -> float:
    return sum(currency.get(kind, 0) / rate for kind, rate in CURRENCY_CONVERSION.items())


def plan_deduction(currency: dict[str, int], cost: float) -> dict[str, int] | None:
    """Coins to remove to pay ``cost`` gold, or None when the purse is short.

    Gold goes first, then the other coins from most to least valuable.
    Coins are whole, so the amount taken may exceed the cost; no change is
    given.
    """
    if wealth_in_gold(currency) < cost:
        return None
    order = ["gp"] + sorted((k for k in CURRENCY_CONVERSION if k != "gp"), key=CURRENCY_CONVERSION.get)
    remaining = float(cost)
    deductions: dict[str, int] = {}
    for kind in order:
        if remaining <= 0.001:
            break
        available = currency.get(kind, 0)
        if available <= 0:
            continue
        rate = CURRENCY_CONVERSION[kind]
        needed = math.ceil(remaining * rate - 1e-9)
        take = min(available, needed)
        if take > 0:
            deductions[kind] = take
            remaining -= take / rate
    return deductions


async def deduct_currency(core: Core, actor: Actor, cost: float) -> bool:
    """Pay ``cost`` gold from the actor's purse.

    Returns:
        False (with a warning notification) when the actor cannot afford it.
    """
    deductions = plan_deduction(actor.currency, cost)
    if deductions is None:
        core.store.notify(
            "warn", f"Insufficient funds: {cost} gp needed, {wealth_in_gold(actor.currency):.2f} gp available"
        )
        return False
    if deductions:
        await core.store.update_actor(
            actor.id,
            {f"currency.{kind}": actor.currency.get(kind, 0) - amount for kind, amount in deductions.items()},
        )
        summary = ", ".join(f"{amount} {kind}" for kind, amount in deductions.items())
        logger.info(f"Deducted {summary} from {actor.name}")
    return True


def _spellbook_identifier(actor_name: str, class_id: str) -> str:
    clean = re.sub(r"[^a-z0-9]", "-", actor_name.lower())
    return f"{clean}-{class_id}-spellbook"


# ---------------------------------------------------------------------------
# Personal spellbook
# ---------------------------------------------------------------------------


class CopyCost(BaseModel):
    cost: int
    is_free: bool
    time: int


class WizardSpellbook:
    """Personal spellbooks of wizard-like classes."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._cache: dict[tuple[str, str], set[str]] = {}
        self._journal_locks: dict[tuple[str, str], asyncio.Lock] = {}

    def clear_cache(self, actor_id: str | None = None) -> None:
        if actor_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == actor_id]:
            del self._cache[key]

    async def is_wizard_class(self, actor_id: str, class_id: str) -> bool:
        """Whether the class exists on the actor and keeps a spellbook."""
        actor = await self.core.store.get_actor(actor_id)
        if actor is None or get_spellcasting_class(actor, class_id) is None:
            return False
        if class_id.lower() == WIZARD_CLASS:
            return True
        rules = await self.core.rules.get_class_rules(actor_id, class_id)
        return rules.force_wizard_mode

    async def wizard_classes(self, actor_id: str) -> list[str]:
        actor = await self.core.store.get_actor(actor_id)
        if actor is None:
            return []
        return [class_id for class_id in spellcasting_classes(actor) if await self.is_wizard_class(actor_id, class_id)]

    # -----------------------------------------------------------------
    # Journal
    # -----------------------------------------------------------------

    async def find_spellbook_journal(self, actor_id: str, class_id: str) -> JournalEntry | None:
        if await self.core.store.get_pack(PACK_CUSTOM_LISTS) is None:
            return None
        for doc in await self.core.store.get_documents(PACK_CUSTOM_LISTS):
            if not isinstance(doc, JournalEntry):
                continue
            flags = doc.flags.get(MODULE_ID, {})
            if flags.get("actorId") == actor_id and flags.get("classIdentifier") == class_id:
                return doc
        return None

    async def get_or_create_spellbook_journal(self, actor_id: str, class_id: str) -> JournalEntry | None:
        """The class's spellbook journal, created on first use.

        Creation is serialized per actor and class so concurrent callers
        never create two journals.
        """
        lock = self._journal_locks.setdefault((actor_id, class_id), asyncio.Lock())
        async with lock:
            existing = await self.find_spellbook_journal(actor_id, class_id)
            if existing is not None:
                return existing
            actor = await self.core.get_actor(actor_id)
            caster = get_spellcasting_class(actor, class_id) if actor else None
            if actor is None or caster is None:
                return None
            if await self.core.store.get_pack(PACK_CUSTOM_LISTS) is None:
                logger.error("Custom spell lists pack not found; cannot create spellbook")
                return None
            return await self._create_journal(actor, caster)

    async def _create_journal(self, actor: Actor, caster: SpellcastingClass) -> JournalEntry:
        class_id = caster.identifier
        name = actor.name if class_id == WIZARD_CLASS else f"{actor.name} ({caster.name})"
        ownership = {"default": PERMISSION_NONE, self.core.store.current_user().id: PERMISSION_OWNER}
        for user_id, level in actor.ownership.items():
            if user_id != "default" and level == PERMISSION_OWNER:
                ownership[user_id] = PERMISSION_OWNER
        flags = {MODULE_ID: {"actorId": actor.id, "classIdentifier": class_id}}
        page = JournalPage(
            id="",
            name=f"{name}'s Spellbook",
            identifier=_spellbook_identifier(actor.name, class_id),
            list_type=SPELLBOOK_LIST_TYPE,
            content=f"Personal spellbook of {name}",
            flags={MODULE_ID: {**flags[MODULE_ID], "isActorSpellbook": True}},
            ownership=ownership,
        )
        journal = await self.core.store.create_journal(
            PACK_CUSTOM_LISTS,
            JournalEntry(
                id="",
                name=name,
                folder=FOLDER_ACTOR_SPELLBOOKS,
                pages=[page],
                flags={MODULE_ID: {**flags[MODULE_ID], "isActorSpellbook": True, "creationDate": self.core.now_ms()}},
                ownership=ownership,
            ),
        )
        logger.debug(f"Created spellbook journal for {actor.name} {class_id}: {journal.uuid}")
        return journal

    @staticmethod
    def _spellbook_page(journal: JournalEntry) -> JournalPage | None:
        for page in journal.pages:
            if page.is_spell_list:
                return page
        return None

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    async def get_spellbook_spells(self, actor_id: str, class_id: str) -> set[str]:
        """Canonical UUIDs in the class's spellbook. Reading never creates the journal."""
        key = (actor_id, class_id)
        if key in self._cache:
            return set(self._cache[key])
        if not await self.is_wizard_class(actor_id, class_id):
            return set()
        journal = await self.find_spellbook_journal(actor_id, class_id)
        page = self._spellbook_page(journal) if journal else None
        spells = {normalize_uuid(uuid) for uuid in page.spells} if page else set()
        self._cache[key] = spells
        return set(spells)

    async def is_spell_in_spellbook(self, actor_id: str, class_id: str, uuid: str) -> bool:
        return normalize_uuid(uuid) in await self.get_spellbook_spells(actor_id, class_id)

    async def copied_spells(self, actor_id: str, class_id: str) -> list[CopiedSpell]:
        return await self.core.flags.get_copied_spells(actor_id, class_id)

    async def learning_source(self, actor_id: str, class_id: str, uuid: str) -> WizardSpellSource:
        uuid = normalize_uuid(uuid)
        for entry in await self.copied_spells(actor_id, class_id):
            if normalize_uuid(entry.spell_uuid) == uuid:
                return WizardSpellSource.SCROLL if entry.from_scroll else WizardSpellSource.COPIED
        return WizardSpellSource.FREE

    async def scroll_learned_spells(self, actor_id: str, class_id: str) -> set[str]:
        """Spellbook spells outside the class list."""
        spellbook = await self.get_spellbook_spells(actor_id, class_id)
        class_list = {normalize_uuid(u) for u in await self.core.resolver.resolve(actor_id, class_id)}
        return spellbook - class_list

    # -----------------------------------------------------------------
    # Free spells and costs
    # -----------------------------------------------------------------

    async def total_free_spells(self, actor_id: str, class_id: str) -> int:
        """Starting spells plus the per-level allowance for levels after the first."""
        actor = await self.core.get_actor(actor_id)
        caster = get_spellcasting_class(actor, class_id) if actor else None
        if caster is None or not await self.is_wizard_class(actor_id, class_id):
            return 0
        return WIZARD_STARTING_SPELLS + max(0, caster.levels - 1) * WIZARD_SPELLS_PER_LEVEL

    async def used_free_spells(self, actor_id: str, class_id: str) -> int:
        spellbook = await self.get_spellbook_spells(actor_id, class_id)
        paid = {normalize_uuid(e.spell_uuid) for e in await self.copied_spells(actor_id, class_id)}
        return len(spellbook - paid)

    async def remaining_free_spells(self, actor_id: str, class_id: str) -> int:
        total = await self.total_free_spells(actor_id, class_id)
        return max(0, total - await self.used_free_spells(actor_id, class_id))

    async def is_spell_free(self, actor_id: str, class_id: str, spell: Spell | SpellItem) -> bool:
        if spell.level == 0:
            return True
        return await self.remaining_free_spells(actor_id, class_id) > 0

    async def copy_cost(self, actor_id: str, class_id: str, spell: Spell | SpellItem) -> CopyCost:
        """Gold and hours needed to copy a spell, per the class rules."""
        rules = await self.core.rules.get_class_rules(actor_id, class_id)
        time = 1 if spell.level == 0 else spell.level * rules.spell_learning_time_multiplier
        if await self.is_spell_free(actor_id, class_id, spell):
            return CopyCost(cost=0, is_free=True, time=time)
        cost = 0 if spell.level == 0 else spell.level * rules.spell_learning_cost_multiplier
        return CopyCost(cost=cost, is_free=False, time=time)

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    async def add_spell(
        self,
        actor_id: str,
        class_id: str,
        uuid: str,
        source: WizardSpellSource = WizardSpellSource.FREE,
        cost: int = 0,
        time_spent: int = 0,
    ) -> bool:
        """Write a spell into the spellbook; copied and scroll spells are recorded as paid.

        Returns:
            False when the class has no spellbook.
        """
        if not await self.is_wizard_class(actor_id, class_id):
            return False
        journal = await self.get_or_create_spellbook_journal(actor_id, class_id)
        page = self._spellbook_page(journal) if journal else None
        if page is None:
            return False
        uuid = normalize_uuid(uuid)
        known = {normalize_uuid(u) for u in page.spells}
        if uuid in known:
            logger.debug(f"Spell {uuid} already in {class_id} spellbook of {actor_id}")
            return True
        await self.core.store.update_page(page.uuid, {"spells": sorted(known | {uuid})})
        if source in (WizardSpellSource.COPIED, WizardSpellSource.SCROLL):
            entries = await self.copied_spells(actor_id, class_id)
            entries.append(
                CopiedSpell(
                    spell_uuid=uuid,
                    date_copied=self.core.now_ms(),
                    cost=cost,
                    time_spent=time_spent,
                    from_scroll=source == WizardSpellSource.SCROLL,
                )
            )
            await self.core.flags.set_copied_spells(actor_id, class_id, entries)
        self.clear_cache(actor_id)
        logger.debug(f"Added spell {uuid} to {class_id} spellbook of {actor_id} ({source.value})")
        return True

    async def remove_spell(self, actor_id: str, class_id: str, uuid: str) -> bool:
        """Drop a spell from the spellbook and its copy record."""
        journal = await self.find_spellbook_journal(actor_id, class_id)
        page = self._spellbook_page(journal) if journal else None
        uuid = normalize_uuid(uuid)
        if page is None or uuid not in {normalize_uuid(u) for u in page.spells}:
            return False
        remaining = sorted(u for u in page.spells if normalize_uuid(u) != uuid)
        await self.core.store.update_page(page.uuid, {"spells": remaining})
        entries = await self.copied_spells(actor_id, class_id)
        kept = [e for e in entries if normalize_uuid(e.spell_uuid) != uuid]
        if len(kept) != len(entries):
            await self.core.flags.set_copied_spells(actor_id, class_id, kept)
        self.clear_cache(actor_id)
        logger.debug(f"Removed spell {uuid} from {class_id} spellbook of {actor_id}")
        return True

    async def copy_spell(self, actor_id: str, class_id: str, uuid: str) -> Result[CopyCost]:
        """Copy a spell into the spellbook, paying for it when it is not free.

        Gold is only deducted when ``deductSpellLearningCost`` is on.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return Result.failure(Reason.NOT_FOUND, actor_id)
        if not self.core.store.can_modify(actor):
            logger.warning(f"Cannot copy spells for {actor.name}: permission denied")
            return Result.failure(Reason.PERMISSION_DENIED)
        spell = await self.core.store.from_uuid(uuid)
        if not isinstance(spell, (Spell, SpellItem)):
            return Result.failure(Reason.NOT_FOUND, uuid)
        if await self.is_spell_in_spellbook(actor_id, class_id, uuid):
            return Result.failure(Reason.ALREADY_IN_SPELLBOOK, spell.name)
        price = await self.copy_cost(actor_id, class_id, spell)
        if not price.is_free and price.cost > 0 and await self.core.settings.get(SettingKey.DEDUCT_SPELL_LEARNING_COST):
            if not await deduct_currency(self.core, actor, price.cost):
                return Result.failure(Reason.INSUFFICIENT_FUNDS, spell.name)
        source = WizardSpellSource.FREE if price.is_free else WizardSpellSource.COPIED
        if not await self.add_spell(actor_id, class_id, uuid, source, cost=price.cost, time_spent=price.time):
            return Result.failure(Reason.NOT_FOUND, class_id)
        return Result.success(price)


# ---------------------------------------------------------------------------
# Scrolls
# ---------------------------------------------------------------------------


class ScrollSpell(BaseModel):
    """A learnable spell found on a scroll item."""

    scroll_id: str
    scroll_name: str
    spell_uuid: str
    name: str
    level: int


def _scroll_spell_uuids(scroll: OtherItem) -> list[str]:
    """Spell UUIDs referenced by a scroll's activities, directly or through effects."""
    activities: Any = scroll.system.get("activities") or []
    if isinstance(activities, dict):
        activities = list(activities.values())
    effects = {e.get("_id"): e for e in scroll.system.get("effects") or [] if isinstance(e, dict)}
    uuids = []
    for activity in activities:
        if not isinstance(activity, dict):
            continue
        spell_uuid = (activity.get("spell") or {}).get("uuid")
        if spell_uuid:
            uuids.append(spell_uuid)
        for ref in activity.get("effects") or []:
            origin = (effects.get(ref.get("_id")) or {}).get("origin") if isinstance(ref, dict) else None
            if origin:
                uuids.append(origin)
    return uuids


class ScrollScanner:
    """Scroll items a wizard-like class could learn from."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def learning_class(self, actor_id: str) -> str | None:
        """Class that learns from scrolls: a forced wizard, else ``wizard``, else the first wizard-like class."""
        classes = await self.core.wizard.wizard_classes(actor_id)
        if not classes:
            return None
        for class_id in classes:
            rules = await self.core.rules.get_class_rules(actor_id, class_id)
            if rules.force_wizard_mode:
                return class_id
        if WIZARD_CLASS in classes:
            return WIZARD_CLASS
        return classes[0]

    async def scan(self, actor_id: str) -> list[ScrollSpell]:
        """One learnable spell per scroll, at or below the learning class's max spell level."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return []
        class_id = await self.learning_class(actor_id)
        if class_id is None:
            return []
        max_level = await self.core.progression.max_spell_level(actor_id, class_id)
        found: list[ScrollSpell] = []
        for scroll in (item for item in actor.other_items() if item.is_scroll):
            for uuid in _scroll_spell_uuids(scroll):
                spell = await self.core.store.from_uuid(uuid)
                if not isinstance(spell, (Spell, SpellItem)):
                    continue
                if spell.level > max_level and spell.level > 0:
                    continue
                found.append(
                    ScrollSpell(
                        scroll_id=scroll.id,
                        scroll_name=scroll.name,
                        spell_uuid=normalize_uuid(uuid),
                        name=spell.name,
                        level=spell.level,
                    )
                )
                break
        logger.debug(f"Found {len(found)} scroll spells on {actor.name}")
        return found

    async def learn(self, actor_id: str, scroll_spell: ScrollSpell, class_id: str | None = None) -> Result[CopyCost]:
        """Learn a scroll's spell after confirmation, then consume the scroll."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return Result.failure(Reason.NOT_FOUND, actor_id)
        class_id = class_id or await self.learning_class(actor_id)
        if class_id is None:
            return Result.failure(Reason.NOT_FOUND, "no wizard-like class")
        spell = await self.core.store.from_uuid(scroll_spell.spell_uuid)
        if not isinstance(spell, (Spell, SpellItem)):
            return Result.failure(Reason.NOT_FOUND, scroll_spell.spell_uuid)

        wizard = self.core.wizard
        already = await wizard.is_spell_in_spellbook(actor_id, class_id, scroll_spell.spell_uuid)
        if already:
            price = CopyCost(cost=0, is_free=True, time=0)
        else:
            price = await wizard.copy_cost(actor_id, class_id, spell)
        deduct = not price.is_free and price.cost > 0 and await self.core.settings.get(SettingKey.DEDUCT_SPELL_LEARNING_COST)
        if deduct and plan_deduction(actor.currency, price.cost) is None:
            self.core.store.notify("warn", f"Insufficient funds to learn {spell.name}")
            return Result.failure(Reason.INSUFFICIENT_FUNDS, spell.name)

        cost_text = "free" if price.is_free else f"{price.cost} gp"
        note = " It is already in your spellbook." if already else ""
        if not await self.core.store.confirm(
            f"Learn {spell.name}", f"Copy {spell.name} from {scroll_spell.scroll_name} ({cost_text}, {price.time} hours)?{note}"
        ):
            return Result.failure(Reason.PERMISSION_DENIED, "cancelled")

        if not already:
            added = await wizard.add_spell(
                actor_id, class_id, scroll_spell.spell_uuid, WizardSpellSource.SCROLL, cost=price.cost, time_spent=price.time
            )
            if not added:
                return Result.failure(Reason.NOT_FOUND, class_id)
        if deduct:
            await deduct_currency(self.core, actor, price.cost)
        await self.core.store.delete_items(actor_id, [scroll_spell.scroll_id])
        self.core.store.notify("info", f"Learned {spell.name}")
        logger.info(f"{actor.name} learned {spell.name} from {scroll_spell.scroll_name}")
        return Result.success(price)
