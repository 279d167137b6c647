"""
Read-only party spell view.

Builds a comparison across several actors: who has which spells prepared,
grouped by spell level, each member's spellcasting focus, and a synergy
summary (overlap, concentration and ritual load, damage types, schools and
role coverage) with recommendation codes. Nothing here writes to actors
except ``set_focus``.

Key components:
- PartyAggregator: Comparison, synergy analysis and focus helpers
- classify_roles: Offense / control / support roles of one spell
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from .classes import spellcasting_classes
from .constants import Prepared
from .models import Actor, SpellItem, User
from .settings import SettingKey

if TYPE_CHECKING:
    from .core import Core

logger = logging.getLogger("spell-book.party")

ROLE_OFFENSE = "offense"
ROLE_CONTROL = "control"
ROLE_SUPPORT = "support"
ROLES = (ROLE_OFFENSE, ROLE_CONTROL, ROLE_SUPPORT)

_CONTROL_TAGS = {"control", "crowd-control", "debuff", "restraint"}
_SUPPORT_TAGS = {"healing", "buff", "support", "protection", "utility"}


class Recommendation(str, Enum):
    HIGH_CONCENTRATION = "high-concentration"
    LOW_RITUALS = "low-rituals"
    LIMITED_DAMAGE_TYPES = "limited-damage-types"
    UNBALANCED_FOCUS = "unbalanced-focus"
    MISSING_OFFENSE = "missing-offense"
    MISSING_CONTROL = "missing-control"
    MISSING_SUPPORT = "missing-support"


def classify_roles(spell: SpellItem) -> set[str]:
    """Roles a spell covers, from its damage types, saves and tags."""
    tags = {t.lower() for t in spell.tags}
    roles = set()
    if spell.damage_types or "damage" in tags:
        roles.add(ROLE_OFFENSE)
    if tags & _CONTROL_TAGS or (spell.save and not spell.damage_types):
        roles.add(ROLE_CONTROL)
    if tags & _SUPPORT_TAGS:
        roles.add(ROLE_SUPPORT)
    return roles


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class PartyCaster(BaseModel):
    """One spellcasting class of a party member."""

    class_id: str
    class_name: str
    known: list[str] = Field(default_factory=list)
    prepared: list[str] = Field(default_factory=list)


class PartyMember(BaseModel):
    id: str
    name: str
    has_permission: bool
    token: str = ""
    focus: str | None = None
    spellcasters: list[PartyCaster] = Field(default_factory=list)
    total_known: int = 0
    total_prepared: int = 0


class PartySpell(BaseModel):
    uuid: str
    name: str
    level: int
    prepared_by: list[str] = Field(default_factory=list, description="Actor ids with the spell prepared")
    known_by: list[str] = Field(default_factory=list, description="Actor ids owning the spell")


class SharedSpell(BaseModel):
    uuid: str
    name: str
    actor_ids: list[str]


class SynergyAnalysis(BaseModel):
    total_spells: int = 0
    total_prepared: int = 0
    duplicates: list[SharedSpell] = Field(default_factory=list)
    concentration_spells: int = 0
    concentration_percentage: int = 0
    ritual_spells: int = 0
    damage_distribution: dict[str, int] = Field(default_factory=dict)
    school_distribution: dict[str, int] = Field(default_factory=dict)
    focus_distribution: dict[str, int] = Field(default_factory=dict)
    role_coverage: dict[str, int] = Field(default_factory=lambda: {role: 0 for role in ROLES})
    recommendations: list[Recommendation] = Field(default_factory=list)


class PartyComparison(BaseModel):
    actors: list[PartyMember] = Field(default_factory=list)
    spells_by_level: dict[int, dict[str, PartySpell]] = Field(default_factory=dict)
    available_focuses: list[dict[str, str]] = Field(default_factory=list)
    synergy: SynergyAnalysis = Field(default_factory=SynergyAnalysis)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class PartyAggregator:
    """Cross-actor spell comparison for party coordination."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def available_focuses(self) -> list[dict[str, str]]:
        return list(await self.core.settings.get(SettingKey.AVAILABLE_FOCUS_OPTIONS) or [])

    async def get_focus(self, actor_id: str) -> str | None:
        return await self.core.flags.get_focus(actor_id)

    async def set_focus(self, actor_id: str, focus_id: str | None) -> bool:
        """Assign a focus from the configured options, or clear it with None.

        Returns:
            False when the actor is missing, not owned by the current user,
            or the focus is unknown.
        """
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return False
        if not self.core.store.can_modify(actor):
            logger.warning(f"Cannot set focus on {actor.name}: permission denied")
            return False
        if focus_id is not None and focus_id not in {f.get("id") for f in await self.available_focuses()}:
            logger.warning(f"Unknown spellcasting focus {focus_id}")
            return False
        await self.core.flags.set_focus(actor_id, focus_id)
        logger.info(f"Spellcasting focus of {actor.name} set to {focus_id}")
        return True

    async def compare(self, actor_ids: Sequence[str], viewer_id: str | None = None) -> PartyComparison:
        """Party comparison as seen by ``viewer_id`` (default: the current user).

        Members the viewer cannot observe appear with ``has_permission=False``
        and no spell data; they are left out of the grid and the synergy.
        """
        viewer = await self.core.store.get_user(viewer_id) if viewer_id else None
        comparison = PartyComparison(available_focuses=await self.available_focuses())
        visible: list[tuple[Actor, PartyMember]] = []
        for actor_id in actor_ids:
            actor = await self.core.get_actor(actor_id)
            if actor is None:
                continue
            member = await self._member(actor, viewer)
            comparison.actors.append(member)
            if member.has_permission:
                visible.append((actor, member))

        for actor, member in visible:
            for caster in member.spellcasters:
                prepared = set(caster.prepared)
                for item in self._class_spells(actor, caster.class_id):
                    entry = comparison.spells_by_level.setdefault(item.level, {}).setdefault(
                        item.canonical_uuid, PartySpell(uuid=item.canonical_uuid, name=item.name, level=item.level)
                    )
                    if actor.id not in entry.known_by:
                        entry.known_by.append(actor.id)
                    if item.canonical_uuid in prepared and actor.id not in entry.prepared_by:
                        entry.prepared_by.append(actor.id)

        comparison.synergy = self._analyze(visible, comparison.spells_by_level)
        logger.debug(f"Party comparison built for {len(comparison.actors)} actors")
        return comparison

    async def _member(self, actor: Actor, viewer: User | None) -> PartyMember:
        focus = await self.get_focus(actor.id)
        member = PartyMember(
            id=actor.id,
            name=actor.name,
            has_permission=self.core.store.can_observe(actor, viewer),
            token=actor.img,
            focus=focus,
        )
        if not member.has_permission:
            return member
        for class_id, caster in spellcasting_classes(actor).items():
            items = self._class_spells(actor, class_id)
            known = sorted({item.canonical_uuid for item in items})
            prepared = sorted({item.canonical_uuid for item in items if item.prepared == Prepared.PREPARED})
            member.spellcasters.append(
                PartyCaster(class_id=class_id, class_name=caster.name, known=known, prepared=prepared)
            )
            member.total_known += len(known)
            member.total_prepared += len(prepared)
        return member

    @staticmethod
    def _class_spells(actor: Actor, class_id: str) -> list[SpellItem]:
        return [item for item in actor.spell_items() if item.source_class == class_id]

    def _analyze(
        self,
        visible: list[tuple[Actor, PartyMember]],
        spells_by_level: dict[int, dict[str, PartySpell]],
    ) -> SynergyAnalysis:
        analysis = SynergyAnalysis()
        damage: Counter[str] = Counter()
        schools: Counter[str] = Counter()
        focuses: Counter[str] = Counter()
        roles: Counter[str] = Counter({role: 0 for role in ROLES})
        prepared_items: dict[str, SpellItem] = {}

        for actor, member in visible:
            focuses[member.focus or "none"] += 1
            for item in actor.spell_items():
                if item.prepared == Prepared.PREPARED:
                    prepared_items.setdefault(item.canonical_uuid, item)

        for item in prepared_items.values():
            if item.is_concentration:
                analysis.concentration_spells += 1
            if item.is_ritual:
                analysis.ritual_spells += 1
            damage.update(item.damage_types)
            if item.school:
                schools[item.school] += 1
            roles.update(classify_roles(item))

        all_spells = [spell for level in spells_by_level.values() for spell in level.values()]
        analysis.total_spells = len(all_spells)
        analysis.total_prepared = len(prepared_items)
        analysis.duplicates = [
            SharedSpell(uuid=spell.uuid, name=spell.name, actor_ids=list(spell.prepared_by))
            for spell in sorted(all_spells, key=lambda s: (s.level, s.name))
            if len(spell.prepared_by) > 1
        ]
        if analysis.total_prepared:
            analysis.concentration_percentage = round(analysis.concentration_spells * 100 / analysis.total_prepared)
        analysis.damage_distribution = dict(damage)
        analysis.school_distribution = dict(schools)
        analysis.focus_distribution = dict(focuses)
        analysis.role_coverage = dict(roles)
        analysis.recommendations = recommendations(analysis, party_size=len(visible))
        return analysis


def recommendations(analysis: SynergyAnalysis, party_size: int) -> list[Recommendation]:
    """Recommendation codes for a synergy summary."""
    found = []
    if analysis.concentration_percentage > 70:
        found.append(Recommendation.HIGH_CONCENTRATION)
    if analysis.ritual_spells < 3 and analysis.total_spells > 20:
        found.append(Recommendation.LOW_RITUALS)
    if len(analysis.damage_distribution) < 4 and analysis.total_spells > 15:
        found.append(Recommendation.LIMITED_DAMAGE_TYPES)
    if len(analysis.focus_distribution) < 3 and party_size >= 3:
        found.append(Recommendation.UNBALANCED_FOCUS)
    if analysis.total_prepared:
        missing = {
            ROLE_OFFENSE: Recommendation.MISSING_OFFENSE,
            ROLE_CONTROL: Recommendation.MISSING_CONTROL,
            ROLE_SUPPORT: Recommendation.MISSING_SUPPORT,
        }
        found.extend(code for role, code in missing.items() if not analysis.role_coverage.get(role))
    return found
