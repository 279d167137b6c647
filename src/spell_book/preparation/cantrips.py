"""
Cantrip limits and swap windows.

A class may swap cantrips only inside a window (level-up or long rest, per
its ``cantripSwapping`` rule). Within one window it may unlearn at most one
cantrip it started the window with and learn at most one it did not; either
choice is undone by toggling the same cantrip back.

Below its maximum a class may learn a cantrip whatever its swap mode; inside
an open window the one-learn limit still applies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..classes import get_spellcasting_class, spellcasting_classes
from ..constants import Enforcement, Prepared, SwapContext, SwapMode
from ..errors import ChangeDecision, Reason
from ..models import Actor, SwapTracking, normalize_uuid
from .types import ChangeContext

if TYPE_CHECKING:
    from ..core import Core

logger = logging.getLogger("spell-book.cantrips")


def prepared_cantrips(actor: Actor, class_id: str) -> list[str]:
    """Canonical UUIDs of the class's prepared (not always-prepared) cantrips."""
    return sorted(
        normalize_uuid(item.canonical_uuid)
        for item in actor.spell_items()
        if item.level == 0 and item.prepared == Prepared.PREPARED and item.source_class == class_id
    )


class CantripEngine:
    """Cantrip maxima, counts, swap validation and swap tracking."""

    def __init__(self, core: Core) -> None:
        self.core = core
        self._max_cache: dict[tuple[str, str], int] = {}

    def clear_cache(self, actor_id: str | None = None) -> None:
        if actor_id is None:
            self._max_cache.clear()
            return
        for key in [k for k in self._max_cache if k[0] == actor_id]:
            del self._max_cache[key]

    # -----------------------------------------------------------------
    # Limits
    # -----------------------------------------------------------------

    async def max_cantrips(self, actor_id: str, class_id: str) -> int:
        """First defined cantrip scale value plus the class bonus; 0 when hidden."""
        cache_key = (actor_id, class_id)
        if cache_key in self._max_cache:
            return self._max_cache[cache_key]
        actor = await self.core.get_actor(actor_id)
        caster = get_spellcasting_class(actor, class_id) if actor else None
        if caster is None:
            return 0
        scale_keys = await self.core.settings.cantrip_scale_keys()
        base = self.core.progression.base_cantrips(caster, scale_keys)
        rules = await self.core.rules.get_class_rules(actor_id, caster.identifier)
        if base == 0 or not rules.show_cantrips:
            result = 0
        else:
            result = max(0, base + rules.cantrip_preparation_bonus)
        self._max_cache[cache_key] = result
        logger.debug(f"Max cantrips for {class_id} on {actor_id}: {result}")
        return result

    async def total_max_cantrips(self, actor_id: str) -> int:
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        return sum([await self.max_cantrips(actor_id, class_id) for class_id in spellcasting_classes(actor)])

    async def current_count(self, actor_id: str, class_id: str | None = None) -> int:
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return 0
        return sum(
            1
            for item in actor.spell_items()
            if item.level == 0
            and item.prepared == Prepared.PREPARED
            and (class_id is None or item.source_class == class_id)
        )

    async def can_be_leveled_up(self, actor_id: str) -> bool:
        """Whether level or total cantrip maximum grew since the last completed level-up."""
        actor = await self.core.get_actor(actor_id)
        if actor is None:
            return False
        previous_level = await self.core.flags.get_previous_level(actor_id)
        previous_max = await self.core.flags.get_previous_cantrip_max(actor_id)
        current_level = actor.level
        current_max = await self.total_max_cantrips(actor_id)
        if previous_level == 0:
            return current_level > 0
        return current_level > previous_level or current_max > previous_max

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------

    async def can_change(
        self,
        actor_id: str,
        class_id: str,
        uuid: str,
        is_checked: bool,
        context: ChangeContext,
    ) -> ChangeDecision:
        """Validate checking or unchecking a cantrip for a class."""
        uuid = normalize_uuid(uuid)
        settings = await self.core.rules.get_settings(actor_id, class_id)

        if settings.behavior in (Enforcement.UNENFORCED, Enforcement.NOTIFY_GM):
            message = None
            if settings.behavior == Enforcement.NOTIFY_GM and is_checked:
                current, maximum = await self._count_and_max(actor_id, class_id, context)
                if current >= maximum:
                    message = f"Over limit: {current + 1}/{maximum} cantrips"
                    self.core.store.notify("info", message)
            return ChangeDecision.allow(message)

        mode = settings.rules.cantrip_swapping
        tracking = await self._open_tracking(actor_id, class_id, mode, context)
        original = tracking is not None and uuid in tracking.original_checked

        if is_checked:
            current, maximum = await self._count_and_max(actor_id, class_id, context)
            if tracking is not None and not original:
                if tracking.has_learned and tracking.learned != uuid:
                    return ChangeDecision.deny(Reason.ONLY_ONE_SWAP)
                if current >= maximum and not tracking.has_unlearned and tracking.learned != uuid:
                    return ChangeDecision.deny(Reason.MUST_UNLEARN_FIRST)
            if current >= maximum:
                logger.debug(f"Cantrip maximum reached for {class_id}: {current}/{maximum}")
                return ChangeDecision.deny(Reason.MAXIMUM_REACHED)
            return ChangeDecision.allow()

        if mode == SwapMode.NONE:
            return ChangeDecision.deny(Reason.LOCKED_LEGACY)
        if mode == SwapMode.LEVEL_UP and not context.is_level_up:
            return ChangeDecision.deny(Reason.LOCKED_OUTSIDE_LEVEL_UP)
        if mode == SwapMode.LONG_REST:
            if not await self.core.wizard.is_wizard_class(actor_id, class_id):
                return ChangeDecision.deny(Reason.WIZARD_RULE_ONLY)
            if not context.is_long_rest:
                return ChangeDecision.deny(Reason.LOCKED_OUTSIDE_LONG_REST)

        if tracking is not None and original and tracking.has_unlearned and tracking.unlearned != uuid:
            return ChangeDecision.deny(Reason.ONLY_ONE_SWAP)
        return ChangeDecision.allow()

    async def _open_tracking(
        self, actor_id: str, class_id: str, mode: SwapMode, context: ChangeContext
    ) -> SwapTracking | None:
        """Tracking of the swap window open for the class, if any."""
        window = self._window_for(mode, context)
        if window is None:
            return None
        if window == SwapContext.LONG_REST and not await self.core.wizard.is_wizard_class(actor_id, class_id):
            return None
        tracking = await self.core.flags.get_swap_tracking(actor_id, class_id, window)
        if tracking is None:
            tracking = await self._fresh_tracking(actor_id, class_id)
        return tracking

    async def _fresh_tracking(self, actor_id: str, class_id: str) -> SwapTracking:
        actor = await self.core.get_actor(actor_id)
        return SwapTracking(original_checked=prepared_cantrips(actor, class_id) if actor else [])

    async def _count_and_max(self, actor_id: str, class_id: str, context: ChangeContext) -> tuple[int, int]:
        current = context.ui_count if context.ui_count is not None else await self.current_count(actor_id, class_id)
        return current, await self.max_cantrips(actor_id, class_id)

    @staticmethod
    def _window_for(mode: SwapMode, context: ChangeContext) -> SwapContext | None:
        if mode == SwapMode.LEVEL_UP and context.is_level_up:
            return SwapContext.LEVEL_UP
        if mode == SwapMode.LONG_REST and context.is_long_rest:
            return SwapContext.LONG_REST
        return None

    # -----------------------------------------------------------------
    # Swap tracking
    # -----------------------------------------------------------------

    async def track_change(
        self,
        actor_id: str,
        class_id: str,
        uuid: str,
        is_checked: bool,
        context: ChangeContext,
    ) -> SwapTracking | None:
        """Record a cantrip toggle inside the open swap window.

        The window record is created on first use with the class's
        currently prepared cantrips as ``originalChecked``.

        Returns:
            The updated record, or None when no window applies.
        """
        uuid = normalize_uuid(uuid)
        rules = await self.core.rules.get_class_rules(actor_id, class_id)
        mode = rules.cantrip_swapping
        if mode == SwapMode.NONE:
            return None
        if mode == SwapMode.LONG_REST and not await self.core.wizard.is_wizard_class(actor_id, class_id):
            return None
        window = self._window_for(mode, context)
        if window is None:
            return None

        tracking = await self.core.flags.get_swap_tracking(actor_id, class_id, window)
        if tracking is None:
            tracking = await self._fresh_tracking(actor_id, class_id)

        original = uuid in tracking.original_checked
        if not is_checked and original:
            if tracking.unlearned == uuid:
                tracking.has_unlearned, tracking.unlearned = False, None
            else:
                tracking.has_unlearned, tracking.unlearned = True, uuid
        elif is_checked and not original:
            if tracking.learned == uuid:
                tracking.has_learned, tracking.learned = False, None
            else:
                tracking.has_learned, tracking.learned = True, uuid
        elif not is_checked and tracking.learned == uuid:
            tracking.has_learned, tracking.learned = False, None
        elif is_checked and tracking.unlearned == uuid:
            tracking.has_unlearned, tracking.unlearned = False, None

        await self.core.flags.set_swap_tracking(actor_id, class_id, window, tracking)
        logger.debug(f"Tracked cantrip change {uuid} ({'on' if is_checked else 'off'}) for {class_id}")
        return tracking

    async def complete_swap(self, actor_id: str, is_level_up: bool) -> None:
        """Close the window of one kind for every class.

        Completing a level-up also writes the level and cantrip-maximum
        snapshot forward.
        """
        context = SwapContext.LEVEL_UP if is_level_up else SwapContext.LONG_REST
        for class_id in await self.core.flags.tracked_classes(actor_id):
            await self.core.flags.clear_swap_tracking(actor_id, class_id, context)
        if is_level_up:
            actor = await self.core.get_actor(actor_id)
            if actor is not None:
                await self.core.flags.set_previous_level(actor_id, actor.level)
                await self.core.flags.set_previous_cantrip_max(actor_id, await self.total_max_cantrips(actor_id))
        logger.debug(f"Completed {context.value} cantrip swap on {actor_id}")

    async def complete_level_up(self, actor_id: str) -> None:
        await self.complete_swap(actor_id, is_level_up=True)

    async def reset_swap_tracking(self, actor_id: str) -> None:
        """Drop every long-rest window record."""
        for class_id in await self.core.flags.tracked_classes(actor_id):
            await self.core.flags.clear_swap_tracking(actor_id, class_id, SwapContext.LONG_REST)
