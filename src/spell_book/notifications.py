"""
GM change reports.

After a save under notify-GM enforcement, the per-class change summaries
are rendered through the ``gm-update-report`` template and whispered to
every GM user.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .constants import MODULE_ID, Template
from .models import ChatMessage
from .preparation.types import ChangeSet, LimitStatus

if TYPE_CHECKING:
    from .core import Core

logger = logging.getLogger("spell-book.notifications")

MESSAGE_TYPE_UPDATE_REPORT = "update-report"


class ClassChange(BaseModel):
    """Changes to one class in one save, with its limits after the save."""

    class_name: str
    cantrip_changes: ChangeSet = Field(default_factory=ChangeSet)
    spell_changes: ChangeSet = Field(default_factory=ChangeSet)
    cantrips: LimitStatus
    spells: LimitStatus

    @property
    def has_changes(self) -> bool:
        return self.cantrip_changes.has_changes or self.spell_changes.has_changes


def _summarize(changes: ChangeSet, limit: LimitStatus) -> dict[str, Any]:
    return {
        "added": list(changes.added),
        "removed": list(changes.removed),
        "addedNames": ", ".join(changes.added) or None,
        "removedNames": ", ".join(changes.removed) or None,
        "hasChanges": changes.has_changes,
        "current": limit.current,
        "max": limit.max,
        "isOver": limit.is_over,
        "overCount": max(0, limit.current - limit.max),
    }


def build_report(actor_name: str, class_changes: dict[str, ClassChange]) -> dict[str, Any] | None:
    """Template context for the report, or None when nothing changed."""
    classes = []
    for class_id, change in class_changes.items():
        if not change.has_changes:
            continue
        classes.append(
            {
                "classIdentifier": class_id,
                "className": change.class_name,
                "cantripChanges": _summarize(change.cantrip_changes, change.cantrips),
                "spellChanges": _summarize(change.spell_changes, change.spells),
                "overLimits": {
                    "cantrips": {
                        "current": change.cantrips.current,
                        "max": change.cantrips.max,
                        "isOver": change.cantrips.is_over,
                    },
                    "spells": {
                        "current": change.spells.current,
                        "max": change.spells.max,
                        "isOver": change.spells.is_over,
                    },
                },
            }
        )
    if not classes:
        return None
    return {"actorName": actor_name, "classChanges": classes}


class ChangeNotifier:
    """Whispers preparation change reports to GM users."""

    def __init__(self, core: Core) -> None:
        self.core = core

    async def send(self, actor_name: str, class_changes: dict[str, ClassChange]) -> ChatMessage | None:
        """Render and whisper a report.

        Args:
            actor_name: Display name of the actor that changed.
            class_changes: Change summary per class identifier.

        Returns:
            The message sent, or None when no class changed or no GM exists.
        """
        context = build_report(actor_name, class_changes)
        if context is None:
            logger.debug(f"No preparation changes to report for {actor_name}")
            return None
        gm_ids = await self.core.store.gm_user_ids()
        if not gm_ids:
            logger.warning(f"No GM user to receive the update report for {actor_name}")
            return None
        content = await self.core.store.render_template(Template.GM_UPDATE_REPORT.value, context)
        message = ChatMessage(
            content=content,
            whisper=gm_ids,
            flags={MODULE_ID: {"messageType": MESSAGE_TYPE_UPDATE_REPORT}},
        )
        await self.core.store.create_chat_message(message)
        logger.info(f"Sent spell update report for {actor_name} to {len(gm_ids)} GM(s)")
        return message
