"""
Records exchanged with the preparation engine.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from ..constants import Method
from ..errors import Reason


class PreparationState(str, Enum):
    NONE = "none"
    PREPARED = "prepared"
    PREPARED_BY_OTHER = "preparedByOther"
    ALWAYS = "always"
    GRANTED = "granted"
    SPECIAL = "special"
    CANTRIP_LOCKED = "cantripLocked"


class PreparationStatus(BaseModel):
    """How a spell stands for one class.

    Attributes:
        state: Classification result.
        prepared: Whether the spell counts as prepared for display.
        disabled: Whether the UI checkbox should be locked.
        by_class: Owning class for ``preparedByOther``.
        source_item: Id of the granting item for ``granted`` (resolve lazily).
        mode: Casting method for ``special``.
        item_id: Owned item the status was read from, if any.
        reason: Lock reason for ``cantripLocked`` and ``preparedByOther``.
    """

    state: PreparationState = PreparationState.NONE
    prepared: bool = False
    disabled: bool = False
    by_class: str | None = None
    source_item: str | None = None
    mode: Method | None = None
    item_id: str | None = None
    reason: Reason | None = None


class ChangeContext(BaseModel):
    """Window the user is acting in when toggling a spell."""

    is_level_up: bool = False
    is_long_rest: bool = False
    ui_count: int | None = Field(
        default=None,
        description="Live count of checked spells in the UI; read from items when omitted",
    )


class DesiredSpell(BaseModel):
    """One entry of a submitted per-class preparation state."""

    uuid: str
    name: str = ""
    level: int = Field(default=1, ge=0, le=9)
    is_prepared: bool
    was_prepared: bool = False
    is_ritual: bool = False
    preparation_mode: Method | None = None


class ChangeSet(BaseModel):
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)


class RejectedSpell(BaseModel):
    uuid: str
    name: str = ""
    reason: Reason


class SaveResult(BaseModel):
    """Change summary of one save, by spell name."""

    class_identifier: str
    cantrip_changes: ChangeSet = Field(default_factory=ChangeSet)
    spell_changes: ChangeSet = Field(default_factory=ChangeSet)
    rejected: list[RejectedSpell] = Field(default_factory=list)
    created: int = 0
    updated: int = 0
    deleted: int = 0


class LimitStatus(BaseModel):
    current: int
    max: int

    @property
    def is_over(self) -> bool:
        return self.current > self.max


class PreparationStats(BaseModel):
    current: int
    maximum: int
