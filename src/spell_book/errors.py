"""
Error types and structured results.

Only genuinely unexpected failures raise. Rule violations, missing
documents and malformed pages are reported as values: a ``Reason`` code
wrapped in ``Result`` or ``ChangeDecision``.
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class SpellBookError(Exception):
    """Base class for spell book failures."""


class DocumentStoreError(SpellBookError):
    """Raised when the host rejects a mutation."""


class PermissionDeniedError(SpellBookError):
    """Raised when a write is attempted on an actor the user does not own."""


class InvalidShapeError(SpellBookError):
    """Raised when host data cannot be validated into a typed record."""


class CustomListError(SpellBookError):
    """Raised when a custom spell list cannot be created or merged."""


class LoadoutError(SpellBookError):
    """Raised by loadout operations on bad input."""


class Reason(str, Enum):
    """Why a lookup failed or a change was refused."""

    # Lookup / host kinds
    NOT_FOUND = "NotFound"
    INVALID_SHAPE = "InvalidShape"
    PERMISSION_DENIED = "PermissionDenied"
    PACK_NOT_FOUND = "pack-not-found"
    NOT_IN_COMPENDIUM = "not-in-compendium"
    NOT_A_SPELL = "not-a-spell"

    # Leveled spell preparation
    CLASS_AT_MAXIMUM = "ClassAtMaximum"
    LOCKED_NO_SWAPPING = "LockedNoSwapping"
    LOCKED_OUTSIDE_LEVEL_UP = "LockedOutsideLevelUp"
    LOCKED_OUTSIDE_LONG_REST = "LockedOutsideLongRest"
    PREPARED_BY_OTHER = "PreparedByOther"
    NOT_ON_CLASS_LIST = "NotOnClassList"
    ABOVE_MAX_LEVEL = "AboveMaxLevel"
    NOT_IN_SPELLBOOK = "NotInSpellbook"
    IMMUTABLE = "Immutable"

    # Cantrips
    MAXIMUM_REACHED = "MaximumReached"
    LOCKED_LEGACY = "LockedLegacy"
    WIZARD_RULE_ONLY = "WizardRuleOnly"
    ONLY_ONE_SWAP = "OnlyOneSwap"
    MUST_UNLEARN_FIRST = "MustUnlearnFirst"

    # Wizard
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    ALREADY_IN_SPELLBOOK = "AlreadyInSpellbook"


class Result(BaseModel, Generic[T]):
    """Success value or failure reason."""

    ok: bool
    value: T | None = None
    reason: Reason | None = None
    detail: str = ""

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: Reason, detail: str = "") -> "Result[T]":
        return cls(ok=False, reason=reason, detail=detail)


class ChangeDecision(BaseModel):
    """Outcome of validating a single preparation toggle.

    Attributes:
        allowed: Whether the toggle may proceed.
        reason: Refusal code, or the informational code for a no-op.
        message: Over-limit warning surfaced to the user when the change is
            allowed under notify-GM enforcement.
        no_op: True when the toggle is accepted but changes nothing
            (always-prepared or granted copies).
    """

    allowed: bool
    reason: Reason | None = None
    message: str | None = None
    no_op: bool = False

    @classmethod
    def allow(cls, message: str | None = None) -> "ChangeDecision":
        return cls(allowed=True, message=message)

    @classmethod
    def deny(cls, reason: Reason) -> "ChangeDecision":
        return cls(allowed=False, reason=reason)


class FetchError(BaseModel):
    """Per-spell failure recorded by the spell index."""

    uuid: str
    reason: Reason
    detail: str = ""
