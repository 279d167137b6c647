"""
World-level settings for the spell book core.

Settings live in the host's world setting store; this module gives them
names, types and defaults so callers never deal with missing values.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .constants import DEFAULT_FOCUSES, Enforcement, RuleSetName

if TYPE_CHECKING:
    from .store.base import DocumentStore

logger = logging.getLogger("spell-book")


class SettingKey(str, Enum):
    """Keys of the world settings read by the core."""
    RULE_SET = "spellcastingRuleSet"
    INDEXED_COMPENDIUMS = "indexedCompendiums"
    CUSTOM_SPELL_MAPPINGS = "customSpellListMappings"
    REGISTRY_ENABLED_LISTS = "registryEnabledLists"
    DEFAULT_ENFORCEMENT_BEHAVIOR = "defaultEnforcementBehavior"
    CANTRIP_SCALE_VALUES = "cantripScaleValues"
    SPELL_NOTES_LENGTH = "spellNotesMaxLength"
    AUTO_DELETE_UNPREPARED_SPELLS = "autoDeleteUnpreparedSpells"
    DEDUCT_SPELL_LEARNING_COST = "deductSpellLearningCost"
    ENABLE_SPELL_USAGE_TRACKING = "enableSpellUsageTracking"
    AVAILABLE_FOCUS_OPTIONS = "availableFocusOptions"
    LOGGING_LEVEL = "loggingLevel"


class WorldSettings(BaseModel):
    """Defaults for every world setting the core reads."""

    rule_set: RuleSetName = RuleSetName.LEGACY
    indexed_compendiums: dict[str, bool] = Field(
        default_factory=dict,
        description="pack id -> enabled; an empty map enables every pack",
    )
    custom_spell_mappings: dict[str, str] = Field(
        default_factory=dict,
        description="original list UUID -> replacement list UUID",
    )
    registry_enabled_lists: list[str] = Field(default_factory=list)
    default_enforcement_behavior: Enforcement = Enforcement.NOTIFY_GM
    cantrip_scale_values: str = "cantrips-known, cantrips"
    spell_notes_length: int = Field(default=240, ge=10, le=1000)
    auto_delete_unprepared_spells: bool = False
    deduct_spell_learning_cost: bool = False
    enable_spell_usage_tracking: bool = True
    available_focus_options: list[dict[str, str]] = Field(default_factory=lambda: [dict(f) for f in DEFAULT_FOCUSES])
    logging_level: int = Field(default=2, ge=0, le=3)


_FIELD_FOR_KEY: dict[SettingKey, str] = {
    SettingKey.RULE_SET: "rule_set",
    SettingKey.INDEXED_COMPENDIUMS: "indexed_compendiums",
    SettingKey.CUSTOM_SPELL_MAPPINGS: "custom_spell_mappings",
    SettingKey.REGISTRY_ENABLED_LISTS: "registry_enabled_lists",
    SettingKey.DEFAULT_ENFORCEMENT_BEHAVIOR: "default_enforcement_behavior",
    SettingKey.CANTRIP_SCALE_VALUES: "cantrip_scale_values",
    SettingKey.SPELL_NOTES_LENGTH: "spell_notes_length",
    SettingKey.AUTO_DELETE_UNPREPARED_SPELLS: "auto_delete_unprepared_spells",
    SettingKey.DEDUCT_SPELL_LEARNING_COST: "deduct_spell_learning_cost",
    SettingKey.ENABLE_SPELL_USAGE_TRACKING: "enable_spell_usage_tracking",
    SettingKey.AVAILABLE_FOCUS_OPTIONS: "available_focus_options",
    SettingKey.LOGGING_LEVEL: "logging_level",
}

_DEFAULTS = WorldSettings()


def default_for(key: SettingKey) -> Any:
    """Return the default value of a setting."""
    value = getattr(_DEFAULTS, _FIELD_FOR_KEY[key])
    if isinstance(value, (dict, list)):
        return type(value)(value)
    return value


class Settings:
    """Typed access to world settings through the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def get(self, key: SettingKey) -> Any:
        value = await self.store.get_setting(key.value)
        if value is None:
            return default_for(key)
        return value

    async def set(self, key: SettingKey, value: Any) -> None:
        if isinstance(value, Enum):
            value = value.value
        await self.store.set_setting(key.value, value)
        logger.debug(f"Setting {key.value} updated")

    async def load(self) -> WorldSettings:
        """Read every setting into a validated ``WorldSettings``."""
        data: dict[str, Any] = {}
        for key, field_name in _FIELD_FOR_KEY.items():
            value = await self.store.get_setting(key.value)
            if value is not None:
                data[field_name] = value
        return WorldSettings.model_validate(data)

    async def rule_set(self) -> RuleSetName:
        value = await self.get(SettingKey.RULE_SET)
        try:
            return RuleSetName(value)
        except ValueError:
            logger.warning(f"Unknown rule set '{value}', using legacy")
            return RuleSetName.LEGACY

    async def enforcement_default(self) -> Enforcement:
        value = await self.get(SettingKey.DEFAULT_ENFORCEMENT_BEHAVIOR)
        try:
            return Enforcement(value)
        except ValueError:
            return Enforcement.NOTIFY_GM

    async def cantrip_scale_keys(self) -> list[str]:
        """Cantrip scale-value keys in priority order."""
        raw = await self.get(SettingKey.CANTRIP_SCALE_VALUES)
        if isinstance(raw, (list, tuple)):
            return [str(k).strip() for k in raw if str(k).strip()]
        return [k.strip() for k in str(raw).split(",") if k.strip()]

    async def is_pack_enabled(self, pack_id: str) -> bool:
        """Empty index settings enable every pack; otherwise the entry must be true."""
        indexed = await self.get(SettingKey.INDEXED_COMPENDIUMS) or {}
        if not indexed:
            return True
        return indexed.get(pack_id) is True
