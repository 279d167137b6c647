"""
Shared identifiers and enumerations for the spell book core.

Module ids, pack ids, flag names and the small closed vocabularies
(casting methods, swap modes, ritual modes, rule sets, enforcement
behaviours) used across every component.
"""

from enum import Enum


MODULE_ID = "spell-book"
MODULE_VERSION = "1.4.0"

# Journal packs owned by the module
PACK_CUSTOM_LISTS = "spell-book.custom-spell-lists"
PACK_USER_DATA = "spell-book.user-spell-data"

# Folder names inside the custom list pack
FOLDER_CUSTOM = "Custom"
FOLDER_MERGED = "Merged"
FOLDER_MODIFIED = "Modified"
FOLDER_ACTOR_SPELLBOOKS = "Actor Spellbooks"

USER_DATA_JOURNAL_NAME = "User Spell Data"
USER_DATA_VERSION = "2.0"

WIZARD_CLASS = "wizard"
WIZARD_STARTING_SPELLS = 6
WIZARD_SPELLS_PER_LEVEL = 2

MAX_SPELL_LEVEL = 9

# Concurrent fromUuid lookups against the host
UUID_LOOKUP_CONCURRENCY = 5


class Flag(str, Enum):
    """Actor flag names under the module namespace."""
    CANTRIP_SWAP_TRACKING = "cantripSwapTracking"
    CLASS_RULES = "classRules"
    ENFORCEMENT_BEHAVIOR = "enforcementBehavior"
    LONG_REST_COMPLETED = "longRestCompleted"
    PREPARED_SPELLS_BY_CLASS = "preparedSpellsByClass"
    PREPARED_SPELLS = "preparedSpells"
    PREVIOUS_CANTRIP_MAX = "previousCantripMax"
    PREVIOUS_LEVEL = "previousLevel"
    RULE_SET_OVERRIDE = "ruleSetOverride"
    SPELL_LOADOUTS = "spellLoadouts"
    SPELLCASTING_FOCUS = "spellcastingFocus"
    WIZARD_COPIED_SPELLS = "wizardCopiedSpells"


class Method(str, Enum):
    """Casting method on an owned spell item."""
    SPELL = "spell"
    RITUAL = "ritual"
    PACT = "pact"
    INNATE = "innate"
    AT_WILL = "atwill"
    ALWAYS = "always"
    GRANTED = "granted"


# Methods the engine never rewrites
IMMUTABLE_METHODS = frozenset({Method.INNATE, Method.AT_WILL})

# Methods reported as "special" when found on another copy
SPECIAL_METHODS = frozenset({Method.INNATE, Method.AT_WILL, Method.PACT, Method.RITUAL})


class Prepared(int, Enum):
    """Values of the ``prepared`` field on an owned spell."""
    UNPREPARED = 0
    PREPARED = 1
    ALWAYS = 2


class SwapMode(str, Enum):
    NONE = "none"
    LEVEL_UP = "levelUp"
    LONG_REST = "longRest"


class RitualCasting(str, Enum):
    NONE = "none"
    PREPARED = "prepared"
    ALWAYS = "always"


class RuleSetName(str, Enum):
    LEGACY = "legacy"
    MODERN = "modern"


class Enforcement(str, Enum):
    """How strictly preparation limits are applied."""
    ENFORCED = "enforced"
    NOTIFY_GM = "notifyGM"
    UNENFORCED = "unenforced"


class SwapContext(str, Enum):
    """Window a swap-tracking record belongs to."""
    LEVEL_UP = "levelUp"
    LONG_REST = "longRest"


class ListType(str, Enum):
    """``system.type`` of a spell-list journal page."""
    CLASS = "class"
    SUBCLASS = "subclass"
    OTHER = "other"


class WizardSpellSource(str, Enum):
    COPIED = "copied"
    FREE = "free"
    SCROLL = "scroll"


class UsageContext(str, Enum):
    COMBAT = "combat"
    EXPLORATION = "exploration"


DEFAULT_FOCUSES = [
    {"id": "focus-damage", "name": "Offensive Mage", "icon": "fas fa-fire"},
    {"id": "focus-healer", "name": "Support", "icon": "fas fa-heart"},
    {"id": "focus-utility", "name": "Utility", "icon": "fas fa-tools"},
    {"id": "focus-crowd-control", "name": "Controller", "icon": "fas fa-hand-paper"},
    {"id": "focus-defensive", "name": "Tank", "icon": "fas fa-shield-alt"},
]

# Index fields projected for every spell fetch
SPELL_INDEX_FIELDS = (
    "name",
    "img",
    "type",
    "level",
    "school",
    "method",
    "prepared",
    "activation",
    "range",
    "duration",
    "properties",
    "materials",
    "activities",
    "description",
    "components",
    "source",
    "damage_types",
    "save",
    "tags",
)


class Template(str, Enum):
    """Template names rendered through the document store."""
    SPELL_LIST_CHANGE_CONFIRMATION = "spell-list-change-confirmation"
    GM_UPDATE_REPORT = "gm-update-report"
