"""
Typed records for the host documents the spell book core works with.

The host application stores loosely-shaped documents; everything the core
touches is validated into these pydantic models at the document store
boundary so the engines never deal with optional chains on raw data.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import IMMUTABLE_METHODS, ListType, Method, Prepared, RitualCasting, SwapMode


# ---------------------------------------------------------------------------
# UUID helpers
# ---------------------------------------------------------------------------


def parse_uuid(uuid: str) -> dict[str, str | None]:
    """Split a host UUID into its addressing parts.

    Supported shapes:
        Compendium.<package>.<pack>.Item.<id>
        Compendium.<package>.<pack>.<id>                (short form)
        Compendium.<package>.<pack>.JournalEntry.<id>.JournalEntryPage.<page>
        Actor.<actor>.Item.<item>
        Item.<id> / JournalEntry.<id> (world documents)

    Returns:
        Dict with ``scope`` ("compendium", "actor" or "world"), ``pack``,
        ``document_type``, ``document_id``, ``actor_id`` and ``page_id``.
    """
    parts = uuid.split(".")
    result: dict[str, str | None] = {
        "scope": None,
        "pack": None,
        "document_type": None,
        "document_id": None,
        "actor_id": None,
        "page_id": None,
    }
    if parts[0] == "Compendium" and len(parts) >= 4:
        result["scope"] = "compendium"
        result["pack"] = f"{parts[1]}.{parts[2]}"
        if len(parts) == 4:
            result["document_type"] = "Item"
            result["document_id"] = parts[3]
        else:
            result["document_type"] = parts[3]
            result["document_id"] = parts[4]
            if len(parts) >= 7 and parts[5] == "JournalEntryPage":
                result["page_id"] = parts[6]
    elif parts[0] == "Actor" and len(parts) >= 4:
        result["scope"] = "actor"
        result["actor_id"] = parts[1]
        result["document_type"] = parts[2]
        result["document_id"] = parts[3]
    elif len(parts) >= 2:
        result["scope"] = "world"
        result["document_type"] = parts[0]
        result["document_id"] = parts[1]
        if len(parts) >= 4 and parts[2] == "JournalEntryPage":
            result["page_id"] = parts[3]
    return result


def normalize_uuid(uuid: str) -> str:
    """Expand the short compendium form so both spellings compare equal."""
    parts = uuid.split(".")
    if parts[0] == "Compendium" and len(parts) == 4:
        return f"Compendium.{parts[1]}.{parts[2]}.Item.{parts[3]}"
    return uuid


def compendium_item_uuid(pack_id: str, document_id: str) -> str:
    return f"Compendium.{pack_id}.Item.{document_id}"


def compendium_page_uuid(pack_id: str, journal_id: str, page_id: str) -> str:
    return f"Compendium.{pack_id}.JournalEntry.{journal_id}.JournalEntryPage.{page_id}"


# ---------------------------------------------------------------------------
# Spells
# ---------------------------------------------------------------------------


class SpellFields(BaseModel):
    """Fields shared by compendium spells and owned spell items."""

    name: str
    img: str = ""
    level: int = Field(default=0, ge=0, le=9, description="Spell level, 0 for cantrips")
    school: str = ""
    properties: list[str] = Field(
        default_factory=list,
        description="Spell properties such as ritual, concentration, vocal, somatic, material",
    )
    activation: dict[str, Any] = Field(default_factory=dict)
    range: dict[str, Any] = Field(default_factory=dict)
    duration: dict[str, Any] = Field(default_factory=dict)
    materials: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    source: dict[str, Any] = Field(default_factory=dict)
    damage_types: list[str] = Field(default_factory=list)
    save: list[str] = Field(default_factory=list, description="Saving throw abilities")
    tags: list[str] = Field(default_factory=list, description="Free-form descriptors, e.g. healing")

    @property
    def is_cantrip(self) -> bool:
        return self.level == 0

    @property
    def is_ritual(self) -> bool:
        return "ritual" in self.properties

    @property
    def is_concentration(self) -> bool:
        return "concentration" in self.properties


class Spell(SpellFields):
    """A spell document living in a compendium pack or the world."""

    id: str
    uuid: str
    type: str = "spell"


class SpellItem(SpellFields):
    """A spell item owned by an actor."""

    type: Literal["spell"] = "spell"
    id: str
    uuid: str = ""
    source_class: str | None = Field(default=None, description="Class identifier owning this copy")
    method: Method = Method.SPELL
    prepared: Prepared = Prepared.UNPREPARED
    compendium_source: str | None = None
    cached_for: str | None = Field(default=None, description="Granting item back-reference")
    advancement_origin: str | None = None
    flags: dict[str, Any] = Field(default_factory=dict)

    @property
    def canonical_uuid(self) -> str:
        """Compendium source when present, else the item's own UUID."""
        return self.compendium_source or self.uuid

    @property
    def is_always_prepared(self) -> bool:
        return self.prepared == Prepared.ALWAYS

    @property
    def is_granted(self) -> bool:
        return bool(self.cached_for)

    @property
    def is_immutable(self) -> bool:
        """Always-prepared, granted, innate and at-will copies are never touched."""
        return (
            self.is_always_prepared
            or self.is_granted
            or self.method in IMMUTABLE_METHODS
        )

    @classmethod
    def from_spell(
        cls,
        source: SpellFields,
        source_class: str | None,
        method: Method,
        prepared: Prepared,
        flags: dict[str, Any] | None = None,
    ) -> "SpellItem":
        """Build an unsaved owned copy of a compendium or world spell.

        The host assigns ``id`` and ``uuid`` on creation.
        """
        data = {name: getattr(source, name) for name in SpellFields.model_fields}
        origin = source.canonical_uuid if isinstance(source, SpellItem) else getattr(source, "uuid", "")
        return cls(
            **data,
            id="",
            source_class=source_class,
            method=method,
            prepared=prepared,
            compendium_source=normalize_uuid(origin) if origin else None,
            flags=dict(flags or {}),
        )

    def matches(self, uuid: str) -> bool:
        """Whether this item is a copy of the given canonical UUID."""
        target = normalize_uuid(uuid)
        if self.compendium_source and normalize_uuid(self.compendium_source) == target:
            return True
        return bool(self.uuid) and self.uuid == uuid


# ---------------------------------------------------------------------------
# Classes
# ---------------------------------------------------------------------------


class SpellcastingConfig(BaseModel):
    """Spellcasting block of a class or subclass item."""

    progression: str = Field(default="none", description="full, half, third, pact, artificer, none or custom")
    type: str = Field(default="spell", description="Spellcasting model: spell, pact or leveled")
    ability: str | None = None
    preparation_max: int = Field(default=0, ge=0, description="Base prepared spell maximum")


class ClassItem(BaseModel):
    type: Literal["class"] = "class"
    id: str
    uuid: str = ""
    name: str
    identifier: str
    levels: int = Field(default=1, ge=1, le=20)
    spellcasting: SpellcastingConfig | None = None
    scale_values: dict[str, Any] = Field(default_factory=dict)
    compendium_source: str | None = None


class SubclassItem(BaseModel):
    type: Literal["subclass"] = "subclass"
    id: str
    uuid: str = ""
    name: str
    identifier: str
    class_identifier: str
    spellcasting: SpellcastingConfig | None = None
    scale_values: dict[str, Any] = Field(default_factory=dict)
    compendium_source: str | None = None


class OtherItem(BaseModel):
    """Any non-spell, non-class item. Scrolls are consumables of type scroll."""

    type: Literal["feat", "consumable", "equipment", "weapon", "loot", "tool", "background", "race", "container"]
    id: str
    uuid: str = ""
    name: str
    system: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_scroll(self) -> bool:
        return self.type == "consumable" and self.system.get("type") == "scroll"


ActorItem = Annotated[
    Union[SpellItem, ClassItem, SubclassItem, OtherItem],
    Field(discriminator="type"),
]


class Actor(BaseModel):
    """A character record: class items, spell items and module flags."""

    id: str
    uuid: str = ""
    name: str
    type: str = "character"
    img: str = ""
    items: list[ActorItem] = Field(default_factory=list)
    flags: dict[str, dict[str, Any]] = Field(default_factory=dict)
    ownership: dict[str, int] = Field(default_factory=dict, description="user id -> permission level 0..3")
    currency: dict[str, int] = Field(default_factory=dict)

    @property
    def level(self) -> int:
        return sum(item.levels for item in self.class_items())

    def get_item(self, item_id: str) -> ActorItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def spell_items(self) -> list[SpellItem]:
        return [item for item in self.items if isinstance(item, SpellItem)]

    def class_items(self) -> list[ClassItem]:
        return [item for item in self.items if isinstance(item, ClassItem)]

    def subclass_items(self) -> list[SubclassItem]:
        return [item for item in self.items if isinstance(item, SubclassItem)]

    def other_items(self) -> list[OtherItem]:
        return [item for item in self.items if isinstance(item, OtherItem)]

    def copies_of(self, uuid: str) -> list[SpellItem]:
        """All owned spell items whose canonical UUID is ``uuid``."""
        return [item for item in self.spell_items() if item.matches(uuid)]


# ---------------------------------------------------------------------------
# Journals, packs, users
# ---------------------------------------------------------------------------


class JournalPage(BaseModel):
    """A journal page. Pages of type ``spells`` are spell lists."""

    id: str
    uuid: str = ""
    name: str
    type: str = "spells"
    identifier: str = ""
    list_type: ListType | str = ListType.CLASS
    spells: list[str] = Field(default_factory=list)
    content: str = ""
    modified_time: float = Field(default=0, description="Epoch milliseconds of the last update")
    flags: dict[str, Any] = Field(default_factory=dict)
    ownership: dict[str, int] = Field(default_factory=dict)

    @property
    def is_spell_list(self) -> bool:
        return self.type == "spells"


class JournalEntry(BaseModel):
    id: str
    uuid: str = ""
    name: str
    folder: str | None = None
    pages: list[JournalPage] = Field(default_factory=list)
    flags: dict[str, Any] = Field(default_factory=dict)
    ownership: dict[str, int] = Field(default_factory=dict)


class Pack(BaseModel):
    """Compendium pack metadata."""

    id: str = Field(description="Collection id, e.g. dnd5e.spells")
    label: str = ""
    document_type: Literal["Item", "JournalEntry"] = "Item"
    folder: str | None = Field(default=None, description="Name of the top-level folder holding the pack")
    folders: list[str] = Field(default_factory=list, description="Folders inside the pack")


class User(BaseModel):
    id: str
    name: str
    is_gm: bool = False
    character_id: str | None = None


class ItemUpdate(BaseModel):
    """A patch against one owned item."""

    id: str
    changes: dict[str, Any]


class ChatMessage(BaseModel):
    content: str
    whisper: list[str] = Field(default_factory=list)
    flags: dict[str, Any] = Field(default_factory=dict)


class SpellListRef(BaseModel):
    """Lightweight description of a spell-list page found in a pack."""

    uuid: str
    name: str
    journal_name: str = ""
    pack: str
    pack_label: str = ""
    folder: str | None = None
    identifier: str = ""
    list_type: str = ListType.CLASS.value
    spells: list[str] = Field(default_factory=list)
    is_custom: bool = False
    is_merged: bool = False
    original_uuid: str | None = None


# ---------------------------------------------------------------------------
# Persisted flag records
# ---------------------------------------------------------------------------
#
# Stored camelCase in actor flags; field names stay snake_case in Python.


class ClassRules(BaseModel):
    """Per-class rule toggles stored under the ``classRules`` flag."""

    model_config = ConfigDict(populate_by_name=True)

    cantrip_swapping: SwapMode = Field(default=SwapMode.NONE, alias="cantripSwapping")
    spell_swapping: SwapMode = Field(default=SwapMode.NONE, alias="spellSwapping")
    ritual_casting: RitualCasting = Field(default=RitualCasting.NONE, alias="ritualCasting")
    show_cantrips: bool = Field(default=True, alias="showCantrips")
    custom_spell_list: list[str] = Field(
        default_factory=list,
        alias="customSpellList",
        description="UUIDs of override lists; several UUIDs are merged",
    )
    spell_preparation_bonus: int = Field(default=0, alias="spellPreparationBonus")
    cantrip_preparation_bonus: int = Field(default=0, alias="cantripPreparationBonus")
    force_wizard_mode: bool = Field(default=False, alias="forceWizardMode")
    spell_learning_cost_multiplier: int = Field(default=50, ge=0, alias="spellLearningCostMultiplier")
    spell_learning_time_multiplier: int = Field(default=2, ge=0, alias="spellLearningTimeMultiplier")

    @model_validator(mode="before")
    @classmethod
    def _coerce_custom_list(cls, data: Any) -> Any:
        """Older records hold a single UUID string (or an empty string)."""
        if isinstance(data, dict):
            for key in ("customSpellList", "custom_spell_list"):
                value = data.get(key)
                if isinstance(value, str):
                    data = dict(data)
                    data[key] = [value] if value else []
        return data

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SwapTracking(BaseModel):
    """Cantrip swap-window record at ``cantripSwapTracking.<class>.<context>``."""

    model_config = ConfigDict(populate_by_name=True)

    has_unlearned: bool = Field(default=False, alias="hasUnlearned")
    unlearned: str | None = None
    has_learned: bool = Field(default=False, alias="hasLearned")
    learned: str | None = None
    original_checked: list[str] = Field(default_factory=list, alias="originalChecked")

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CopiedSpell(BaseModel):
    """Entry of ``wizardCopiedSpells_<class>``."""

    model_config = ConfigDict(populate_by_name=True)

    spell_uuid: str = Field(alias="spellUuid")
    date_copied: float = Field(alias="dateCopied", description="Epoch milliseconds")
    cost: int = 0
    time_spent: int = Field(default=0, alias="timeSpent", description="Hours")
    from_scroll: bool = Field(default=False, alias="fromScroll")

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Loadout(BaseModel):
    """A named snapshot of one class's prepared spells."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    class_identifier: str | None = Field(default=None, alias="classIdentifier", description="None applies to every class")
    spell_configuration: list[str] = Field(default_factory=list, alias="spellConfiguration")
    created_at: float = Field(alias="createdAt")
    updated_at: float = Field(alias="updatedAt")

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
