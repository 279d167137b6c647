"""
World builders shared by the spell-book tests.

A small dnd5e world: one spell pack, one journal pack holding the wizard,
cleric and Life Domain lists, the module's custom-list and user-data
packs, and three users (a GM and two players).
"""

from __future__ import annotations

from spell_book.constants import PACK_CUSTOM_LISTS, PACK_USER_DATA, Method, Prepared
from spell_book.models import (
    Actor,
    ClassItem,
    JournalEntry,
    JournalPage,
    Pack,
    Spell,
    SpellcastingConfig,
    SpellItem,
    SubclassItem,
    User,
    compendium_item_uuid,
    compendium_page_uuid,
)
from spell_book.store.memory import MemoryDocumentStore


SPELL_PACK = "dnd5e.spells"
LIST_PACK = "dnd5e.lists"
LIST_JOURNAL = "class-lists"


def spell_uuid(spell_id: str) -> str:
    return compendium_item_uuid(SPELL_PACK, spell_id)


def list_uuid(page_id: str) -> str:
    return compendium_page_uuid(LIST_PACK, LIST_JOURNAL, page_id)


FIRE_BOLT = spell_uuid("fire-bolt")
LIGHT = spell_uuid("light")
MAGE_HAND = spell_uuid("mage-hand")
PRESTIDIGITATION = spell_uuid("prestidigitation")
MAGIC_MISSILE = spell_uuid("magic-missile")
SHIELD = spell_uuid("shield")
DETECT_MAGIC = spell_uuid("detect-magic")
FIND_FAMILIAR = spell_uuid("find-familiar")
CURE_WOUNDS = spell_uuid("cure-wounds")
BLESS = spell_uuid("bless")
MISTY_STEP = spell_uuid("misty-step")
FIREBALL = spell_uuid("fireball")
WISH = spell_uuid("wish")

WIZARD_LIST = list_uuid("wizard-list")
CLERIC_LIST = list_uuid("cleric-list")
LIFE_LIST = list_uuid("life-list")

WIZARD_SPELLS = [
    FIRE_BOLT, LIGHT, MAGE_HAND, PRESTIDIGITATION, MAGIC_MISSILE, SHIELD,
    DETECT_MAGIC, FIND_FAMILIAR, MISTY_STEP, FIREBALL, WISH,
]
CLERIC_SPELLS = [LIGHT, CURE_WOUNDS, BLESS, DETECT_MAGIC]
LIFE_SPELLS = [BLESS, CURE_WOUNDS, MISTY_STEP]


# ─── World builders ────────────────────────────────────────────────────


def make_spells() -> list[Spell]:
    """The spells of the test compendium."""
    return [
        Spell(id="fire-bolt", uuid="", name="Fire Bolt", level=0, school="evo", damage_types=["fire"]),
        Spell(id="light", uuid="", name="Light", level=0, school="evo", tags=["utility"]),
        Spell(id="mage-hand", uuid="", name="Mage Hand", level=0, school="con", tags=["utility"]),
        Spell(id="prestidigitation", uuid="", name="Prestidigitation", level=0, school="trs"),
        Spell(id="magic-missile", uuid="", name="Magic Missile", level=1, school="evo", damage_types=["force"]),
        Spell(id="shield", uuid="", name="Shield", level=1, school="abj", tags=["protection"]),
        Spell(
            id="detect-magic", uuid="", name="Detect Magic", level=1, school="div",
            properties=["ritual", "concentration"],
        ),
        Spell(id="find-familiar", uuid="", name="Find Familiar", level=1, school="con", properties=["ritual"]),
        Spell(id="cure-wounds", uuid="", name="Cure Wounds", level=1, school="evo", tags=["healing"]),
        Spell(
            id="bless", uuid="", name="Bless", level=1, school="enc",
            properties=["concentration"], tags=["buff"],
        ),
        Spell(id="misty-step", uuid="", name="Misty Step", level=2, school="con"),
        Spell(
            id="fireball", uuid="", name="Fireball", level=3, school="evo",
            damage_types=["fire"], save=["dex"],
        ),
        Spell(id="wish", uuid="", name="Wish", level=9, school="con"),
    ]


def make_list_journal() -> JournalEntry:
    return JournalEntry(
        id=LIST_JOURNAL,
        name="Class Spell Lists",
        pages=[
            JournalPage(id="wizard-list", name="Wizard Spells", identifier="wizard", spells=WIZARD_SPELLS),
            JournalPage(id="cleric-list", name="Cleric Spells", identifier="cleric", spells=CLERIC_SPELLS),
            JournalPage(
                id="life-list", name="Life Domain Spells", identifier="life",
                list_type="subclass", spells=LIFE_SPELLS,
            ),
            JournalPage(id="notes", name="Notes", type="text", content="Not a spell list"),
        ],
    )


def make_store() -> MemoryDocumentStore:
    store = MemoryDocumentStore(
        users=[
            User(id="gm", name="Gamemaster", is_gm=True),
            User(id="player1", name="Alice", character_id="elara"),
            User(id="player2", name="Bob", character_id="brom"),
        ],
        current_user_id="gm",
    )
    store.add_pack(Pack(id=SPELL_PACK, label="Spells", document_type="Item", folder="D&D 5e"), make_spells())
    store.add_pack(
        Pack(id=LIST_PACK, label="Spell Lists", document_type="JournalEntry", folder="D&D 5e"),
        [make_list_journal()],
    )
    store.add_pack(Pack(id=PACK_CUSTOM_LISTS, label="Custom Spell Lists", document_type="JournalEntry"))
    store.add_pack(Pack(id=PACK_USER_DATA, label="User Spell Data", document_type="JournalEntry"))
    return store


def wizard_class(levels: int = 5, preparation_max: int = 8, cantrips: int = 4) -> ClassItem:
    return ClassItem(
        id="cls-wizard",
        name="Wizard",
        identifier="wizard",
        levels=levels,
        spellcasting=SpellcastingConfig(progression="full", ability="int", preparation_max=preparation_max),
        scale_values={"cantrips-known": {"value": cantrips}},
    )


def cleric_class(levels: int = 3, preparation_max: int = 5, cantrips: int = 3) -> ClassItem:
    return ClassItem(
        id="cls-cleric",
        name="Cleric",
        identifier="cleric",
        levels=levels,
        spellcasting=SpellcastingConfig(progression="full", ability="wis", preparation_max=preparation_max),
        scale_values={"cantrips": cantrips},
    )


def life_domain() -> SubclassItem:
    return SubclassItem(id="sub-life", name="Life Domain", identifier="life", class_identifier="cleric")


def owned(
    spell_id: str,
    source_class: str | None,
    prepared: Prepared = Prepared.PREPARED,
    method: Method = Method.SPELL,
    item_id: str | None = None,
    **extra,
) -> SpellItem:
    """An owned copy of a compendium spell."""
    source = next(s for s in make_spells() if s.id == spell_id)
    data = source.model_dump(exclude={"id", "uuid", "type"})
    data.update(extra)
    return SpellItem(
        **data,
        id=item_id or f"item-{spell_id}",
        source_class=source_class,
        method=method,
        prepared=prepared,
        compendium_source=spell_uuid(spell_id),
    )


def make_wizard(items: list | None = None, levels: int = 5, **class_kwargs) -> Actor:
    return Actor(
        id="elara",
        name="Elara",
        items=[wizard_class(levels=levels, **class_kwargs), *(items or [])],
        ownership={"player1": 3},
        currency={"gp": 100},
    )


def make_cleric(items: list | None = None, subclass: bool = False) -> Actor:
    extra = [life_domain()] if subclass else []
    return Actor(
        id="brom",
        name="Brom",
        items=[cleric_class(), *extra, *(items or [])],
        ownership={"player2": 3},
    )


def make_multiclass(items: list | None = None) -> Actor:
    return Actor(
        id="sable",
        name="Sable",
        items=[wizard_class(levels=3), cleric_class(levels=2), *(items or [])],
    )


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


