"""
Tests for per-user spell data: notes, favorites, tables and migration.
"""

import pytest

from spell_book.constants import MODULE_ID, PACK_USER_DATA, USER_DATA_JOURNAL_NAME, USER_DATA_VERSION
from spell_book.models import JournalEntry, JournalPage
from spell_book.settings import SettingKey
from spell_book.userdata.codec import decode_key, encode_key
from spell_book.userdata.records import ActorSpellData, SpellUserData, UsageStats, UserRecord
from spell_book.userdata.tables import parse_tables, render_tables, sanitize_notes

from .helpers import FIRE_BOLT, MAGIC_MISSILE, SHIELD, make_wizard, owned

pytestmark = pytest.mark.anyio


def page_updates(store) -> int:
    return sum(1 for entry in store.mutation_log if entry[0] == "page_update")


# ─── Codec and records ─────────────────────────────────────────────────


class TestCodec:
    def test_keys_have_no_dots(self):
        key = encode_key(FIRE_BOLT)

        assert "." not in key
        assert decode_key(key) == FIRE_BOLT

    def test_record_flags_use_encoded_keys(self):
        record = UserRecord(user_id="player1", spells={FIRE_BOLT: SpellUserData(notes="hot")})

        flags = record.to_flags()

        assert flags["dataVersion"] == USER_DATA_VERSION
        assert list(flags["spellData"]) == [encode_key(FIRE_BOLT)]
        assert UserRecord.from_flags("player1", flags).spells[FIRE_BOLT].notes == "hot"


class TestTables:
    def test_sanitize_strips_markup_and_truncates(self):
        assert sanitize_notes("<b>Great</b> against <i>groups</i>  ", 240) == "Great against groups"
        assert sanitize_notes("abcdefghijklmnop", 10) == "abcdefghij"

    def test_parse_reads_rendered_tables(self):
        spells = {
            FIRE_BOLT: SpellUserData(
                notes="Old note",
                by_actor={
                    "elara": ActorSpellData(
                        favorited=True,
                        usage=UsageStats(count=3, combat=2, exploration=1, last_used=1_700_000_000_000),
                    )
                },
            )
        }
        content = render_tables("Alice", spells, {FIRE_BOLT: "Fire Bolt"}, {"elara": "Elara"})

        parsed = parse_tables(content)

        data = parsed[FIRE_BOLT]
        assert data.notes == "Old note"
        assert data.by_actor["elara"].favorited
        usage = data.by_actor["elara"].usage
        assert (usage.count, usage.combat, usage.exploration) == (3, 2, 1)
        assert usage.last_used == 1_700_000_000_000

    def test_parse_ignores_unknown_markup(self):
        assert parse_tables("<p>Nothing to see</p><table><tr><td>x</td></tr></table>") == {}


# ─── Journal-backed store ──────────────────────────────────────────────


class TestNotes:
    """Per-user notes in the user data journal."""

    async def test_reading_creates_nothing(self, core, store):
        """Reads never create the journal or a page."""
        view = await core.user_data.get_spell(FIRE_BOLT)

        assert view.notes == ""
        assert await store.get_documents(PACK_USER_DATA) == []

    async def test_first_write_creates_journal_and_page(self, core, store):
        assert await core.user_data.set_notes(FIRE_BOLT, "<p>Use on <b>swarms</b></p>")

        [journal] = await store.get_documents(PACK_USER_DATA)
        assert journal.name == USER_DATA_JOURNAL_NAME
        [page] = journal.pages
        assert page.name == "Gamemaster"
        assert page.flags[MODULE_ID]["userId"] == "gm"
        assert "Fire Bolt" in page.content
        assert (await core.user_data.get_spell(FIRE_BOLT)).notes == "Use on swarms"

    async def test_notes_length_setting(self, core):
        await core.settings.set(SettingKey.SPELL_NOTES_LENGTH, 10)

        await core.user_data.set_notes(FIRE_BOLT, "abcdefghijklmnop")

        assert (await core.user_data.get_spell(FIRE_BOLT)).notes == "abcdefghij"

    async def test_owned_copies_share_notes_with_their_source(self, core, store):
        store.add_actor(make_wizard([owned("fire-bolt", "wizard")]))

        await core.user_data.set_notes("Actor.elara.Item.item-fire-bolt", "same spell")

        assert (await core.user_data.get_spell(FIRE_BOLT)).notes == "same spell"

    async def test_users_are_kept_apart(self, core):
        await core.user_data.set_notes(FIRE_BOLT, "gm note")
        await core.user_data.set_notes(FIRE_BOLT, "alice note", user_id="player1")

        assert (await core.user_data.get_spell(FIRE_BOLT)).notes == "gm note"
        assert (await core.user_data.get_spell(FIRE_BOLT, user_id="player1")).notes == "alice note"


class TestFavorites:
    async def test_set_favorite(self, core):
        await core.user_data.set_favorite(FIRE_BOLT, True, "elara", user_id="player1")

        assert await core.user_data.favorites("elara", user_id="player1") == {FIRE_BOLT}
        view = await core.user_data.get_spell(FIRE_BOLT, user_id="player1", actor_id="elara")
        assert view.favorited

    async def test_sync_writes_once(self, core, store):
        """A favorites sync diffs the whole set and writes once."""
        await core.user_data.set_favorite(FIRE_BOLT, True, "elara")
        before = page_updates(store)

        changed = await core.user_data.sync_actor_favorites("elara", [MAGIC_MISSILE, SHIELD])

        assert changed == 3
        assert page_updates(store) == before + 1
        assert await core.user_data.favorites("elara") == {MAGIC_MISSILE, SHIELD}

    async def test_sync_without_changes_does_not_write(self, core, store):
        await core.user_data.set_favorite(FIRE_BOLT, True, "elara")
        before = page_updates(store)

        assert await core.user_data.sync_actor_favorites("elara", [FIRE_BOLT]) == 0
        assert page_updates(store) == before


class TestMigration:
    """Migrating pages that only hold rendered tables."""

    async def test_table_only_page_is_migrated(self, core, store):
        spells = {
            FIRE_BOLT: SpellUserData(
                notes="Old note",
                by_actor={"elara": ActorSpellData(favorited=True, usage=UsageStats(count=2, combat=2))},
            )
        }
        await store.create_journal(
            PACK_USER_DATA,
            JournalEntry(
                id="",
                name=USER_DATA_JOURNAL_NAME,
                flags={MODULE_ID: {"isUserSpellDataJournal": True}},
                pages=[
                    JournalPage(
                        id="",
                        name="Alice",
                        type="text",
                        content=render_tables("Alice", spells, {FIRE_BOLT: "Fire Bolt"}, {}),
                        flags={MODULE_ID: {"userId": "player1"}},
                    )
                ],
            ),
        )

        record = await core.user_data.get_record("player1")

        assert record.data_version == USER_DATA_VERSION
        assert record.spells[FIRE_BOLT].notes == "Old note"
        assert record.spells[FIRE_BOLT].by_actor["elara"].usage.combat == 2
        [journal] = await store.get_documents(PACK_USER_DATA)
        assert journal.pages[0].flags[MODULE_ID]["dataVersion"] == USER_DATA_VERSION

    async def test_missing_pack_cannot_write(self, core, store):
        store._packs.pop(PACK_USER_DATA)

        assert not await core.user_data.set_notes(FIRE_BOLT, "lost")
