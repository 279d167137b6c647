"""
HTML table form of a user's spell data.

Each user page carries its record twice: structured, in the page flags,
and as HTML tables in the page content so the data stays readable in the
host without this module. Older pages only have the tables; ``parse_tables``
reads them back for migration.

Table layout:
- ``spell-notes``: spell, notes
- ``spell-favorites`` (one per actor): spell, favorited (Yes/No)
- ``spell-usage`` (one per actor): spell, combat, exploration, total, last used
"""

from __future__ import annotations

import html
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from bs4 import BeautifulSoup

from .records import SpellUserData, UsageStats

logger = logging.getLogger("spell-book.userdata")

UNKNOWN_SPELL = "Unknown Spell"


def _format_time(ms: float | None) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _parse_time(text: str) -> float | None:
    text = text.strip()
    if not text or text == "-":
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unreadable last-used date {text!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def _int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def _table(table_type: str, headers: list[str], rows: list[str], actor_id: str | None = None) -> str:
    actor_attr = f' data-actor-id="{html.escape(actor_id)}"' if actor_id else ""
    head = "".join(f"<th>{html.escape(h)}</th>" for h in headers)
    return (
        f'<table class="spell-book-user-data" data-table-type="{table_type}"{actor_attr}>'
        f"<thead><tr>{head}</tr></thead><tbody>{''.join(rows)}</tbody></table>"
    )


def _row(uuid: str, cells: list[str]) -> str:
    tds = "".join(f"<td>{html.escape(c)}</td>" for c in cells)
    return f'<tr data-spell-uuid="{html.escape(uuid)}">{tds}</tr>'


def render_tables(
    user_name: str,
    spells: Mapping[str, SpellUserData],
    spell_names: Mapping[str, str],
    actor_names: Mapping[str, str],
) -> str:
    """Render a user's record as HTML tables.

    Args:
        user_name: Heading of the page.
        spells: Record entries keyed by canonical spell UUID.
        spell_names: Display names by UUID; missing ones show as unknown.
        actor_names: Display names of the actors with per-actor data.
    """
    parts = [f"<h1>{html.escape(user_name)}</h1>"]

    notes = [
        _row(uuid, [spell_names.get(uuid, UNKNOWN_SPELL), data.notes])
        for uuid, data in sorted(spells.items())
        if data.notes.strip()
    ]
    parts.append("<h2>Spell Notes</h2>")
    parts.append(_table("spell-notes", ["Spell", "Notes"], notes))

    actor_ids = sorted({actor_id for data in spells.values() for actor_id in data.by_actor})
    for actor_id in actor_ids:
        favorites = []
        usage = []
        for uuid, data in sorted(spells.items()):
            actor_data = data.by_actor.get(actor_id)
            if actor_data is None:
                continue
            name = spell_names.get(uuid, UNKNOWN_SPELL)
            if actor_data.favorited:
                favorites.append(_row(uuid, [name, "Yes"]))
            stats = actor_data.usage
            if stats.count > 0:
                usage.append(
                    _row(
                        uuid,
                        [name, str(stats.combat), str(stats.exploration), str(stats.count), _format_time(stats.last_used)],
                    )
                )
        actor_name = actor_names.get(actor_id, actor_id)
        parts.append(f"<h2>{html.escape(actor_name)}</h2>")
        parts.append(_table("spell-favorites", ["Spell", "Favorited"], favorites, actor_id))
        parts.append(
            _table("spell-usage", ["Spell", "Combat", "Exploration", "Total", "Last Used"], usage, actor_id)
        )
    return "".join(parts)


def parse_tables(content: str) -> dict[str, SpellUserData]:
    """Read a record back from rendered tables; unknown markup is ignored."""
    soup = BeautifulSoup(content or "", "html.parser")
    spells: dict[str, SpellUserData] = {}

    def rows(table):
        body = table.find("tbody") or table
        return [row for row in body.find_all("tr") if row.get("data-spell-uuid")]

    notes_table = soup.find("table", attrs={"data-table-type": "spell-notes"})
    if notes_table is not None:
        for row in rows(notes_table):
            cells = row.find_all("td")
            uuid = row["data-spell-uuid"]
            spells.setdefault(uuid, SpellUserData()).notes = cells[1].get_text().strip() if len(cells) > 1 else ""

    for table in soup.find_all("table", attrs={"data-table-type": "spell-favorites"}):
        actor_id = table.get("data-actor-id")
        if not actor_id:
            continue
        for row in rows(table):
            cells = row.find_all("td")
            favorited = len(cells) > 1 and cells[1].get_text().strip().lower() == "yes"
            spells.setdefault(row["data-spell-uuid"], SpellUserData()).for_actor(actor_id).favorited = favorited

    for table in soup.find_all("table", attrs={"data-table-type": "spell-usage"}):
        actor_id = table.get("data-actor-id")
        if not actor_id:
            continue
        for row in rows(table):
            cells = [td.get_text() for td in row.find_all("td")]
            cells += [""] * (5 - len(cells))
            stats = UsageStats(
                combat=_int(cells[1]),
                exploration=_int(cells[2]),
                count=_int(cells[3]),
                last_used=_parse_time(cells[4]),
            )
            spells.setdefault(row["data-spell-uuid"], SpellUserData()).for_actor(actor_id).usage = stats

    logger.debug(f"Parsed {len(spells)} spell entries from user data tables")
    return spells


def sanitize_notes(notes: str, max_length: int) -> str:
    """Plain text of ``notes`` with markup stripped, cut to ``max_length``."""
    text = BeautifulSoup(notes or "", "html.parser").get_text()
    return text.strip()[:max_length]
