"""
In-process document store.

A complete host implementation kept entirely in memory. Embedders use it to
run the engines outside the virtual tabletop; tests use it as the host.
Worlds can be seeded from a YAML snapshot.

Flag writes follow the host's semantics: dots in keys are path separators,
including dots inside the keys of nested dict values. Anything stored under
a flag must therefore avoid dots in its keys (see ``spell_book.userdata.codec``).
"""

from __future__ import annotations

import copy
import html
import json
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError
from shortuuid import random as shortuuid_random

from ..constants import MODULE_ID
from ..errors import DocumentStoreError, InvalidShapeError
from ..models import (
    Actor,
    ChatMessage,
    ItemUpdate,
    JournalEntry,
    JournalPage,
    Pack,
    Spell,
    SpellItem,
    User,
    compendium_item_uuid,
    compendium_page_uuid,
    normalize_uuid,
    parse_uuid,
)
from .base import DocumentStore, NotifyLevel, PackDocument

logger = logging.getLogger("spell-book.store")


def expand_dotted(value: Any) -> Any:
    """Expand ``{"a.b": 1}`` into ``{"a": {"b": 1}}`` recursively."""
    if isinstance(value, list):
        return [expand_dotted(v) for v in value]
    if not isinstance(value, dict):
        return value
    out: dict[str, Any] = {}
    for key, raw in value.items():
        item = expand_dotted(raw)
        path = key.split(".") if isinstance(key, str) else [key]
        node = out
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        leaf = path[-1]
        if isinstance(item, dict) and isinstance(node.get(leaf), dict):
            _deep_merge(node[leaf], item)
        else:
            node[leaf] = item
    return out


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


def _get_path(data: dict[str, Any], key: str) -> Any:
    node: Any = data
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _set_path(data: dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _unset_path(data: dict[str, Any], key: str) -> None:
    parts = key.split(".")
    node: Any = data
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            return
        node = node[part]
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def _default_render(name: str, context: dict[str, Any]) -> str:
    payload = html.escape(json.dumps(context, default=str, sort_keys=True))
    return f'<div data-template="{html.escape(name)}">{payload}</div>'


# ---------------------------------------------------------------------------
# YAML world snapshot
# ---------------------------------------------------------------------------


class PackSnapshot(Pack):
    documents: list[dict[str, Any]] = Field(default_factory=list)


class WorldSnapshot(BaseModel):
    """Shape of a YAML world file."""

    settings: dict[str, Any] = Field(default_factory=dict)
    users: list[User] = Field(default_factory=list)
    current_user: str | None = None
    packs: list[PackSnapshot] = Field(default_factory=list)
    actors: list[Actor] = Field(default_factory=list)
    world_spells: list[Spell] = Field(default_factory=list)


class MemoryDocumentStore(DocumentStore):
    """Host implementation backed by dictionaries.

    Usage:
        store = MemoryDocumentStore()
        store.add_pack(Pack(id="dnd5e.spells", document_type="Item"), [spell, ...])
        store.add_actor(actor)
        core = Core(store)

    Test hooks:
        confirm_response: answer returned by ``confirm``.
        reject_mutations: make every item mutation raise ``DocumentStoreError``.
        index_reads / mutation_log / chat_log / notifications: recorded calls.
    """

    def __init__(self, users: Sequence[User] | None = None, current_user_id: str | None = None) -> None:
        self._actors: dict[str, Actor] = {}
        self._packs: dict[str, Pack] = {}
        self._documents: dict[str, dict[str, PackDocument]] = {}
        self._world_spells: dict[str, Spell] = {}
        self._settings: dict[str, Any] = {}
        gm = User(id="gm", name="Gamemaster", is_gm=True)
        self._users: dict[str, User] = {u.id: u for u in (users or [gm])}
        self._current_user_id = current_user_id or next(iter(self._users))
        self._templates: dict[str, Callable[[dict[str, Any]], str]] = {}

        self.confirm_response = True
        self.confirm_calls: list[tuple[str, str]] = []
        self.reject_mutations = False
        self.index_reads: list[str] = []
        self.mutation_log: list[tuple[str, str, Any]] = []
        self.chat_log: list[ChatMessage] = []
        self.notifications: list[tuple[str, str]] = []

    # -----------------------------------------------------------------
    # Seeding
    # -----------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: Path) -> "MemoryDocumentStore":
        """Build a store from a YAML world snapshot.

        Raises:
            InvalidShapeError: If the file does not validate.
        """
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        try:
            snapshot = WorldSnapshot.model_validate(raw)
        except ValidationError as e:
            raise InvalidShapeError(f"Invalid world snapshot {path}: {e}") from e
        return cls.from_snapshot(snapshot)

    @classmethod
    def from_snapshot(cls, snapshot: WorldSnapshot) -> "MemoryDocumentStore":
        store = cls(users=snapshot.users or None, current_user_id=snapshot.current_user)
        store._settings.update(snapshot.settings)
        for pack in snapshot.packs:
            meta = Pack.model_validate(pack.model_dump(exclude={"documents"}))
            try:
                if meta.document_type == "Item":
                    docs: list[PackDocument] = [Spell.model_validate({"uuid": "", **d}) for d in pack.documents]
                else:
                    docs = [JournalEntry.model_validate(d) for d in pack.documents]
            except ValidationError as e:
                raise InvalidShapeError(f"Invalid documents in pack {meta.id}: {e}") from e
            store.add_pack(meta, docs)
        for actor in snapshot.actors:
            store.add_actor(actor)
        for spell in snapshot.world_spells:
            store.add_world_spell(spell)
        logger.debug(
            f"Loaded world snapshot: {len(snapshot.packs)} packs, {len(snapshot.actors)} actors"
        )
        return store

    def add_pack(self, pack: Pack, documents: Sequence[PackDocument] = ()) -> None:
        self._packs[pack.id] = pack
        docs = self._documents.setdefault(pack.id, {})
        for doc in documents:
            doc = doc.model_copy(deep=True)
            if isinstance(doc, Spell):
                doc.uuid = doc.uuid or compendium_item_uuid(pack.id, doc.id)
            else:
                self._assign_journal_uuids(pack.id, doc)
            docs[doc.id] = doc

    def add_actor(self, actor: Actor) -> None:
        actor = actor.model_copy(deep=True)
        actor.uuid = actor.uuid or f"Actor.{actor.id}"
        for item in actor.items:
            item.uuid = item.uuid or f"Actor.{actor.id}.Item.{item.id}"
        self._actors[actor.id] = actor

    def add_world_spell(self, spell: Spell) -> None:
        spell = spell.model_copy(deep=True)
        spell.uuid = spell.uuid or f"Item.{spell.id}"
        self._world_spells[spell.id] = spell

    def register_template(self, name: str, renderer: Callable[[dict[str, Any]], str]) -> None:
        self._templates[name] = renderer

    def set_current_user(self, user_id: str) -> None:
        if user_id not in self._users:
            raise KeyError(user_id)
        self._current_user_id = user_id

    def add_user(self, user: User) -> None:
        self._users[user.id] = user

    @staticmethod
    def _assign_journal_uuids(pack_id: str, entry: JournalEntry) -> None:
        entry.uuid = entry.uuid or f"Compendium.{pack_id}.JournalEntry.{entry.id}"
        for page in entry.pages:
            page.uuid = page.uuid or compendium_page_uuid(pack_id, entry.id, page.id)

    def _require_actor(self, actor_id: str) -> Actor:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise DocumentStoreError(f"Actor {actor_id} not found")
        return actor

    def _check_mutable(self, op: str) -> None:
        if self.reject_mutations:
            raise DocumentStoreError(f"Host rejected {op}")

    # -----------------------------------------------------------------
    # Actors and owned items
    # -----------------------------------------------------------------

    async def get_actor(self, actor_id: str) -> Actor | None:
        actor = self._actors.get(actor_id)
        return actor.model_copy(deep=True) if actor else None

    async def list_actors(self) -> list[Actor]:
        return [a.model_copy(deep=True) for a in self._actors.values()]

    async def create_items(self, actor_id: str, items: Sequence[SpellItem]) -> list[SpellItem]:
        self._check_mutable("create_items")
        actor = self._require_actor(actor_id)
        created: list[SpellItem] = []
        for item in items:
            new_item = item.model_copy(deep=True)
            new_item.id = shortuuid_random(length=16)
            new_item.uuid = f"Actor.{actor_id}.Item.{new_item.id}"
            actor.items.append(new_item)
            created.append(new_item.model_copy(deep=True))
        self.mutation_log.append(("create", actor_id, [i.id for i in created]))
        return created

    async def update_items(self, actor_id: str, updates: Sequence[ItemUpdate]) -> None:
        self._check_mutable("update_items")
        actor = self._require_actor(actor_id)
        for update in updates:
            for index, item in enumerate(actor.items):
                if item.id != update.id:
                    continue
                data = item.model_dump()
                data.update(update.changes)
                try:
                    actor.items[index] = type(item).model_validate(data)
                except ValidationError as e:
                    raise DocumentStoreError(f"Invalid update for item {update.id}: {e}") from e
                break
            else:
                raise DocumentStoreError(f"Item {update.id} not found on actor {actor_id}")
        self.mutation_log.append(("update", actor_id, [u.id for u in updates]))

    async def delete_items(self, actor_id: str, item_ids: Sequence[str]) -> None:
        self._check_mutable("delete_items")
        actor = self._require_actor(actor_id)
        doomed = set(item_ids)
        actor.items = [item for item in actor.items if item.id not in doomed]
        self.mutation_log.append(("delete", actor_id, list(item_ids)))

    async def update_actor(self, actor_id: str, changes: dict[str, Any]) -> None:
        self._check_mutable("update_actor")
        actor = self._require_actor(actor_id)
        data = actor.model_dump()
        for key, value in changes.items():
            _set_path(data, key, value)
        self._actors[actor_id] = Actor.model_validate(data)
        self.mutation_log.append(("actor", actor_id, sorted(changes)))

    # -----------------------------------------------------------------
    # Flags
    # -----------------------------------------------------------------

    async def get_flag(self, actor_id: str, key: str) -> Any:
        actor = self._actors.get(actor_id)
        if actor is None:
            return None
        return copy.deepcopy(_get_path(actor.flags.get(MODULE_ID, {}), key))

    async def set_flag(self, actor_id: str, key: str, value: Any) -> None:
        actor = self._require_actor(actor_id)
        namespace = actor.flags.setdefault(MODULE_ID, {})
        expanded = expand_dotted(copy.deepcopy(value))
        existing = _get_path(namespace, key)
        if isinstance(expanded, dict) and isinstance(existing, dict):
            _deep_merge(existing, expanded)
        else:
            _set_path(namespace, key, expanded)
        self.mutation_log.append(("flag", actor_id, key))

    async def unset_flag(self, actor_id: str, key: str) -> None:
        actor = self._require_actor(actor_id)
        _unset_path(actor.flags.get(MODULE_ID, {}), key)
        self.mutation_log.append(("unflag", actor_id, key))

    # -----------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------

    async def get_setting(self, key: str) -> Any:
        return copy.deepcopy(self._settings.get(key))

    async def set_setting(self, key: str, value: Any) -> None:
        self._settings[key] = copy.deepcopy(value)

    # -----------------------------------------------------------------
    # Packs and journals
    # -----------------------------------------------------------------

    async def list_packs(self) -> list[Pack]:
        return [p.model_copy(deep=True) for p in self._packs.values()]

    async def get_pack(self, pack_id: str) -> Pack | None:
        pack = self._packs.get(pack_id)
        return pack.model_copy(deep=True) if pack else None

    async def get_index(self, pack_id: str, fields: Sequence[str] = ()) -> list[dict[str, Any]]:
        if pack_id not in self._packs:
            return []
        self.index_reads.append(pack_id)
        entries = []
        for doc in self._documents.get(pack_id, {}).values():
            data = doc.model_dump()
            entry: dict[str, Any] = {"_id": doc.id, "uuid": doc.uuid, "name": doc.name}
            if isinstance(doc, Spell):
                entry["type"] = doc.type
            else:
                entry["type"] = "JournalEntry"
                entry["folder"] = doc.folder
                entry["flags"] = copy.deepcopy(doc.flags)
            for field_name in fields:
                if field_name in data:
                    entry[field_name] = copy.deepcopy(data[field_name])
            entries.append(entry)
        return entries

    async def get_document(self, pack_id: str, document_id: str) -> PackDocument | None:
        doc = self._documents.get(pack_id, {}).get(document_id)
        return doc.model_copy(deep=True) if doc else None

    async def get_documents(self, pack_id: str) -> list[PackDocument]:
        return [d.model_copy(deep=True) for d in self._documents.get(pack_id, {}).values()]

    async def create_journal(self, pack_id: str, entry: JournalEntry) -> JournalEntry:
        if pack_id not in self._packs:
            raise DocumentStoreError(f"Pack {pack_id} not found")
        entry = entry.model_copy(deep=True)
        entry.id = entry.id or shortuuid_random(length=16)
        for page in entry.pages:
            page.id = page.id or shortuuid_random(length=16)
            page.flags = expand_dotted(page.flags)
        entry.flags = expand_dotted(entry.flags)
        self._assign_journal_uuids(pack_id, entry)
        self._documents.setdefault(pack_id, {})[entry.id] = entry
        self.mutation_log.append(("journal", pack_id, entry.id))
        return entry.model_copy(deep=True)

    async def create_page(self, journal_uuid: str, page: JournalPage) -> JournalPage:
        parsed = parse_uuid(journal_uuid)
        entry = self._documents.get(parsed["pack"] or "", {}).get(parsed["document_id"] or "")
        if not isinstance(entry, JournalEntry):
            raise DocumentStoreError(f"Journal {journal_uuid} not found")
        page = page.model_copy(deep=True)
        page.id = page.id or shortuuid_random(length=16)
        page.flags = expand_dotted(page.flags)
        page.uuid = compendium_page_uuid(parsed["pack"] or "", entry.id, page.id)
        entry.pages.append(page)
        self.mutation_log.append(("page", journal_uuid, page.id))
        return page.model_copy(deep=True)

    async def update_page(self, page_uuid: str, changes: dict[str, Any]) -> JournalPage:
        page = self._find_page(page_uuid)
        if page is None:
            raise DocumentStoreError(f"Page {page_uuid} not found")
        for key, value in changes.items():
            if key == "flags":
                _deep_merge(page.flags, expand_dotted(copy.deepcopy(value)))
            elif key == "spells":
                page.spells = sorted(set(value))
            else:
                setattr(page, key, copy.deepcopy(value))
        page.modified_time = time.time() * 1000
        self.mutation_log.append(("page_update", page_uuid, sorted(changes)))
        return page.model_copy(deep=True)

    async def delete_journal(self, pack_id: str, journal_id: str) -> None:
        self._documents.get(pack_id, {}).pop(journal_id, None)
        self.mutation_log.append(("journal_delete", pack_id, journal_id))

    def _find_page(self, page_uuid: str) -> JournalPage | None:
        parsed = parse_uuid(page_uuid)
        entry = self._documents.get(parsed["pack"] or "", {}).get(parsed["document_id"] or "")
        if not isinstance(entry, JournalEntry):
            return None
        for page in entry.pages:
            if page.id == parsed["page_id"]:
                return page
        return None

    async def from_uuid(self, uuid: str) -> Any:
        return self.from_uuid_sync(uuid)

    def from_uuid_sync(self, uuid: str) -> Any:
        parsed = parse_uuid(normalize_uuid(uuid))
        scope = parsed["scope"]
        if scope == "compendium":
            doc = self._documents.get(parsed["pack"] or "", {}).get(parsed["document_id"] or "")
            if doc is None:
                return None
            if parsed["page_id"] and isinstance(doc, JournalEntry):
                page = self._find_page(uuid)
                return page.model_copy(deep=True) if page else None
            return doc.model_copy(deep=True)
        if scope == "actor":
            actor = self._actors.get(parsed["actor_id"] or "")
            if actor is None:
                return None
            item = actor.get_item(parsed["document_id"] or "")
            return item.model_copy(deep=True) if item else None
        if scope == "world":
            if parsed["document_type"] == "Item":
                spell = self._world_spells.get(parsed["document_id"] or "")
                return spell.model_copy(deep=True) if spell else None
            if parsed["document_type"] == "Actor":
                actor = self._actors.get(parsed["document_id"] or "")
                return actor.model_copy(deep=True) if actor else None
        return None

    # -----------------------------------------------------------------
    # Users and UI
    # -----------------------------------------------------------------

    async def list_users(self) -> list[User]:
        return [u.model_copy() for u in self._users.values()]

    def current_user(self) -> User:
        return self._users[self._current_user_id].model_copy()

    async def render_template(self, name: str, context: dict[str, Any]) -> str:
        renderer = self._templates.get(name)
        if renderer is None:
            return _default_render(name, context)
        return renderer(context)

    async def confirm(self, title: str, content: str) -> bool:
        self.confirm_calls.append((title, content))
        return self.confirm_response

    async def create_chat_message(self, message: ChatMessage) -> None:
        self.chat_log.append(message.model_copy(deep=True))

    def notify(self, level: NotifyLevel, message: str) -> None:
        self.notifications.append((level, message))
