"""
Abstract document store: the only coupling between the core and its host.

Every host I/O call is an ``await`` point. Implementations validate raw host
documents into the typed records of ``spell_book.models`` before handing
them to the engines, and return snapshots (copies) so callers never mutate
host state by accident.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Literal

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
)


# Permission levels on actor ownership maps
PERMISSION_NONE = 0
PERMISSION_LIMITED = 1
PERMISSION_OBSERVER = 2
PERMISSION_OWNER = 3

NotifyLevel = Literal["info", "warn", "error", "success"]

PackDocument = Spell | JournalEntry


class DocumentStore(ABC):
    """Uniform async access to actors, items, packs, journals, settings and flags."""

    # -----------------------------------------------------------------
    # Actors and owned items
    # -----------------------------------------------------------------

    @abstractmethod
    async def get_actor(self, actor_id: str) -> Actor | None:
        """Snapshot of an actor, or None."""

    @abstractmethod
    async def list_actors(self) -> list[Actor]:
        """Snapshots of every actor in the world."""

    @abstractmethod
    async def create_items(self, actor_id: str, items: Sequence[SpellItem]) -> list[SpellItem]:
        """Create owned items; ids and UUIDs are assigned by the host."""

    @abstractmethod
    async def update_items(self, actor_id: str, updates: Sequence[ItemUpdate]) -> None:
        """Patch owned items in one batch."""

    @abstractmethod
    async def delete_items(self, actor_id: str, item_ids: Sequence[str]) -> None:
        """Delete owned items in one batch."""

    @abstractmethod
    async def update_actor(self, actor_id: str, changes: dict[str, Any]) -> None:
        """Patch top-level actor data such as currency."""

    # -----------------------------------------------------------------
    # Flags (namespaced per-actor key/value storage)
    # -----------------------------------------------------------------

    @abstractmethod
    async def get_flag(self, actor_id: str, key: str) -> Any:
        """Read a module flag. Dots in ``key`` address nested values."""

    @abstractmethod
    async def set_flag(self, actor_id: str, key: str, value: Any) -> None:
        """Write a module flag. Dots in ``key`` and in nested dict keys are path separators."""

    @abstractmethod
    async def unset_flag(self, actor_id: str, key: str) -> None:
        """Remove a module flag."""

    # -----------------------------------------------------------------
    # World settings
    # -----------------------------------------------------------------

    @abstractmethod
    async def get_setting(self, key: str) -> Any:
        """Return the stored value or None when unset."""

    @abstractmethod
    async def set_setting(self, key: str, value: Any) -> None:
        ...

    # -----------------------------------------------------------------
    # Compendium packs and journals
    # -----------------------------------------------------------------

    @abstractmethod
    async def list_packs(self) -> list[Pack]:
        ...

    @abstractmethod
    async def get_pack(self, pack_id: str) -> Pack | None:
        ...

    @abstractmethod
    async def get_index(self, pack_id: str, fields: Sequence[str] = ()) -> list[dict[str, Any]]:
        """Index entries of a pack with ``_id``, ``uuid``, ``type``, ``name`` plus the projected fields."""

    @abstractmethod
    async def get_document(self, pack_id: str, document_id: str) -> PackDocument | None:
        ...

    @abstractmethod
    async def get_documents(self, pack_id: str) -> list[PackDocument]:
        ...

    @abstractmethod
    async def create_journal(self, pack_id: str, entry: JournalEntry) -> JournalEntry:
        """Create a journal (with its pages) inside a pack."""

    @abstractmethod
    async def create_page(self, journal_uuid: str, page: JournalPage) -> JournalPage:
        ...

    @abstractmethod
    async def update_page(self, page_uuid: str, changes: dict[str, Any]) -> JournalPage:
        """Patch a journal page; a ``flags`` dict is merged, other keys replace."""

    @abstractmethod
    async def delete_journal(self, pack_id: str, journal_id: str) -> None:
        ...

    @abstractmethod
    async def from_uuid(self, uuid: str) -> Any:
        """Resolve any document by UUID, or None."""

    @abstractmethod
    def from_uuid_sync(self, uuid: str) -> Any:
        """Resolve a document already available without I/O, or None."""

    # -----------------------------------------------------------------
    # Users, templates, dialogs, chat, notifications
    # -----------------------------------------------------------------

    @abstractmethod
    async def list_users(self) -> list[User]:
        ...

    @abstractmethod
    def current_user(self) -> User:
        ...

    @abstractmethod
    async def render_template(self, name: str, context: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def confirm(self, title: str, content: str) -> bool:
        """Ask the user to confirm; resolves to their answer."""

    @abstractmethod
    async def create_chat_message(self, message: ChatMessage) -> None:
        ...

    @abstractmethod
    def notify(self, level: NotifyLevel, message: str) -> None:
        """Transient user-visible message."""

    # -----------------------------------------------------------------
    # Shared helpers
    # -----------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        for user in await self.list_users():
            if user.id == user_id:
                return user
        return None

    async def gm_user_ids(self) -> list[str]:
        return [user.id for user in await self.list_users() if user.is_gm]

    def permission_level(self, actor: Actor, user: User | None = None) -> int:
        """Effective permission of ``user`` (default: current user) on ``actor``."""
        user = user or self.current_user()
        if user.is_gm:
            return PERMISSION_OWNER
        return max(actor.ownership.get(user.id, 0), actor.ownership.get("default", 0))

    def can_modify(self, actor: Actor, user: User | None = None) -> bool:
        return self.permission_level(actor, user) >= PERMISSION_OWNER

    def can_observe(self, actor: Actor, user: User | None = None) -> bool:
        return self.permission_level(actor, user) >= PERMISSION_OBSERVER
