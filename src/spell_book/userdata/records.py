"""
Per-user spell data records.

A user's record maps canonical spell UUIDs to their notes plus, for each
actor the user plays, a favorite toggle and usage counters.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..constants import USER_DATA_VERSION
from .codec import decode_keys, encode_keys


class UsageStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    last_used: float | None = Field(default=None, alias="lastUsed", description="Epoch milliseconds")
    combat: int = 0
    exploration: int = 0


class ActorSpellData(BaseModel):
    favorited: bool = False
    usage: UsageStats = Field(default_factory=UsageStats)


class SpellUserData(BaseModel):
    """Notes and per-actor data of one spell."""

    model_config = ConfigDict(populate_by_name=True)

    notes: str = ""
    by_actor: dict[str, ActorSpellData] = Field(default_factory=dict, alias="byActor")

    def for_actor(self, actor_id: str) -> ActorSpellData:
        return self.by_actor.setdefault(actor_id, ActorSpellData())

    @property
    def is_empty(self) -> bool:
        return not self.notes and all(
            not data.favorited and data.usage.count == 0 for data in self.by_actor.values()
        )


class UserRecord(BaseModel):
    """Everything stored for one user, keyed by canonical spell UUID."""

    user_id: str
    user_name: str = ""
    data_version: str = USER_DATA_VERSION
    spells: dict[str, SpellUserData] = Field(default_factory=dict)

    def spell(self, uuid: str) -> SpellUserData:
        return self.spells.setdefault(uuid, SpellUserData())

    def to_flags(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "isUserSpellData": True,
            "dataVersion": self.data_version,
            "spellData": encode_keys(
                {uuid: data.model_dump(mode="json", by_alias=True) for uuid, data in self.spells.items()}
            ),
        }

    @classmethod
    def from_flags(cls, user_id: str, flags: dict[str, Any]) -> "UserRecord":
        spells = {
            uuid: SpellUserData.model_validate(data or {})
            for uuid, data in decode_keys(flags.get("spellData") or {}).items()
        }
        return cls(
            user_id=user_id,
            user_name=flags.get("userName", ""),
            data_version=flags.get("dataVersion") or "",
            spells=spells,
        )


class SpellView(BaseModel):
    """Flattened user data of one spell as seen from one actor."""

    uuid: str
    notes: str = ""
    favorited: bool = False
    usage: UsageStats = Field(default_factory=UsageStats)

    @property
    def has_notes(self) -> bool:
        return bool(self.notes.strip())
