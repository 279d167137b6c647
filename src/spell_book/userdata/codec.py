"""
Flag-safe spell UUID keys.

Flag storage treats dots in keys as path separators, and every spell UUID
contains dots. Keys are stored with each dot replaced by ``DOT`` and
restored on read.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

V = TypeVar("V")

DOT = "~"


def encode_key(uuid: str) -> str:
    return uuid.replace(".", DOT)


def decode_key(key: str) -> str:
    return key.replace(DOT, ".")


def encode_keys(data: Mapping[str, V]) -> dict[str, V]:
    return {encode_key(k): v for k, v in data.items()}


def decode_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {decode_key(k): v for k, v in data.items()}
