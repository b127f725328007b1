# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Compact positional encoding shared with the client loader.

Descriptor entry layout::

    [type_prefix?, locator, load_position?, async_exec?, local_storage?]

- ``type_prefix`` is present only for ``url`` (1) and ``proxy`` (2) locators.
- Trailing absent fields are dropped.  An absent field followed by a present
  one is written as ``PLACEHOLDER`` so later positions stay aligned.
- Enumerated values and option keys are replaced by their index in the
  tables below.  Option keys are stringified because JSON object keys are.

Every ``encode_*`` has a ``decode_*`` inverse.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .config import AsyncExec, AsyncExecType, LoadPosition, LocalStorageConfig, LocalStoragePolicy

PLACEHOLDER = "__NULL__"


class TypePrefix(IntEnum):
    URL = 1
    PROXY = 2


LOAD_POSITION_INDEX: dict[LoadPosition, int] = {
    LoadPosition.HEADER: 0,
    LoadPosition.FOOTER: 1,
    LoadPosition.TIMED: 2,
}

ASYNC_EXEC_TYPE_INDEX: dict[AsyncExecType, int] = {
    AsyncExecType.DOM_READY: 0,
    AsyncExecType.ANIMATION_FRAME: 1,
    AsyncExecType.IDLE: 2,
    AsyncExecType.INVIEW: 3,
    AsyncExecType.MEDIA: 4,
}

# option key -> wire index
ASYNC_EXEC_KEY_INDEX: dict[str, int] = {
    "frame": 0,
    "timeout": 1,
    "setTimeout": 2,
    "selector": 3,
    "offset": 4,
    "media": 5,
}
_ASYNC_EXEC_ATTR = {
    "frame": "frame",
    "timeout": "timeout",
    "setTimeout": "set_timeout",
    "selector": "selector",
    "offset": "offset",
    "media": "media",
}
# options that mean something for each exec type
_ASYNC_EXEC_OPTIONS: dict[AsyncExecType, tuple[str, ...]] = {
    AsyncExecType.DOM_READY: (),
    AsyncExecType.ANIMATION_FRAME: ("frame",),
    AsyncExecType.IDLE: ("timeout", "setTimeout"),
    AsyncExecType.INVIEW: ("selector", "offset"),
    AsyncExecType.MEDIA: ("media",),
}

LOCAL_STORAGE_KEY_INDEX: dict[str, int] = {
    "max_size": 0,
    "update_interval": 1,
    "head_update": 2,
    "expire": 3,
}

_POSITION_BY_INDEX = {v: k for k, v in LOAD_POSITION_INDEX.items()}
_EXEC_TYPE_BY_INDEX = {v: k for k, v in ASYNC_EXEC_TYPE_INDEX.items()}
_EXEC_KEY_BY_INDEX = {v: k for k, v in ASYNC_EXEC_KEY_INDEX.items()}
_STORAGE_KEY_BY_INDEX = {v: k for k, v in LOCAL_STORAGE_KEY_INDEX.items()}


# ---------------------------------------------------------------------------
# Field codecs
# ---------------------------------------------------------------------------


def encode_load_position(position: LoadPosition) -> int:
    return LOAD_POSITION_INDEX[position]


def decode_load_position(value: int) -> LoadPosition:
    return _POSITION_BY_INDEX[value]


def encode_async_exec(spec: AsyncExec) -> list[Any]:
    """``[type_index]`` or ``[type_index, {key_index: value}]``."""
    options: dict[str, Any] = {}
    for key in _ASYNC_EXEC_OPTIONS[spec.type]:
        value = getattr(spec, _ASYNC_EXEC_ATTR[key])
        if value is not None:
            options[str(ASYNC_EXEC_KEY_INDEX[key])] = value
    encoded: list[Any] = [ASYNC_EXEC_TYPE_INDEX[spec.type]]
    if options:
        encoded.append(options)
    return encoded


def decode_async_exec(value: list[Any]) -> AsyncExec:
    exec_type = _EXEC_TYPE_BY_INDEX[value[0]]
    options = value[1] if len(value) > 1 else {}
    fields = {_ASYNC_EXEC_ATTR[_EXEC_KEY_BY_INDEX[int(k)]]: v for k, v in options.items()}
    return AsyncExec(type=exec_type, **fields)


def encode_local_storage(policy: LocalStoragePolicy) -> int | dict[str, Any]:
    """``1``/``0`` for a plain toggle, otherwise ``{key_index: value}``."""
    if isinstance(policy, bool):
        return 1 if policy else 0
    encoded: dict[str, Any] = {}
    for key, idx in LOCAL_STORAGE_KEY_INDEX.items():
        value = getattr(policy, key)
        if key == "head_update":
            if value:
                encoded[str(idx)] = 1
        elif value is not None:
            encoded[str(idx)] = value
    return encoded


def decode_local_storage(value: int | dict[str, Any]) -> LocalStoragePolicy:
    if isinstance(value, int):
        return bool(value)
    fields: dict[str, Any] = {}
    for k, v in value.items():
        key = _STORAGE_KEY_BY_INDEX[int(k)]
        fields[key] = bool(v) if key == "head_update" else v
    return LocalStorageConfig(**fields)


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DecodedEntry:
    """One descriptor entry as read back from the wire.  None = page default."""

    locator: str
    prefix: TypePrefix | None = None
    load_position: LoadPosition | None = None
    async_exec: AsyncExec | None = None
    local_storage: LocalStoragePolicy | None = None


def encode_entry(
    locator: str,
    *,
    prefix: TypePrefix | None = None,
    load_position: LoadPosition | None = None,
    async_exec: AsyncExec | None = None,
    local_storage: LocalStoragePolicy | None = None,
) -> list[Any]:
    """Positional entry.  None fields are omitted (trailing) or placeholders."""
    fields: list[Any] = [
        encode_load_position(load_position) if load_position is not None else None,
        encode_async_exec(async_exec) if async_exec is not None else None,
        encode_local_storage(local_storage) if local_storage is not None else None,
    ]
    while fields and fields[-1] is None:
        fields.pop()
    entry: list[Any] = [int(prefix)] if prefix is not None else []
    entry.append(locator)
    entry.extend(PLACEHOLDER if f is None else f for f in fields)
    return entry


def decode_entry(entry: list[Any]) -> DecodedEntry:
    """Inverse of ``encode_entry``.  Raises ValueError on malformed input."""
    if not entry:
        raise ValueError("empty descriptor entry")
    rest = list(entry)
    prefix = None
    if isinstance(rest[0], int):
        prefix = TypePrefix(rest.pop(0))
    if not rest or not isinstance(rest[0], str):
        raise ValueError(f"descriptor entry without locator: {entry!r}")
    locator = rest.pop(0)
    rest += [PLACEHOLDER] * (3 - len(rest))
    position, exec_, storage = (None if v == PLACEHOLDER else v for v in rest[:3])
    try:
        return DecodedEntry(
            locator=locator,
            prefix=prefix,
            load_position=decode_load_position(position) if position is not None else None,
            async_exec=decode_async_exec(exec_) if exec_ is not None else None,
            local_storage=decode_local_storage(storage) if storage is not None else None,
        )
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError(f"malformed descriptor entry {entry!r}: {e}") from e
