# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Async descriptor compilation.

Turns the ordered async decisions of one document into the compact list the
client loader consumes.  Positions matter: the slot list mirrors document
order, bundle descriptors are spliced in one past their last member, and
members themselves leave empty slots that are dropped at compile time.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .client_config import PageDefaults
from .config import AsyncExec, LoadPosition, LocalStoragePolicy
from .wire import TypePrefix, encode_entry

logger = logging.getLogger(__name__)


class LocatorType(StrEnum):
    URL = "url"  # unminified external URL
    PROXY = "proxy"  # proxied copy, locator is the proxy key
    SRC = "src"  # minified single script, locator is the cache key
    CONCAT = "concat"  # bundle, locator is the pipe-separated cache path


_PREFIX = {LocatorType.URL: TypePrefix.URL, LocatorType.PROXY: TypePrefix.PROXY}


@dataclass(frozen=True, slots=True)
class AsyncDescriptor:
    """One async-loaded artifact.  Policy fields of None follow the page."""

    locator_type: LocatorType
    locator: str
    url: str  # public URL (preload hints)
    originals: tuple[str, ...] = ()
    load_position: LoadPosition | None = None
    async_exec: AsyncExec | None = None
    local_storage: LocalStoragePolicy | None = None
    rel_preload: bool | None = None
    abide: bool | None = None

    def preload(self, defaults: PageDefaults) -> bool:
        return self.rel_preload if self.rel_preload is not None else defaults.rel_preload

    def position(self, defaults: PageDefaults) -> LoadPosition:
        return self.load_position if self.load_position is not None else defaults.load_position


@dataclass(slots=True)
class CompiledAsyncList:
    entries: list[list[Any]] = field(default_factory=list)
    concat: int | list[int] = field(default_factory=list)  # 1 when every entry is a bundle
    debug_refs: dict[str, str | list[str]] | None = None


def splice_bundles(
    slots: Sequence[AsyncDescriptor | None],
    bundles: Sequence[tuple[int, AsyncDescriptor]],
) -> list[AsyncDescriptor | None]:
    """Insert each bundle before original slot ``position``.

    Positions refer to the original slot list, so several bundles never
    shift each other.  Bundles at the same position keep their order.
    """
    by_position: dict[int, list[AsyncDescriptor]] = {}
    for position, desc in bundles:
        by_position.setdefault(position, []).append(desc)
    out: list[AsyncDescriptor | None] = []
    for i in range(len(slots) + 1):
        out.extend(by_position.get(i, ()))
        if i < len(slots):
            out.append(slots[i])
    return out


def encode_descriptor(desc: AsyncDescriptor, defaults: PageDefaults) -> list[Any]:
    """Wire entry with every field equal to the page default left out."""
    load_position = desc.load_position if desc.load_position not in (None, defaults.load_position) else None
    async_exec = desc.async_exec if desc.async_exec is not None and desc.async_exec != defaults.async_exec else None
    return encode_entry(
        desc.locator,
        prefix=_PREFIX.get(desc.locator_type),
        load_position=load_position,
        async_exec=async_exec,
        local_storage=_storage_override(desc.local_storage, defaults),
    )


def _storage_override(policy: LocalStoragePolicy | None, defaults: PageDefaults) -> LocalStoragePolicy | None:
    # page without localStorage means off; page with settings means on with those settings
    page = defaults.local_storage if defaults.local_storage is not None else False
    if policy is None or policy == page:
        return None
    if policy is True and page is not False:
        return None
    return policy


def compile_async_list(
    slots: Sequence[AsyncDescriptor | None],
    defaults: PageDefaults,
    *,
    debug: bool = False,
) -> CompiledAsyncList:
    """Compile spliced slots into wire entries.  Empty slots are dropped."""
    compiled = CompiledAsyncList(debug_refs={} if debug else None)
    concat_indexes: list[int] = []
    for desc in slots:
        if desc is None:
            continue
        if desc.locator_type == LocatorType.CONCAT:
            concat_indexes.append(len(compiled.entries))
        compiled.entries.append(encode_descriptor(desc, defaults))
        if compiled.debug_refs is not None and desc.originals:
            compiled.debug_refs[desc.locator] = desc.originals[0] if len(desc.originals) == 1 else list(desc.originals)

    if compiled.entries and len(concat_indexes) == len(compiled.entries):
        compiled.concat = 1
    else:
        compiled.concat = concat_indexes
    logger.debug("Compiled %d async entries (%d bundles)", len(compiled.entries), len(concat_indexes))
    return compiled
