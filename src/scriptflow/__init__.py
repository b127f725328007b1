# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ScriptFlow: asynchronous script delivery for HTML documents.

Rewrites the ``<script>`` references of a rendered page:
- extracts inline and external scripts in document order
- minifies them through a content-addressed cache
- concatenates eligible scripts into bundles
- compiles a compact positional descriptor list for the client loader
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .config import AsyncExec, LoadPosition, LocalStoragePolicy


class SourceKind(StrEnum):
    INLINE = "inline"
    EXTERNAL = "external"


@dataclass(frozen=True, slots=True)
class MinifiedRef:
    """Pointer to a minified artifact in the ``src`` cache namespace."""

    cache_key: str
    content_hash: str  # md5 of the raw pre-transform bytes


@dataclass(frozen=True, slots=True)
class ProxyRecord:
    """A remote script rewritten to a proxied copy."""

    proxy_key: str
    original_url: str


@dataclass
class ScriptReference:
    """One occurrence of a script in the document.

    Mutated in place while filters and minification resolve, then read-only
    for grouping and compilation.  Never outlives the document.
    """

    tag: str  # exact markup, the search key for replacement
    kind: SourceKind
    src: str = ""
    text: str = ""
    minify: bool = False
    load_async: bool = False
    replace_src: bool = False  # src changed, rewrite the tag if it stays synchronous
    removed: bool = False  # tag already scheduled for deletion

    # per-instance overrides from the async filter
    load_position: LoadPosition | None = None
    async_exec: AsyncExec | None = None
    rel_preload: bool | None = None
    abide: bool | None = None
    local_storage: LocalStoragePolicy | None = None

    minified: MinifiedRef | None = None
    proxy: ProxyRecord | None = None
    original_src: str = ""

    @property
    def is_inline(self) -> bool:
        return self.kind == SourceKind.INLINE

    def __str__(self) -> str:
        if self.is_inline:
            return f"<inline {len(self.text)} chars>"
        return self.src
