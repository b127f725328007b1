# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ProcessingContext: leaf module holding per-document state.

Created fresh for every document by ``ScriptOptimizer.process``; shared
collaborators (cache, fetcher, minifier) are references, the instruction
and error lists belong to this document only.
"""

from __future__ import annotations

import dataclasses

from .cache import ContentCache
from .client_config import ClientRuntime, PageDefaults
from .collaborators import ProxyRewriter, SourceHook, UrlRewriter
from .config import ScriptFlowConfig
from .errors import ScriptFlowError
from .fetcher import Fetcher, LocalResolver
from .minifier import Minifier
from .rewriter import Anchor, Insertion, SearchReplace


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class ProcessingContext:
    """Per-document context passed to every stage."""

    document_id: str
    config: ScriptFlowConfig
    defaults: PageDefaults
    cache: ContentCache
    minifier: Minifier
    fetcher: Fetcher
    resolver: LocalResolver
    url_rewriter: UrlRewriter
    proxy: ProxyRewriter
    src_hook: SourceHook | None = None
    text_hook: SourceHook | None = None
    client: ClientRuntime = dataclasses.field(default_factory=ClientRuntime)
    replacements: list[SearchReplace] = dataclasses.field(default_factory=list)
    insertions: list[Insertion] = dataclasses.field(default_factory=list)
    errors: list[ScriptFlowError] = dataclasses.field(default_factory=list)

    def replace(self, tag: str, new: str) -> None:
        self.replacements.append(SearchReplace(search=tag, replace=new))

    def remove(self, tag: str) -> None:
        self.replace(tag, "")

    def insert(self, anchor: Anchor, payload: str) -> None:
        self.insertions.append(Insertion(anchor=anchor, payload=payload))
