# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Document pipeline: extract -> minify -> concat -> compile -> rewrite.

``ScriptOptimizer`` holds the setup-time state (validated config, page
defaults, shared collaborators).  ``process`` runs one document with a fresh
``ProcessingContext`` and returns the rewritten document plus everything the
caller needs to finish the page: anchored insertions, client loader config
and scoped errors.

Per-script and per-group failures never abort a document; they are logged
and, for cache writes, reported in ``ProcessResult.errors``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from . import ScriptReference
from .async_descriptor import AsyncDescriptor, LocatorType, compile_async_list, splice_bundles
from .cache import ContentCache, Namespace
from .client_config import ClientRuntime, PageDefaults, configure_client, register_exec_capability
from .collaborators import CachingProxy, CdnUrlRewriter, NullProxy, NullUrlRewriter, ProxyRewriter, SourceHook, UrlRewriter
from .concat import BuiltBundle, ConcatGrouper, build_bundle
from .config import AsyncExecType, LoadPosition, ScriptFlowConfig
from .context import ProcessingContext
from .errors import CacheWriteError, ScriptFlowError
from .extractor import extract_scripts, resolve_local_storage
from .fetcher import Fetcher, HttpxFetcher, LocalResolver
from .logging_config import bind_document
from .minifier import JsminMinifier, Minifier
from .pipeline_timer import PipelineTimer
from .rewriter import Anchor, Insertion, SearchReplace, apply_replacements, preload_hint, replace_src, script_tag
from .script_minifier import minify_scripts

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcessResult:
    """Outcome of processing one document."""

    document: str
    replacements: list[SearchReplace] = field(default_factory=list)
    insertions: list[Insertion] = field(default_factory=list)
    client: dict[str, Any] = field(default_factory=dict)
    scripts: list[ScriptReference] = field(default_factory=list)
    errors: list[ScriptFlowError] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)

    def insertions_at(self, anchor: Anchor) -> list[str]:
        return [i.payload for i in self.insertions if i.anchor == anchor]


class ScriptOptimizer:
    """Setup-once, process-many script optimizer.

    The instance is immutable after construction and may be shared; every
    ``process`` call builds its own per-document context.
    """

    def __init__(
        self,
        config: ScriptFlowConfig,
        *,
        cache: ContentCache,
        minifier: Minifier | None = None,
        fetcher: Fetcher | None = None,
        url_rewriter: UrlRewriter | None = None,
        proxy: ProxyRewriter | None = None,
        src_hook: SourceHook | None = None,
        text_hook: SourceHook | None = None,
    ) -> None:
        self.config = config
        self.defaults = PageDefaults.from_config(config)
        self._cache = cache
        self._minifier = minifier or JsminMinifier()
        self._fetcher = fetcher or HttpxFetcher()
        self._resolver = LocalResolver(config.site_url, config.document_root)
        if url_rewriter is None:
            if config.cdn.enabled:
                url_rewriter = CdnUrlRewriter(config.cdn.url, site_url=config.site_url, mask=config.cdn.mask)
            else:
                url_rewriter = NullUrlRewriter()
        self._url_rewriter = url_rewriter
        if proxy is None:
            proxy = CachingProxy(self._fetcher, cache) if config.proxy.enabled else NullProxy()
        self._proxy = proxy
        self._src_hook = src_hook
        self._text_hook = text_hook

    def close(self) -> None:
        close = getattr(self._fetcher, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> ScriptOptimizer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def new_context(self, document_id: str | None = None) -> ProcessingContext:
        ctx = ProcessingContext(
            document_id=document_id or uuid.uuid4().hex[:12],
            config=self.config,
            defaults=self.defaults,
            cache=self._cache,
            minifier=self._minifier,
            fetcher=self._fetcher,
            resolver=self._resolver,
            url_rewriter=self._url_rewriter,
            proxy=self._proxy,
            src_hook=self._src_hook,
            text_hook=self._text_hook,
            client=ClientRuntime(),
        )
        configure_client(ctx.client, self.config)
        return ctx

    def process(self, document: str, *, document_id: str | None = None) -> ProcessResult:
        """Rewrite the scripts of *document*."""
        if not document or not self.config.any_enabled:
            return ProcessResult(document=document)

        ctx = self.new_context(document_id)
        bind_document(ctx.document_id)
        timer = PipelineTimer()
        try:
            timer.stage("extract")
            scripts = extract_scripts(ctx, document)

            timer.stage("minify")
            if self.config.minify.enabled:
                minify_scripts(ctx, scripts)

            timer.stage("concat")
            slots, bundles = _layout(ctx, scripts)

            timer.stage("compile")
            final = splice_bundles(slots, bundles)
            _compile(ctx, final)

            timer.stage("rewrite")
            rewritten = apply_replacements(document, ctx.replacements)
        except Exception:
            logger.error("Script pipeline failed: %s", timer.failure_report())
            raise
        finally:
            timer.finalize()

        logger.info(
            "Processed document: %d scripts, %d replacements, %d insertions, %d errors",
            len(scripts),
            len(ctx.replacements),
            len(ctx.insertions),
            len(ctx.errors),
        )
        return ProcessResult(
            document=rewritten,
            replacements=list(ctx.replacements),
            insertions=list(ctx.insertions),
            client=ctx.client.to_dict(),
            scripts=scripts,
            errors=list(ctx.errors),
            timings=timer.elapsed_per_stage(),
        )


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _layout(
    ctx: ProcessingContext, scripts: list[ScriptReference]
) -> tuple[list[AsyncDescriptor | None], list[tuple[int, AsyncDescriptor]]]:
    """Walk scripts in order; returns async slots and bundle splice points."""
    cfg = ctx.config
    grouper = ConcatGrouper(ctx) if cfg.concat_enabled else None
    slots: list[AsyncDescriptor | None] = []

    for ref in scripts:
        if ref.removed:
            continue
        if grouper is not None and grouper.assign(ref, position=len(slots)):
            slots.append(None)
            continue
        if ref.is_inline:
            continue
        if cfg.async_.enabled and ref.load_async:
            slots.append(_script_descriptor(ctx, ref))
            ctx.remove(ref.tag)
            ref.removed = True
        else:
            _rewrite_sync(ctx, ref)

    bundles: list[tuple[int, AsyncDescriptor]] = []
    if grouper is None:
        return slots, bundles

    for group in grouper.groups.values():
        try:
            built = build_bundle(ctx, group)
        except CacheWriteError as e:
            logger.warning("Bundle store failed, keeping member scripts: %s", e)
            ctx.errors.append(e)
            for m in group.members:
                if not m.ref.is_inline:
                    _rewrite_sync(ctx, m.ref)
            continue
        for m in group.members:
            ctx.remove(m.ref.tag)
            m.ref.removed = True
        desc = _bundle_descriptor(ctx, built)
        if desc is not None:
            bundles.append((group.insert_position, desc))
    return slots, bundles


def _public_url(ctx: ProcessingContext, ref: ScriptReference) -> str:
    if ref.minified is not None:
        return ctx.url_rewriter.rewrite(ctx.cache.url(Namespace.SRC, ref.minified.cache_key))
    return ctx.url_rewriter.rewrite(ref.src)


def _rewrite_sync(ctx: ProcessingContext, ref: ScriptReference) -> None:
    url = _public_url(ctx, ref)
    if ref.minified is not None or ref.replace_src or url != ref.src:
        ctx.replace(ref.tag, replace_src(ref.tag, url))


def _script_descriptor(ctx: ProcessingContext, ref: ScriptReference) -> AsyncDescriptor:
    if ref.minified is not None:
        locator_type, locator = LocatorType.SRC, ref.minified.cache_key
    elif ref.proxy is not None:
        locator_type, locator = LocatorType.PROXY, ref.proxy.proxy_key
    else:
        locator_type, locator = LocatorType.URL, ctx.url_rewriter.rewrite(ref.src)
    register_exec_capability(ctx.client, ref.async_exec)
    return AsyncDescriptor(
        locator_type=locator_type,
        locator=locator,
        url=_public_url(ctx, ref),
        originals=(ref.original_src or ref.src,),
        load_position=ref.load_position,
        async_exec=ref.async_exec,
        local_storage=ref.local_storage,
        rel_preload=ref.rel_preload,
        abide=ref.abide,
    )


def _bundle_descriptor(ctx: ProcessingContext, built: BuiltBundle) -> AsyncDescriptor | None:
    """Async descriptor for a bundle, or None after emitting a plain script tag."""
    policy = built.group.policy
    url = ctx.url_rewriter.rewrite(built.url)
    load_position = policy.load_position if policy.load_position is not None else ctx.defaults.load_position

    if not (ctx.config.async_.enabled and policy.load_async):
        anchor = Anchor.FOOTER if load_position == LoadPosition.FOOTER else Anchor.HEADER
        ctx.insert(anchor, script_tag(url))
        return None

    register_exec_capability(ctx.client, policy.async_exec)
    local_storage = resolve_local_storage(policy.local_storage, ctx.defaults) if policy.local_storage is not None else None
    return AsyncDescriptor(
        locator_type=LocatorType.CONCAT,
        locator=ctx.cache.locator(Namespace.CONCAT, built.cache_key),
        url=url,
        originals=tuple(built.originals),
        load_position=policy.load_position,
        async_exec=policy.async_exec,
        local_storage=local_storage,
        rel_preload=policy.rel_preload,
        abide=policy.abide,
    )


def _compile(ctx: ProcessingContext, final: list[AsyncDescriptor | None]) -> None:
    """Publish the descriptor list to the client and emit preload hints."""
    if not ctx.config.async_.enabled:
        return
    compiled = compile_async_list(final, ctx.defaults, debug=ctx.config.debug)
    if compiled.entries:
        ctx.client.set_config("async", compiled.entries)
        ctx.client.set_config("concat", compiled.concat)
        if compiled.debug_refs is not None:
            ctx.client.set_config("debug_ref", compiled.debug_refs)

    for desc in final:
        if desc is None or not desc.preload(ctx.defaults):
            continue
        spec = desc.async_exec or ctx.defaults.async_exec
        media = spec.media if spec is not None and spec.type == AsyncExecType.MEDIA and spec.media else None
        anchor = Anchor.FOOTER if desc.position(ctx.defaults) == LoadPosition.FOOTER else Anchor.CRITICAL
        ctx.insert(anchor, preload_hint(desc.url, media))
