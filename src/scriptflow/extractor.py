# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Script extraction: scan a document for ``<script>`` occurrences in order.

The scan is regex-based so every tag keeps its exact original markup (the
search key for later replacement); lxml only parses the attribute part of
each opening tag.  Scripts inside conditional comments are skipped.

Per external script, in order:
  1. URL filter rules (ignore / delete / replace)
  2. src hook
  3. minify eligibility (minify filter)
  4. async eligibility and per-script overrides (async filter)
  5. proxying of non-minified remote scripts
Inline scripts are only extracted when bundling of inline code is on.
"""

from __future__ import annotations

import logging
import re

import lxml.html
from lxml import etree

from . import ProxyRecord, ScriptReference, SourceKind
from .client_config import PageDefaults
from .config import FilterRule, LocalStorageConfig, LocalStoragePolicy, UrlFilterRule
from .context import ProcessingContext
from .errors import CacheWriteError, FilterError
from .match_engine import compile_pattern, filter_config_match, filter_list_match

logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"(<!--\[if[^>]+>\s*)?<script([^>]*)>((.*?)</script>)?", re.DOTALL | re.MULTILINE | re.IGNORECASE)

_PARSER = lxml.html.HTMLParser(recover=True)

# Classic-script MIME types; anything else (module, importmap, ld+json, templates) is left alone.
_JAVASCRIPT_MIME_TYPES = frozenset(
    {
        "text/javascript",
        "application/javascript",
        "application/ecmascript",
        "application/x-ecmascript",
        "application/x-javascript",
        "text/ecmascript",
        "text/javascript1.0",
        "text/javascript1.1",
        "text/javascript1.2",
        "text/javascript1.3",
        "text/javascript1.4",
        "text/javascript1.5",
        "text/jscript",
        "text/livescript",
        "text/x-ecmascript",
        "text/x-javascript",
    }
)

IGNORE = "ignore"
DELETE = "delete"


def parse_attributes(attrs: str) -> dict[str, str] | None:
    """Attributes of ``<script{attrs}>`` as a dict, or None if unparseable."""
    try:
        doc = lxml.html.fromstring(f"<script{attrs}></script>", parser=_PARSER)
    except (etree.ParserError, ValueError) as e:
        logger.debug("Unparseable script attributes %r: %s", attrs[:80], e)
        return None
    el = next(doc.iter("script"), None)
    if el is None:
        return None
    return dict(el.attrib)


def is_classic_script(attributes: dict[str, str]) -> bool:
    type_val = attributes.get("type")
    if type_val is None:
        return True
    type_str = type_val.strip().lower()
    return type_str == "" or type_str in _JAVASCRIPT_MIME_TYPES


def resolve_local_storage(policy: LocalStoragePolicy, defaults: PageDefaults) -> LocalStoragePolicy:
    """``true`` inherits the page-wide localStorage settings when there are any."""
    if policy is True and isinstance(defaults.local_storage, LocalStorageConfig):
        return defaults.local_storage
    return policy


def apply_async_rule(ref: ScriptReference, result: bool | FilterRule, defaults: PageDefaults) -> None:
    """Apply an async filter outcome to *ref*.

    A matched rule enables async loading unless it says ``async: false``;
    its per-script fields are kept only where they differ from the page.
    """
    if not isinstance(result, FilterRule):
        ref.load_async = result
        return
    if result.load_async is False:
        ref.load_async = False
        return
    ref.load_async = True
    if result.load_position is not None and result.load_position != defaults.load_position:
        ref.load_position = result.load_position
    if result.async_exec is not None:
        ref.async_exec = result.async_exec
    if result.rel_preload is not None and result.rel_preload != defaults.rel_preload:
        ref.rel_preload = result.rel_preload
    if result.abide is not None:
        ref.abide = result.abide
    if result.local_storage is not None:
        ref.local_storage = resolve_local_storage(result.local_storage, defaults)


def _url_rule_matches(rule: UrlFilterRule, src: str) -> bool:
    if not rule.regex:
        return rule.url in src
    try:
        return compile_pattern(rule.url).search(src) is not None
    except FilterError as e:
        logger.warning("Skipping malformed URL filter: %s", e)
        return False


def extract_scripts(ctx: ProcessingContext, document: str) -> list[ScriptReference]:
    """Return script references in document order.

    Deleted tags are scheduled for removal on *ctx* and not returned.
    """
    cfg = ctx.config
    scripts: list[ScriptReference] = []

    for m in _SCRIPT_RE.finditer(document):
        if m.group(1):
            continue  # conditional comment
        tag = m.group(0)
        attributes = parse_attributes(m.group(2))
        if attributes is None or not is_classic_script(attributes):
            continue
        text = (m.group(4) or "").strip()
        src = (attributes.get("src") or "").strip()

        if src:
            ref = _extract_external(ctx, tag, src, text)
        elif cfg.concat_enabled and cfg.concat.inline and text:
            ref = _extract_inline(ctx, tag, text)
        else:
            continue
        if ref is not None:
            scripts.append(ref)

    logger.debug("Extracted %d scripts", len(scripts))
    return scripts


def _extract_inline(ctx: ProcessingContext, tag: str, text: str) -> ScriptReference | None:
    cfg = ctx.config
    if ctx.text_hook is not None:
        verdict = ctx.text_hook(text, tag)
        if verdict == IGNORE:
            return None
        if verdict == DELETE:
            ctx.remove(tag)
            return None
        text = verdict
    f = cfg.concat.inline_filter
    if f is not None and not filter_list_match(tag, f.match, f.type):
        return None

    ref = ScriptReference(tag=tag, kind=SourceKind.INLINE, text=text)
    if cfg.async_.enabled and cfg.async_.script_rules:
        # inline code is never loaded async, but an exec override still wraps it in a bundle
        result = filter_config_match(tag, cfg.async_.script_rules, cfg.async_.filter.type)
        if isinstance(result, FilterRule) and result.load_async is not False and result.async_exec is not None:
            ref.async_exec = result.async_exec
    return ref


def _extract_external(ctx: ProcessingContext, tag: str, src: str, text: str) -> ScriptReference | None:
    cfg = ctx.config
    original_src = src
    replaced = False

    for rule in cfg.url_filter:
        if not _url_rule_matches(rule, src):
            continue
        if rule.ignore:
            return None
        if rule.delete:
            ctx.remove(tag)
            return None
        if rule.replace:
            src = rule.replace
            replaced = True

    if ctx.src_hook is not None:
        verdict = ctx.src_hook(src, tag)
        if verdict == IGNORE:
            return None
        if verdict == DELETE:
            ctx.remove(tag)
            return None
        if verdict != src:
            src = verdict
            replaced = True

    ref = ScriptReference(
        tag=tag,
        kind=SourceKind.EXTERNAL,
        src=src,
        text=text,
        minify=cfg.minify.enabled,
        load_async=cfg.async_.enabled,
        replace_src=replaced,
        original_src=original_src,
    )

    mf = cfg.minify.filter
    if ref.minify and mf is not None:
        ref.minify = filter_list_match(tag, mf.match, mf.type)

    if cfg.async_.enabled and cfg.async_.script_rules:
        result = filter_config_match(tag, cfg.async_.script_rules, cfg.async_.filter.type)
        apply_async_rule(ref, result, ctx.defaults)

    if not ref.minify and cfg.proxy.enabled and not ctx.resolver.is_local(ref.src):
        _maybe_proxy(ctx, ref)
    return ref


def _maybe_proxy(ctx: ProcessingContext, ref: ScriptReference) -> None:
    include = ctx.config.proxy.include
    if include and not filter_list_match(ref.tag, include, "include"):
        return
    try:
        key, url = ctx.proxy.proxify(ref.src)
    except CacheWriteError as e:
        logger.warning("Proxy store failed, keeping original URL: %s", e)
        ctx.errors.append(e)
        return
    if key is not None and url != ref.src:
        ref.proxy = ProxyRecord(proxy_key=key, original_url=ref.src)
        ref.src = url
        ref.replace_src = True
