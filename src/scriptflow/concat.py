# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Concatenation grouping and bundle building.

Eligible scripts (inline code, or externals with a minified artifact) are
assigned to groups by the concat filter.  A group's bundle key is the md5 of
its stable key and the ordered member hashes, so reordering members yields
a different bundle.

Group policy precedence, highest first:
  1. async filter rules flagged ``match_concat`` matched against the stable
     group key (or ``"global"``)
  2. the concat rule that formed the group (first rule wins per field)
  3. page defaults
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field, fields

from . import ScriptReference
from .cache import Namespace
from .client_config import PageDefaults, register_exec_capability
from .config import AsyncExec, AsyncExecType, FilterRule, LoadPosition, LocalStoragePolicy
from .context import ProcessingContext
from .extractor import resolve_local_storage
from .match_engine import Excluded, MatchedGroup, evaluate_rules, filter_config_match
from .minifier import MinifySuccess, SourceFragment, extract_filename, run_minifier, strip_source_map_refs
from .script_minifier import source_map_comment

logger = logging.getLogger(__name__)

GLOBAL_GROUP = "global"

_TRYCATCH = "try{%s}catch(e){if(console&&console.error){console.error(e);}}"


@dataclass
class GroupPolicy:
    """Resolved settings for one bundle.  None means "use the page default"."""

    load_async: bool | None = None
    load_position: LoadPosition | None = None
    async_exec: AsyncExec | None = None
    rel_preload: bool | None = None
    abide: bool | None = None
    local_storage: LocalStoragePolicy | None = None
    trycatch: bool | None = None
    minify: bool | None = None
    title: str | None = None

    def merge_missing(self, rule: FilterRule) -> None:
        """Fill fields still unset from *rule*; earlier rules win."""
        for f in fields(self):
            if getattr(self, f.name) is None:
                setattr(self, f.name, getattr(rule, f.name))

    def override(self, rule: FilterRule, defaults: PageDefaults) -> None:
        """Apply a group-level async rule; set fields replace existing ones."""
        self.load_async = rule.load_async is not False
        if rule.load_position is not None:
            self.load_position = rule.load_position
        if rule.async_exec is not None:
            self.async_exec = rule.async_exec
        if rule.rel_preload is not None:
            self.rel_preload = rule.rel_preload
        if rule.abide is not None:
            self.abide = rule.abide
        if rule.local_storage is not None:
            self.local_storage = resolve_local_storage(rule.local_storage, defaults)
        if rule.trycatch is not None:
            self.trycatch = rule.trycatch


@dataclass(frozen=True, slots=True)
class ConcatMember:
    ref: ScriptReference
    hash: str
    position: int  # slot index in the positional async list

    @property
    def name(self) -> str:
        if self.ref.is_inline:
            return f"inline-{self.hash}"
        return extract_filename(self.ref.src)

    @property
    def original(self) -> str:
        return self.name if self.ref.is_inline else self.ref.src


@dataclass
class ConcatGroup:
    key: str
    stable_key: str | None
    policy: GroupPolicy
    members: list[ConcatMember] = field(default_factory=list)

    @property
    def insert_position(self) -> int:
        """Descriptor index one past the last member."""
        return max(m.position for m in self.members) + 1

    def cache_key(self) -> str:
        return group_cache_key(self.stable_key, [m.hash for m in self.members])


@dataclass(frozen=True, slots=True)
class BuiltBundle:
    group: ConcatGroup
    cache_key: str
    url: str
    originals: list[str]


def group_cache_key(stable_key: str | None, member_hashes: list[str]) -> str:
    parts = ([stable_key] if stable_key else []) + member_hashes
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


def member_hash(ref: ScriptReference) -> str:
    if ref.is_inline:
        return hashlib.md5(ref.text.encode("utf-8")).hexdigest()
    assert ref.minified is not None
    return f"{ref.minified.cache_key}:{ref.minified.content_hash}"


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


class ConcatGrouper:
    """Assigns scripts to groups for one document, in document order."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx
        self._policies: dict[str, GroupPolicy] = {}
        self.groups: dict[str, ConcatGroup] = {}

    def assign(self, ref: ScriptReference, position: int) -> bool:
        """Add *ref* to its group.  Returns False if it is not bundled."""
        if not ref.is_inline and ref.minified is None:
            return False
        concat_filter = self._ctx.config.concat.filter

        key: str | None = GLOBAL_GROUP
        stable_key: str | None = None
        if concat_filter is not None:
            result = evaluate_rules(ref.tag, concat_filter.rules)
            match result:
                case Excluded():
                    key = None
                case MatchedGroup(key=group_key, rule=rule):
                    key = group_key
                    stable_key = rule.stable_key
                    self._policies.setdefault(key, GroupPolicy()).merge_missing(rule)
                case _:
                    key = GLOBAL_GROUP if concat_filter.type == "include" else None
        if key is None:
            return False

        group = self.groups.get(key)
        if group is None:
            group = self._new_group(key, stable_key)
        group.members.append(ConcatMember(ref=ref, hash=member_hash(ref), position=position))
        return True

    def _new_group(self, key: str, stable_key: str | None) -> ConcatGroup:
        ctx = self._ctx
        policy = self._policies.setdefault(key, GroupPolicy())
        if policy.load_async is None:
            policy.load_async = ctx.defaults.load_async
        async_cfg = ctx.config.async_
        if async_cfg.enabled and async_cfg.concat_rules:
            result = filter_config_match(stable_key or GLOBAL_GROUP, async_cfg.concat_rules, async_cfg.filter.type)
            if isinstance(result, FilterRule):
                policy.override(result, ctx.defaults)
            else:
                policy.load_async = result
        group = ConcatGroup(key=key, stable_key=stable_key, policy=policy)
        self.groups[key] = group
        return group


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def wrap_async_exec(source: str, spec: AsyncExec | None, runtime_global: str) -> str:
    """Wrap a member's code in the client call for its execution timing."""
    if spec is None:
        return source
    g = runtime_global
    match spec.type:
        case AsyncExecType.DOM_READY:
            return f"{g}.ready(function(){{{source}}});"
        case AsyncExecType.ANIMATION_FRAME:
            return f"{g}.raf(function(){{{source}}},{spec.frame or 1});"
        case AsyncExecType.IDLE:
            timeout = spec.timeout if spec.timeout is not None else "false"
            fallback = spec.set_timeout if spec.set_timeout is not None else "false"
            return f"{g}.idle(function(){{{source}}},{timeout},{fallback});"
        case AsyncExecType.INVIEW:
            if not spec.selector:
                return source
            offset = spec.offset if spec.offset is not None else "false"
            return f"{g}.inview({json.dumps(spec.selector)},{offset},function(){{{source}}});"
        case AsyncExecType.MEDIA:
            if not spec.media:
                return source
            return f"{g}.media({json.dumps(spec.media)},function(){{{source}}});"
    return source


def _register_member_capabilities(ctx: ProcessingContext, group: ConcatGroup) -> None:
    for m in group.members:
        spec = m.ref.async_exec
        if spec is None:
            continue
        if (spec.type == AsyncExecType.INVIEW and spec.selector) or (spec.type == AsyncExecType.MEDIA and spec.media):
            register_exec_capability(ctx.client, spec)


def build_bundle(ctx: ProcessingContext, group: ConcatGroup) -> BuiltBundle:
    """Build (or reuse) the bundle for *group*.  Raises CacheWriteError."""
    cfg = ctx.config
    cache = ctx.cache
    key = group.cache_key()
    originals = [m.original for m in group.members]
    _register_member_capabilities(ctx, group)

    if cache.exists(Namespace.CONCAT, key):
        cache.preserve(Namespace.CONCAT, key)
        logger.debug("Bundle cache hit: %s (%d members)", key, len(group.members))
        return BuiltBundle(group=group, cache_key=key, url=cache.url(Namespace.CONCAT, key), originals=originals)

    trycatch = group.policy.trycatch if group.policy.trycatch is not None else cfg.concat.trycatch
    fragments: list[SourceFragment] = []
    for m in group.members:
        if m.ref.is_inline:
            source = m.ref.text
            source_map = None
        else:
            assert m.ref.minified is not None
            source = cache.get(Namespace.SRC, m.ref.minified.cache_key) or ""
            source_map = cache.get_source_map(Namespace.SRC, m.ref.minified.cache_key) if cfg.minify.source_map else None
        if not source.strip():
            continue
        source = strip_source_map_refs(source)
        source = wrap_async_exec(source, m.ref.async_exec, cfg.runtime_global)
        if trycatch:
            source = _TRYCATCH % source
        fragments.append(SourceFragment(name=m.name, text=source, source_map=source_map))

    minify = group.policy.minify if group.policy.minify is not None else cfg.concat.minify
    result = run_minifier(ctx.minifier, fragments) if minify and fragments else None

    if isinstance(result, MinifySuccess):
        footer = "\n/* "
        if group.policy.title:
            footer += group.policy.title + "\n "
        footer += "@concat"
        if group.stable_key:
            footer += " " + group.stable_key
        footer += f" @min {result.minifier} */"
        text = result.text + footer
        source_map = result.source_map if cfg.minify.source_map else None
        if source_map:
            text += source_map_comment(cache.url(Namespace.CONCAT, key))
    else:
        text = " ".join(f.text for f in fragments)
        source_map = None

    url = cache.put(Namespace.CONCAT, key, text, group_key=group.stable_key, source_map=source_map)
    logger.debug("Bundle built: %s (%d members, %d chars)", key, len(group.members), len(text))
    return BuiltBundle(group=group, cache_key=key, url=url, originals=originals)
