# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Minify individual external scripts through the ``src`` cache namespace.

Cache keys are derived from the transformed source text, so the same file
served under a different query string (cache busters) reuses one artifact.
The raw content hash is stored as entry metadata and compared on every run;
a mismatch re-minifies.

Failure handling is per script:
- ``FetchError``: the script stays an ordinary synchronous reference.
- minifier failure: the reference is left untouched (not minified).
- ``CacheWriteError``: recorded on the context, reference left untouched.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from urllib.parse import urlparse

from . import MinifiedRef, ScriptReference
from .cache import Namespace
from .context import ProcessingContext
from .errors import CacheWriteError, FetchError
from .fetcher import content_hash, translate_protocol, valid_protocol
from .minifier import MinifyFailure, SourceFragment, apply_replacements, extract_filename, run_minifier

logger = logging.getLogger(__name__)


def src_cache_key(text: str, fingerprint: str) -> str:
    """Key of a per-script artifact: md5 over transform settings and source text."""
    return hashlib.md5(f"{fingerprint}|{text}".encode()).hexdigest()


def source_map_comment(url: str) -> str:
    name = posixpath.basename(urlparse(url).path)
    return f"\n/*# sourceMappingURL={name}.map */"


def minify_scripts(ctx: ProcessingContext, scripts: list[ScriptReference]) -> None:
    """Resolve ``minified`` for every eligible external script, in place."""
    for ref in scripts:
        if ref.is_inline or not ref.minify or ref.removed:
            continue
        try:
            ref.minified = minify_script(ctx, ref)
        except FetchError as e:
            logger.warning("Script fetch failed, leaving it synchronous: %s", e)
            ref.minify = False
            ref.load_async = False
            continue
        except CacheWriteError as e:
            logger.warning("Cache write failed, leaving script untouched: %s", e)
            ctx.errors.append(e)
            ref.minify = False
            ref.load_async = False
            continue
        if ref.minified is None:
            ref.minify = False


def minify_script(ctx: ProcessingContext, ref: ScriptReference) -> MinifiedRef | None:
    """Minify one external script.  Raises FetchError, CacheWriteError.

    Returns None when the script is not minified (unsupported URL, empty
    local file, minifier failure).
    """
    cfg = ctx.config
    cache = ctx.cache

    local_path = ctx.resolver.resolve(ref.src)
    if local_path is not None:
        raw = ctx.resolver.read(local_path)
        raw_hash = content_hash(raw)
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            # empty local file: drop the tag, remember the empty artifact
            key = src_cache_key("", cfg.transform_fingerprint())
            cache.put(Namespace.SRC, key, "", content_hash=raw_hash)
            ctx.remove(ref.tag)
            ref.removed = True
            return None
    else:
        url = translate_protocol(ref.src)
        if not valid_protocol(url):
            logger.debug("Not minifying unsupported URL: %s", ref.src)
            return None
        resource = ctx.fetcher.fetch(url)
        raw_hash = resource.content_hash
        text = resource.text.strip()

    filtered = apply_replacements(text, cfg.minify.replace)
    key = src_cache_key(filtered, cfg.transform_fingerprint())

    if cache.exists(Namespace.SRC, key) and cache.meta(Namespace.SRC, key) == raw_hash:
        if not cfg.minify.source_map or cache.get_source_map(Namespace.SRC, key) is not None:
            cache.preserve(Namespace.SRC, key)
            logger.debug("Minified script cache hit: %s", key)
            return MinifiedRef(cache_key=key, content_hash=raw_hash)

    name = extract_filename(ref.src)
    result = run_minifier(ctx.minifier, [SourceFragment(name=name, text=filtered)])
    if isinstance(result, MinifyFailure):
        logger.warning("Minification failed for %s, leaving reference untouched", name)
        return None

    body = result.text + f"\n/* @src {name} */"
    source_map = result.source_map if cfg.minify.source_map else None
    if source_map:
        body += source_map_comment(cache.url(Namespace.SRC, key))
    cache.put(Namespace.SRC, key, body, content_hash=raw_hash, source_map=source_map)
    return MinifiedRef(cache_key=key, content_hash=raw_hash)
