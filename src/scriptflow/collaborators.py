# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Replaceable collaborators: public URL rewriting, third-party proxying, source hooks."""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from .cache import ContentCache, Namespace
from .errors import FetchError
from .fetcher import Fetcher, translate_protocol, valid_protocol

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public URL rewriting (CDN)
# ---------------------------------------------------------------------------


@runtime_checkable
class UrlRewriter(Protocol):
    """Maps a cache or script URL to the URL emitted into the document."""

    def rewrite(self, url: str) -> str: ...


class NullUrlRewriter:
    def rewrite(self, url: str) -> str:
        return url


class CdnUrlRewriter:
    """Serve root-relative and same-site URLs from a CDN origin.

    ``mask`` limits rewriting to paths with one of the given prefixes.
    """

    def __init__(self, cdn_url: str, *, site_url: str = "", mask: list[str] | None = None) -> None:
        self._cdn = cdn_url.rstrip("/")
        self._site = site_url.rstrip("/")
        self._mask = list(mask or [])

    def rewrite(self, url: str) -> str:
        if self._site and url.startswith(self._site + "/"):
            path = url[len(self._site) :]
        elif url.startswith("/") and not url.startswith("//"):
            path = url
        else:
            return url
        if self._mask and not any(path.startswith(m) for m in self._mask):
            return url
        return self._cdn + path


# ---------------------------------------------------------------------------
# Third-party proxy
# ---------------------------------------------------------------------------


@runtime_checkable
class ProxyRewriter(Protocol):
    """Returns ``(proxy_key, url)``; a None key means the URL was not proxied."""

    def proxify(self, url: str) -> tuple[str | None, str]: ...


class NullProxy:
    def proxify(self, url: str) -> tuple[str | None, str]:
        return None, url


class CachingProxy:
    """Copy a remote script into the ``proxy`` namespace and serve it from there.

    The key is the md5 of the remote URL, so a changed upstream body replaces
    the artifact in place.  Fetch failures leave the URL unproxied.
    ``CacheWriteError`` propagates.
    """

    def __init__(self, fetcher: Fetcher, cache: ContentCache) -> None:
        self._fetcher = fetcher
        self._cache = cache

    def proxify(self, url: str) -> tuple[str | None, str]:
        remote = translate_protocol(url)
        if not valid_protocol(remote):
            return None, url
        key = hashlib.md5(remote.encode("utf-8")).hexdigest()
        try:
            resource = self._fetcher.fetch(remote)
        except FetchError as e:
            logger.warning("Proxy fetch failed, keeping original URL: %s", e)
            return None, url
        if self._cache.meta(Namespace.PROXY, key) == resource.content_hash:
            self._cache.preserve(Namespace.PROXY, key)
            return key, self._cache.url(Namespace.PROXY, key)
        proxied = self._cache.put(Namespace.PROXY, key, resource.text, content_hash=resource.content_hash)
        logger.debug("Proxied %s -> %s", urlparse(remote).netloc, proxied)
        return key, proxied


# ---------------------------------------------------------------------------
# Source hooks
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceHook(Protocol):
    """Post-filter hook for a script's src (or inline text).

    Receives the value and the raw tag.  Returns ``"ignore"`` to leave the
    script alone, ``"delete"`` to drop the tag, or a replacement value.
    """

    def __call__(self, value: str, tag: str) -> str: ...
