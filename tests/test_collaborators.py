# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for scriptflow.collaborators — CDN rewriting and proxying."""

from __future__ import annotations

import hashlib

import pytest

from scriptflow.cache import InMemoryContentCache, Namespace
from scriptflow.collaborators import CachingProxy, CdnUrlRewriter, NullProxy, NullUrlRewriter, UrlRewriter
from scriptflow.errors import CacheWriteError
from tests._scriptflow_helpers import FakeFetcher

REMOTE = "https://cdn.other.test/lib.js"
KEY = hashlib.md5(REMOTE.encode()).hexdigest()


class TestCdnUrlRewriter:
    def test_root_relative(self):
        assert CdnUrlRewriter("https://cdn.test/").rewrite("/cache/js/a.js") == "https://cdn.test/cache/js/a.js"

    def test_same_site_absolute(self):
        rewriter = CdnUrlRewriter("https://cdn.test", site_url="https://example.test")
        assert rewriter.rewrite("https://example.test/js/a.js") == "https://cdn.test/js/a.js"

    def test_foreign_and_protocol_relative_untouched(self):
        rewriter = CdnUrlRewriter("https://cdn.test", site_url="https://example.test")
        assert rewriter.rewrite("https://other.test/a.js") == "https://other.test/a.js"
        assert rewriter.rewrite("//other.test/a.js") == "//other.test/a.js"

    def test_mask(self):
        rewriter = CdnUrlRewriter("https://cdn.test", mask=["/cache/"])
        assert rewriter.rewrite("/cache/js/a.js") == "https://cdn.test/cache/js/a.js"
        assert rewriter.rewrite("/js/a.js") == "/js/a.js"

    def test_protocol(self):
        assert isinstance(CdnUrlRewriter("https://cdn.test"), UrlRewriter)
        assert NullUrlRewriter().rewrite("/a.js") == "/a.js"


class TestCachingProxy:
    def test_stores_and_returns_cache_url(self):
        cache = InMemoryContentCache()
        key, url = CachingProxy(FakeFetcher({REMOTE: "var lib;"}), cache).proxify(REMOTE)
        assert key == KEY
        assert url == cache.url(Namespace.PROXY, KEY)
        assert cache.get(Namespace.PROXY, KEY) == "var lib;"

    def test_unchanged_body_not_rewritten(self, clock):
        cache = InMemoryContentCache(clock=clock)
        proxy = CachingProxy(FakeFetcher({REMOTE: "var lib;"}), cache)
        proxy.proxify(REMOTE)
        created = cache.entry_meta(Namespace.PROXY, KEY).created_at
        clock.advance(10)
        proxy.proxify(REMOTE)
        assert cache.entry_meta(Namespace.PROXY, KEY).created_at == created

    def test_changed_body_replaces_in_place(self):
        fetcher = FakeFetcher({REMOTE: "v1"})
        cache = InMemoryContentCache()
        proxy = CachingProxy(fetcher, cache)
        proxy.proxify(REMOTE)
        fetcher.bodies[REMOTE] = "v2"
        proxy.proxify(REMOTE)
        assert cache.get(Namespace.PROXY, KEY) == "v2"
        assert cache.size == 1

    def test_protocol_relative(self):
        cache = InMemoryContentCache()
        key, _ = CachingProxy(FakeFetcher({REMOTE: "x"}), cache).proxify("//cdn.other.test/lib.js")
        assert key == KEY

    def test_fetch_failure(self):
        assert CachingProxy(FakeFetcher(), InMemoryContentCache()).proxify(REMOTE) == (None, REMOTE)

    def test_unsupported_scheme(self):
        fetcher = FakeFetcher()
        assert CachingProxy(fetcher, InMemoryContentCache()).proxify("data:x") == (None, "data:x")
        assert fetcher.calls == []

    def test_cache_write_error_propagates(self):
        class BrokenCache(InMemoryContentCache):
            def _write_text(self, namespace, key, suffix, text):
                raise CacheWriteError("disk full", namespace=namespace, key=key)

        with pytest.raises(CacheWriteError):
            CachingProxy(FakeFetcher({REMOTE: "x"}), BrokenCache()).proxify(REMOTE)

    def test_null_proxy(self):
        assert NullProxy().proxify(REMOTE) == (None, REMOTE)
