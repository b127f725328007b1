# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for scriptflow.script_minifier — per-script minification through the cache."""

from __future__ import annotations

from scriptflow.cache import Namespace
from scriptflow.extractor import extract_scripts
from scriptflow.script_minifier import minify_scripts, src_cache_key
from tests._scriptflow_helpers import FailingMinifier, make_optimizer, page

REMOTE = "https://cdn.test/app.js"


def _run(config: dict, document: str, **kwargs):
    optimizer, fetcher, cache = make_optimizer(config, **kwargs)
    ctx = optimizer.new_context("doc")
    scripts = extract_scripts(ctx, document)
    minify_scripts(ctx, scripts)
    return scripts, ctx, fetcher, cache


MINIFY = {"minify": {"enabled": True}}


class TestSrcCacheKey:
    def test_depends_on_text_and_fingerprint(self):
        assert src_cache_key("a", "f") == src_cache_key("a", "f")
        assert src_cache_key("a", "f") != src_cache_key("b", "f")
        assert src_cache_key("a", "f") != src_cache_key("a", "g")


class TestRemoteScripts:
    def test_minified_and_stored(self):
        scripts, ctx, fetcher, cache = _run(MINIFY, page(f'<script src="{REMOTE}"></script>'), bodies={REMOTE: "var app = 1;"})
        ref = scripts[0]
        assert ref.minified is not None
        stored = cache.get(Namespace.SRC, ref.minified.cache_key)
        assert stored.startswith("var app = 1;")
        assert stored.endswith(f"/* @src {REMOTE} */")
        assert cache.meta(Namespace.SRC, ref.minified.cache_key) == ref.minified.content_hash

    def test_query_string_change_reuses_entry(self):
        v1 = REMOTE + "?ver=1"
        v2 = REMOTE + "?ver=2"
        bodies = {v1: "var app = 1;", v2: "var app = 1;"}
        optimizer, fetcher, cache = make_optimizer(MINIFY, bodies=bodies)

        ctx = optimizer.new_context("one")
        first = extract_scripts(ctx, page(f'<script src="{v1}"></script>'))
        minify_scripts(ctx, first)
        ctx = optimizer.new_context("two")
        second = extract_scripts(ctx, page(f'<script src="{v2}"></script>'))
        minify_scripts(ctx, second)

        assert first[0].minified.cache_key == second[0].minified.cache_key
        assert cache.size == 1
        assert len(optimizer._minifier.calls) == 1

    def test_content_change_reminifies(self):
        optimizer, fetcher, cache = make_optimizer(MINIFY, bodies={REMOTE: "var a;"})
        ctx = optimizer.new_context("one")
        first = extract_scripts(ctx, page(f'<script src="{REMOTE}"></script>'))
        minify_scripts(ctx, first)

        fetcher.bodies[REMOTE] = "var b;"
        ctx = optimizer.new_context("two")
        second = extract_scripts(ctx, page(f'<script src="{REMOTE}"></script>'))
        minify_scripts(ctx, second)

        assert first[0].minified.cache_key != second[0].minified.cache_key
        assert len(optimizer._minifier.calls) == 2

    def test_fetch_failure_leaves_script_synchronous(self):
        config = {**MINIFY, "async": {"enabled": True}}
        scripts, ctx, _, _ = _run(config, page(f'<script src="{REMOTE}"></script>'))
        ref = scripts[0]
        assert ref.minified is None
        assert not ref.minify
        assert not ref.load_async
        assert ctx.errors == []

    def test_minifier_failure_leaves_reference(self):
        scripts, _, _, cache = _run(
            MINIFY, page(f'<script src="{REMOTE}"></script>'), bodies={REMOTE: "var a;"}, minifier=FailingMinifier()
        )
        assert scripts[0].minified is None
        assert not scripts[0].minify
        assert cache.size == 0

    def test_replace_rules_applied_before_minify(self):
        config = {"minify": {"enabled": True, "replace": [{"search": "console.log(1);", "replace": ""}]}}
        scripts, _, _, cache = _run(config, page(f'<script src="{REMOTE}"></script>'), bodies={REMOTE: "var a;console.log(1);"})
        assert "console" not in cache.get(Namespace.SRC, scripts[0].minified.cache_key)

    def test_unsupported_scheme_not_minified(self):
        scripts, _, fetcher, _ = _run(MINIFY, page('<script src="data:text/javascript,var%20a"></script>'))
        assert scripts[0].minified is None
        assert fetcher.calls == []

    def test_protocol_relative_fetched_over_https(self):
        scripts, _, fetcher, _ = _run(MINIFY, page('<script src="//cdn.test/app.js"></script>'), bodies={REMOTE: "var a;"})
        assert fetcher.calls == [REMOTE]
        assert scripts[0].minified is not None


class TestLocalScripts:
    def test_read_from_document_root(self, tmp_path):
        (tmp_path / "js").mkdir()
        (tmp_path / "js" / "app.js").write_text("var local = 1;")
        config = {**MINIFY, "site_url": "https://example.test", "document_root": str(tmp_path)}
        scripts, _, fetcher, cache = _run(config, page('<script src="/js/app.js?ver=3"></script>'))
        assert fetcher.calls == []
        assert cache.get(Namespace.SRC, scripts[0].minified.cache_key).startswith("var local = 1;")

    def test_absolute_site_url_is_local(self, tmp_path):
        (tmp_path / "app.js").write_text("var local;")
        config = {**MINIFY, "site_url": "https://example.test", "document_root": str(tmp_path)}
        scripts, _, fetcher, _ = _run(config, page('<script src="https://example.test/app.js"></script>'))
        assert fetcher.calls == []
        assert scripts[0].minified is not None

    def test_empty_local_file_removes_tag(self, tmp_path):
        (tmp_path / "empty.js").write_text("  \n")
        tag = '<script src="/empty.js"></script>'
        config = {**MINIFY, "document_root": str(tmp_path)}
        scripts, ctx, _, cache = _run(config, page(tag))
        assert scripts[0].removed
        assert scripts[0].minified is None
        assert [(r.search, r.replace) for r in ctx.replacements] == [(tag, "")]
        assert cache.size == 1

    def test_path_traversal_not_resolved(self, tmp_path):
        root = tmp_path / "www"
        root.mkdir()
        (tmp_path / "secret.js").write_text("var secret;")
        config = {**MINIFY, "document_root": str(root)}
        scripts, _, _, cache = _run(config, page('<script src="/../secret.js"></script>'))
        # outside the document root: never read
        assert scripts[0].minified is None
        assert cache.size == 0
