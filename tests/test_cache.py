# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for scriptflow.cache — content-addressed artifact storage.

Tests: put/get/meta, retention (preserve), idempotent puts, URL and locator
derivation, filesystem layout, write failures.
"""

from __future__ import annotations

import os

import pytest

from scriptflow.cache import (
    DEFAULT_PRESERVE_AGE,
    ContentCache,
    FileContentCache,
    InMemoryContentCache,
    Namespace,
    hash_path,
)
from scriptflow.errors import CacheWriteError
from tests._scriptflow_helpers import FakeClock

KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture(params=["memory", "file"])
def any_cache(request, tmp_path, clock):
    if request.param == "memory":
        return InMemoryContentCache(clock=clock)
    return FileContentCache(tmp_path / "cache", clock=clock)


# =========================================================================
# Protocol behaviour (both implementations)
# =========================================================================


class TestContentCache:
    def test_implements_protocol(self, any_cache):
        assert isinstance(any_cache, ContentCache)

    def test_put_get_roundtrip(self, any_cache):
        url = any_cache.put(Namespace.SRC, KEY, "var a=1;", content_hash="h1")
        assert any_cache.exists(Namespace.SRC, KEY)
        assert any_cache.get(Namespace.SRC, KEY) == "var a=1;"
        assert any_cache.meta(Namespace.SRC, KEY) == "h1"
        assert url == any_cache.url(Namespace.SRC, KEY)

    def test_missing_entry(self, any_cache):
        assert not any_cache.exists(Namespace.SRC, KEY)
        assert any_cache.get(Namespace.SRC, KEY) is None
        assert any_cache.meta(Namespace.SRC, KEY) is None
        assert any_cache.entry_meta(Namespace.SRC, KEY) is None

    def test_namespaces_are_isolated(self, any_cache):
        any_cache.put(Namespace.SRC, KEY, "a")
        assert not any_cache.exists(Namespace.CONCAT, KEY)
        assert not any_cache.exists(Namespace.PROXY, KEY)

    def test_source_map_stored_beside_artifact(self, any_cache):
        any_cache.put(Namespace.CONCAT, KEY, "a", source_map='{"version":3}')
        assert any_cache.get_source_map(Namespace.CONCAT, KEY) == '{"version":3}'

    def test_group_key_kept_in_metadata(self, any_cache):
        any_cache.put(Namespace.CONCAT, KEY, "a", group_key="vendor")
        assert any_cache.entry_meta(Namespace.CONCAT, KEY).group_key == "vendor"


class TestRetention:
    def test_preserve_fresh_entry_is_noop(self, any_cache, clock):
        any_cache.put(Namespace.SRC, KEY, "a")
        clock.advance(10)
        assert any_cache.preserve(Namespace.SRC, KEY) is False

    def test_preserve_old_entry_updates_once(self, any_cache, clock):
        any_cache.put(Namespace.SRC, KEY, "a")
        clock.advance(DEFAULT_PRESERVE_AGE + 1)
        assert any_cache.preserve(Namespace.SRC, KEY) is True
        # second call inside the window is a no-op
        assert any_cache.preserve(Namespace.SRC, KEY) is False
        assert any_cache.entry_meta(Namespace.SRC, KEY).preserved_at == clock.now

    def test_preserve_missing_entry(self, any_cache):
        assert any_cache.preserve(Namespace.SRC, KEY) is False

    def test_custom_min_age(self, any_cache, clock):
        any_cache.put(Namespace.SRC, KEY, "a")
        clock.advance(5)
        assert any_cache.preserve(Namespace.SRC, KEY, min_age=5) is True


class TestIdempotentPut:
    def test_identical_put_only_refreshes_timestamp(self, any_cache, clock):
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h")
        created = any_cache.entry_meta(Namespace.SRC, KEY).created_at
        clock.advance(50)
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h")
        meta = any_cache.entry_meta(Namespace.SRC, KEY)
        assert meta.created_at == created
        assert meta.preserved_at == clock.now

    def test_changed_hash_overwrites(self, any_cache):
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h1")
        any_cache.put(Namespace.SRC, KEY, "b", content_hash="h2")
        assert any_cache.get(Namespace.SRC, KEY) == "b"
        assert any_cache.meta(Namespace.SRC, KEY) == "h2"

    def test_changed_source_map_overwrites(self, any_cache):
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h", source_map='{"version":3,"names":[]}')
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h", source_map='{"version":3,"names":["x"]}')
        assert any_cache.get_source_map(Namespace.SRC, KEY) == '{"version":3,"names":["x"]}'

    def test_put_without_map_removes_stale_map(self, any_cache):
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h", source_map="{}")
        any_cache.put(Namespace.SRC, KEY, "a", content_hash="h")
        assert any_cache.get_source_map(Namespace.SRC, KEY) is None
        assert any_cache.get(Namespace.SRC, KEY) == "a"


# =========================================================================
# URLs and locators
# =========================================================================


class TestAddressing:
    def test_hash_path(self):
        assert hash_path(KEY) == "01/23/45/"

    def test_url(self):
        cache = InMemoryContentCache(base_url="https://cdn.example.com/cache/js/")
        assert cache.url(Namespace.CONCAT, KEY) == f"https://cdn.example.com/cache/js/concat/01/23/45/{KEY}.js"

    def test_concat_locator_is_pipe_path(self):
        cache = InMemoryContentCache()
        assert cache.locator(Namespace.CONCAT, KEY) == "01|23|45|" + KEY[6:]

    def test_src_locator_is_key(self):
        assert InMemoryContentCache().locator(Namespace.SRC, KEY) == KEY


# =========================================================================
# Filesystem specifics
# =========================================================================


class TestFileContentCache:
    def test_layout(self, tmp_path):
        cache = FileContentCache(tmp_path, clock=FakeClock())
        cache.put(Namespace.SRC, KEY, "a", source_map="{}")
        base = tmp_path / "src" / "01" / "23" / "45"
        assert (base / f"{KEY}.js").read_text() == "a"
        assert (base / f"{KEY}.js.map").exists()
        assert (base / f"{KEY}.meta.json").exists()

    def test_no_temp_files_left(self, tmp_path):
        cache = FileContentCache(tmp_path)
        cache.put(Namespace.SRC, KEY, "a")
        leftovers = [p for p in tmp_path.rglob("*.tmp")]
        assert leftovers == []

    def test_corrupt_metadata_is_a_miss(self, tmp_path, caplog):
        cache = FileContentCache(tmp_path)
        cache.put(Namespace.SRC, KEY, "a")
        cache.path(Namespace.SRC, KEY, ".meta.json").write_text("{not json")
        assert not cache.exists(Namespace.SRC, KEY)
        assert "Corrupt cache metadata" in caplog.text

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="permissions not enforced")
    def test_write_failure_raises_cache_write_error(self, tmp_path):
        root = tmp_path / "ro"
        root.mkdir()
        root.chmod(0o500)
        try:
            cache = FileContentCache(root)
            with pytest.raises(CacheWriteError) as exc_info:
                cache.put(Namespace.CONCAT, KEY, "a")
            assert exc_info.value.namespace == "concat"
            assert exc_info.value.key == KEY
        finally:
            root.chmod(0o700)

    def test_write_failure_on_file_in_the_way(self, tmp_path):
        # a regular file where the namespace directory should be
        (tmp_path / "src").write_text("not a directory")
        cache = FileContentCache(tmp_path)
        with pytest.raises(CacheWriteError):
            cache.put(Namespace.SRC, KEY, "a")
