# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content-addressable store for minified artifacts.

Defines ``ContentCache`` (runtime-checkable Protocol) plus two
implementations: ``InMemoryContentCache`` for tests and single-process use,
``FileContentCache`` for a shared on-disk cache served by the web server.

Keys are derived from the pre-minification input; the *content hash* of the
raw bytes is kept as metadata and only used for staleness checks.
Namespaces (``src``, ``concat``, ``proxy``) never share a key space.

Concurrency: no locks.  Writers race on identical, reproducible content,
so last-writer-wins is fine.  ``FileContentCache`` writes through a temp
file + ``os.replace`` so readers never observe a partial artifact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import CacheWriteError

logger = logging.getLogger(__name__)

# Entries touched less than an hour ago are not touched again
DEFAULT_PRESERVE_AGE = 3600.0


class Namespace(StrEnum):
    SRC = "src"
    CONCAT = "concat"
    PROXY = "proxy"


@dataclass(frozen=True, slots=True)
class EntryMeta:
    """Metadata stored beside every artifact."""

    content_hash: str | None
    group_key: str | None
    created_at: float
    preserved_at: float


def hash_path(key: str) -> str:
    """Three-level directory fan-out: ``abcdef…`` -> ``ab/cd/ef/``."""
    return f"{key[0:2]}/{key[2:4]}/{key[4:6]}/"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ContentCache(Protocol):
    """Interface for artifact storage: in-memory or filesystem."""

    def exists(self, namespace: Namespace, key: str) -> bool: ...

    def get(self, namespace: Namespace, key: str) -> str | None: ...

    def get_source_map(self, namespace: Namespace, key: str) -> str | None: ...

    def put(
        self,
        namespace: Namespace,
        key: str,
        text: str,
        *,
        group_key: str | None = None,
        content_hash: str | None = None,
        source_map: str | None = None,
    ) -> str: ...

    def meta(self, namespace: Namespace, key: str) -> str | None: ...

    def entry_meta(self, namespace: Namespace, key: str) -> EntryMeta | None: ...

    def preserve(self, namespace: Namespace, key: str, min_age: float = DEFAULT_PRESERVE_AGE) -> bool: ...

    def url(self, namespace: Namespace, key: str) -> str: ...

    def locator(self, namespace: Namespace, key: str) -> str: ...


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class _BaseContentCache:
    """URL/locator derivation and the preserve/put-idempotency rules."""

    def __init__(self, *, base_url: str = "/cache/js", clock: Callable[[], float] = time.time) -> None:
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    # -- hooks for subclasses --

    def _read_text(self, namespace: Namespace, key: str, suffix: str) -> str | None:
        raise NotImplementedError

    def _write_text(self, namespace: Namespace, key: str, suffix: str, text: str) -> None:
        raise NotImplementedError

    def _delete(self, namespace: Namespace, key: str, suffix: str) -> None:
        raise NotImplementedError

    def entry_meta(self, namespace: Namespace, key: str) -> EntryMeta | None:
        raise NotImplementedError

    def _write_meta(self, namespace: Namespace, key: str, meta: EntryMeta) -> None:
        raise NotImplementedError

    # -- public API --

    def exists(self, namespace: Namespace, key: str) -> bool:
        return self.entry_meta(namespace, key) is not None

    def get(self, namespace: Namespace, key: str) -> str | None:
        return self._read_text(namespace, key, ".js")

    def get_source_map(self, namespace: Namespace, key: str) -> str | None:
        return self._read_text(namespace, key, ".js.map")

    def meta(self, namespace: Namespace, key: str) -> str | None:
        """Stored content hash, or None."""
        entry = self.entry_meta(namespace, key)
        return entry.content_hash if entry else None

    def put(
        self,
        namespace: Namespace,
        key: str,
        text: str,
        *,
        group_key: str | None = None,
        content_hash: str | None = None,
        source_map: str | None = None,
    ) -> str:
        """Store an artifact and return its public URL.  Raises CacheWriteError.

        Rewriting identical text and map only refreshes the retention clock.
        A rewrite without a map removes any stale one.
        """
        now = self._clock()
        existing = self.entry_meta(namespace, key)
        if (
            existing is not None
            and existing.content_hash == content_hash
            and self.get(namespace, key) == text
            and self.get_source_map(namespace, key) == source_map
        ):
            self._write_meta(namespace, key, replace(existing, preserved_at=now))
            logger.debug("Cache put unchanged: %s/%s", namespace, key)
            return self.url(namespace, key)

        self._write_text(namespace, key, ".js", text)
        if source_map is not None:
            self._write_text(namespace, key, ".js.map", source_map)
        elif existing is not None:
            self._delete(namespace, key, ".js.map")
        created_at = existing.created_at if existing else now
        self._write_meta(
            namespace,
            key,
            EntryMeta(content_hash=content_hash, group_key=group_key, created_at=created_at, preserved_at=now),
        )
        logger.debug("Cache put: %s/%s (%d chars)", namespace, key, len(text))
        return self.url(namespace, key)

    def preserve(self, namespace: Namespace, key: str, min_age: float = DEFAULT_PRESERVE_AGE) -> bool:
        """Extend retention only if the last touch is at least *min_age* seconds old.

        Returns True if the timestamp was updated.
        """
        entry = self.entry_meta(namespace, key)
        if entry is None:
            return False
        now = self._clock()
        if now - entry.preserved_at < min_age:
            return False
        self._write_meta(namespace, key, replace(entry, preserved_at=now))
        return True

    def url(self, namespace: Namespace, key: str) -> str:
        return f"{self._base_url}/{namespace}/{hash_path(key)}{key}.js"

    def locator(self, namespace: Namespace, key: str) -> str:
        """Compact reference used in the async descriptor list.

        Bundles use the pipe-separated fan-out path so the client can rebuild
        the URL without a lookup; src/proxy artifacts use the bare key.
        """
        if namespace == Namespace.CONCAT:
            return hash_path(key).replace("/", "|") + key[6:]
        return key


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryContentCache(_BaseContentCache):
    """Dict-backed cache.  Suitable for tests and single-process use."""

    def __init__(self, *, base_url: str = "/cache/js", clock: Callable[[], float] = time.time) -> None:
        super().__init__(base_url=base_url, clock=clock)
        self._files: dict[tuple[str, str, str], str] = {}
        self._meta: dict[tuple[str, str], EntryMeta] = {}

    def _read_text(self, namespace: Namespace, key: str, suffix: str) -> str | None:
        return self._files.get((namespace, key, suffix))

    def _write_text(self, namespace: Namespace, key: str, suffix: str, text: str) -> None:
        self._files[(namespace, key, suffix)] = text

    def _delete(self, namespace: Namespace, key: str, suffix: str) -> None:
        self._files.pop((namespace, key, suffix), None)

    def entry_meta(self, namespace: Namespace, key: str) -> EntryMeta | None:
        return self._meta.get((namespace, key))

    def _write_meta(self, namespace: Namespace, key: str, meta: EntryMeta) -> None:
        self._meta[(namespace, key)] = meta

    @property
    def size(self) -> int:
        return len(self._meta)


# ---------------------------------------------------------------------------
# Filesystem implementation
# ---------------------------------------------------------------------------


class FileContentCache(_BaseContentCache):
    """Artifacts under ``<root>/<namespace>/ab/cd/ef/<key>.js`` with ``.js.map``
    and ``.meta.json`` siblings.

    Resolves ``~`` and creates directories on demand.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        base_url: str = "/cache/js",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(base_url=base_url, clock=clock)
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def path(self, namespace: Namespace, key: str, suffix: str = ".js") -> Path:
        return self._root / str(namespace) / hash_path(key) / f"{key}{suffix}"

    def _read_text(self, namespace: Namespace, key: str, suffix: str) -> str | None:
        try:
            return self.path(namespace, key, suffix).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Cache read failed: %s/%s%s", namespace, key, suffix, exc_info=True)
            return None

    def _write_text(self, namespace: Namespace, key: str, suffix: str, text: str) -> None:
        target = self.path(namespace, key, suffix)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp, target)
            except BaseException:
                with suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise CacheWriteError(f"failed to store {target}: {e}", namespace=str(namespace), key=key) from e

    def _delete(self, namespace: Namespace, key: str, suffix: str) -> None:
        target = self.path(namespace, key, suffix)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise CacheWriteError(f"failed to remove {target}: {e}", namespace=str(namespace), key=key) from e

    def entry_meta(self, namespace: Namespace, key: str) -> EntryMeta | None:
        raw = self._read_text(namespace, key, ".meta.json")
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return EntryMeta(
                content_hash=data.get("content_hash"),
                group_key=data.get("group_key"),
                created_at=float(data["created_at"]),
                preserved_at=float(data["preserved_at"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Corrupt cache metadata: %s/%s", namespace, key)
            return None

    def _write_meta(self, namespace: Namespace, key: str, meta: EntryMeta) -> None:
        payload = {
            "content_hash": meta.content_hash,
            "group_key": meta.group_key,
            "created_at": meta.created_at,
            "preserved_at": meta.preserved_at,
        }
        self._write_text(namespace, key, ".meta.json", json.dumps(payload, sort_keys=True))
