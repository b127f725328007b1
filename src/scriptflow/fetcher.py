# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Script retrieval: remote fetch over httpx and local file resolution.

Fetch failures are always raised as ``FetchError`` and are scoped to a single
script by the caller.  Timeouts belong to the fetcher (httpx ``Timeout``);
the pipeline only ever sees a plain failure.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import ParseResult, urlparse

import httpx

from .errors import FetchError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0
_USER_AGENT = "ScriptFlow/1.0 (+script optimization)"


@dataclass(frozen=True, slots=True)
class FetchedResource:
    """Script bytes plus freshness metadata."""

    content: bytes
    content_hash: str  # md5 of content
    etag: str | None = None
    last_modified: str | None = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def content_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def translate_protocol(url: str) -> str:
    """Protocol-relative ``//host/x.js`` -> ``https://host/x.js``."""
    if url.startswith("//"):
        return "https:" + url
    return url


def _split(url: str) -> ParseResult | None:
    """``urlparse`` that returns None for malformed URLs (unbalanced IPv6 brackets)."""
    try:
        return urlparse(url)
    except ValueError:
        return None


def valid_protocol(url: str) -> bool:
    parsed = _split(url)
    return parsed is not None and parsed.scheme in ("http", "https")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Fetcher(Protocol):
    """Remote script retrieval.  Raises FetchError."""

    def fetch(self, url: str) -> FetchedResource: ...


# ---------------------------------------------------------------------------
# httpx implementation
# ---------------------------------------------------------------------------


class HttpxFetcher:
    """Synchronous httpx fetcher with ETag / Last-Modified revalidation.

    Responses are remembered per URL; a later fetch sends conditional headers
    and reuses the stored body on ``304 Not Modified``.
    Not thread-safe: use one instance per worker.
    """

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_remembered: int = 256,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": _USER_AGENT, "Accept": "application/javascript, text/javascript, */*;q=0.1"},
            follow_redirects=True,
        )
        self._max_remembered = max_remembered
        self._remembered: dict[str, FetchedResource] = {}

    def fetch(self, url: str) -> FetchedResource:
        previous = self._remembered.get(url)
        headers: dict[str, str] = {}
        if previous is not None:
            if previous.etag:
                headers["If-None-Match"] = previous.etag
            if previous.last_modified:
                headers["If-Modified-Since"] = previous.last_modified

        try:
            resp = self._client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"fetch failed for {url}: {e}", url=url) from e

        if resp.status_code == 304 and previous is not None:
            logger.debug("Not modified: %s", url)
            return previous
        if resp.status_code >= 400:
            raise FetchError(f"fetch failed for {url}: HTTP {resp.status_code}", url=url, status_code=resp.status_code)

        body = resp.content
        if not body.strip():
            raise FetchError(f"empty response for {url}", url=url, status_code=resp.status_code)

        resource = FetchedResource(
            content=body,
            content_hash=content_hash(body),
            etag=resp.headers.get("ETag"),
            last_modified=resp.headers.get("Last-Modified"),
        )
        self._remember(url, resource)
        return resource

    def _remember(self, url: str, resource: FetchedResource) -> None:
        if not resource.etag and not resource.last_modified:
            return
        self._remembered[url] = resource
        while len(self._remembered) > self._max_remembered:
            self._remembered.pop(next(iter(self._remembered)))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpxFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Local resolution
# ---------------------------------------------------------------------------


class LocalResolver:
    """Map site URLs to files under a document root.

    Root-relative paths (``/js/app.js``) and absolute URLs on ``site_url``'s
    host are local.  Everything else is remote.
    """

    def __init__(self, site_url: str = "", document_root: str | Path | None = None) -> None:
        parsed = urlparse(site_url) if site_url else None
        self._host = (parsed.hostname or "").lower() if parsed else ""
        self._base_path = (parsed.path.rstrip("/") if parsed else "") or ""
        self._root = Path(document_root).expanduser().resolve() if document_root else None

    def is_local(self, url: str) -> bool:
        url = translate_protocol(url)
        if url.startswith("/"):
            return True
        parsed = _split(url)
        if parsed is None:
            return False
        if not parsed.scheme:
            return True  # relative path
        return bool(self._host) and (parsed.hostname or "").lower() == self._host

    def resolve(self, url: str) -> Path | None:
        """Existing file for a local URL, or None."""
        if self._root is None or not self.is_local(url):
            return None
        parsed = _split(translate_protocol(url))
        if parsed is None:
            return None
        path = parsed.path
        if self._base_path and path.startswith(self._base_path + "/"):
            path = path[len(self._base_path) :]
        candidate = (self._root / path.lstrip("/")).resolve()
        if not candidate.is_relative_to(self._root) or not candidate.is_file():
            return None
        return candidate

    def read(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise FetchError(f"cannot read {path}: {e}", url=str(path)) from e
