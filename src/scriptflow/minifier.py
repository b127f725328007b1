# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pluggable minifier with a success/failure result instead of exceptions.

A minifier takes one or more named fragments and returns minified text plus
an optional source map.  ``run_minifier`` never raises: any exception from
the backend becomes a ``MinifyFailure`` so the caller can always fall back
(naive join for bundles, untouched reference for single scripts).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import jsmin

from .config import ReplaceRule
from .errors import MinifyError

logger = logging.getLogger(__name__)

# /*# sourceMappingURL=… */ and //# sourceMappingURL=… (also the legacy //@ form)
_SOURCE_MAP_BLOCK_RE = re.compile(r"/\*[#@]\s*sourceMappingURL.*?\*/", re.DOTALL)
_SOURCE_MAP_LINE_RE = re.compile(r"^[ \t]*//[#@]\s*sourceMappingURL=\S*[ \t]*$", re.MULTILINE)


@dataclass(frozen=True, slots=True)
class SourceFragment:
    """A named piece of script text handed to the minifier."""

    name: str
    text: str
    source_map: str | None = None


@dataclass(frozen=True, slots=True)
class MinifySuccess:
    text: str
    minifier: str
    source_map: str | None = None


@dataclass(frozen=True, slots=True)
class MinifyFailure:
    error: MinifyError


MinifyResult = MinifySuccess | MinifyFailure


@runtime_checkable
class Minifier(Protocol):
    """Backend interface.  May raise; wrap calls with ``run_minifier``."""

    name: str

    def minify(self, fragments: Sequence[SourceFragment]) -> MinifySuccess: ...


class JsminMinifier:
    """``jsmin`` backend.  Fragments are joined with a space before minifying."""

    name = "jsmin"

    def __init__(self, *, quote_chars: str = "'\"`") -> None:
        self._quote_chars = quote_chars

    def minify(self, fragments: Sequence[SourceFragment]) -> MinifySuccess:
        script = "".join(" " + f.text for f in fragments)
        minified = jsmin.jsmin(script, quote_chars=self._quote_chars)
        if minified is None:
            raise MinifyError("jsmin returned no output")
        return MinifySuccess(text=minified.strip(), minifier=self.name)


def run_minifier(minifier: Minifier, fragments: Sequence[SourceFragment]) -> MinifyResult:
    """Call *minifier* and convert any failure into ``MinifyFailure``."""
    try:
        return minifier.minify(fragments)
    except MinifyError as e:
        logger.warning("Minifier %s failed: %s", minifier.name, e)
        return MinifyFailure(error=e)
    except Exception as e:
        logger.warning("Minifier %s raised %s: %s", minifier.name, type(e).__name__, e)
        return MinifyFailure(error=MinifyError(f"{minifier.name} failed: {e}"))


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def strip_source_map_refs(text: str) -> str:
    """Remove embedded source-map reference comments."""
    text = _SOURCE_MAP_BLOCK_RE.sub("", text)
    return _SOURCE_MAP_LINE_RE.sub("", text)


def apply_replacements(text: str, rules: Sequence[ReplaceRule]) -> str:
    """Apply search/replace rules in order: plain rules first, then regex rules."""
    for rule in rules:
        if not rule.regex:
            text = text.replace(rule.search, rule.replace)
    for rule in rules:
        if rule.regex:
            text = re.sub(rule.search, rule.replace, text)
    return text


def extract_filename(src: str) -> str:
    """Fragment name for a URL: the URL without its query string."""
    return src.split("?", 1)[0]
