# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Document edits: search/replace instructions and anchored insertions.

Replacements are applied here.  Insertions are only *returned*: the caller
owns the document structure and decides where header, footer and critical
anchors are.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)

_SRC_ATTR_RE = re.compile(r"""(\ssrc\s*=\s*)(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)


class Anchor(StrEnum):
    HEADER = "header"
    FOOTER = "footer"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class SearchReplace:
    """Exact-text edit.  An empty ``replace`` deletes the tag."""

    search: str
    replace: str


@dataclass(frozen=True, slots=True)
class Insertion:
    anchor: Anchor
    payload: str


def apply_replacements(document: str, instructions: Iterable[SearchReplace]) -> str:
    """Apply each instruction once, in order, against the document."""
    for inst in instructions:
        if inst.search not in document:
            logger.debug("Replacement target not found (%d chars)", len(inst.search))
            continue
        document = document.replace(inst.search, inst.replace, 1)
    return document


def replace_src(tag: str, new_src: str) -> str:
    """Swap the src attribute of *tag*, keeping its other attributes."""
    quoted = '"' + html.escape(new_src, quote=True) + '"'
    replaced, count = _SRC_ATTR_RE.subn(lambda m: m.group(1) + quoted, tag, count=1)
    if count == 0:
        logger.debug("No src attribute in tag, leaving it unchanged")
    return replaced


def script_tag(url: str) -> str:
    return f'<script src="{html.escape(url, quote=True)}"></script>'


def preload_hint(url: str, media: str | None = None) -> str:
    media_attr = f' media="{html.escape(media, quote=True)}"' if media else ""
    return f'<link rel="preload" as="script" href="{html.escape(url, quote=True)}"{media_attr}>'


_HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)


def _insert_at(document: str, pattern: re.Pattern[str], payload: str, *, after: bool) -> str | None:
    m = pattern.search(document)
    if m is None:
        return None
    pos = m.end() if after else m.start()
    return document[:pos] + payload + document[pos:]


def assemble_document(document: str, insertions: Iterable[Insertion]) -> str:
    """Place insertions into a full HTML document.

    ``critical`` goes right after ``<head>``, ``header`` before ``</head>``,
    ``footer`` before ``</body>``.  A missing anchor falls back to the end of
    the document.  Payloads of one anchor keep their order.
    """
    grouped: dict[Anchor, list[str]] = {a: [] for a in Anchor}
    for ins in insertions:
        grouped[ins.anchor].append(ins.payload)

    placements = (
        (Anchor.CRITICAL, _HEAD_OPEN_RE, True),
        (Anchor.HEADER, _HEAD_CLOSE_RE, False),
        (Anchor.FOOTER, _BODY_CLOSE_RE, False),
    )
    for anchor, pattern, after in placements:
        if not grouped[anchor]:
            continue
        payload = "".join(grouped[anchor])
        placed = _insert_at(document, pattern, payload, after=after)
        document = placed if placed is not None else document + payload
    return document
