# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Ordered filter-rule evaluation shared by every eligibility decision.

Used for inline inclusion, minify eligibility, async eligibility, proxy
eligibility and concatenation grouping.  All functions are pure: the
subject is the raw tag markup (or a group key), rules are evaluated in
order, and the outcome is a tagged ``MatchResult``:

- ``Excluded``: any exclude entry (per string or per rule) matched.
  Terminates evaluation regardless of earlier positive matches.
- ``MatchedGroup``: the first positive match, keyed by the rule fingerprint.
- ``NoMatch``: nothing fired.

Regex entries accept delimited patterns (``#vendor\\.js#i``, ``/x/``,
``~x~``) or bare Python patterns.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from .config import FilterRule, FilterType, MatchEntry, MatchString
from .errors import FilterError

logger = logging.getLogger(__name__)

_DELIMITERS = frozenset("#/~@%|!")
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Excluded:
    pass


@dataclass(frozen=True, slots=True)
class MatchedGroup:
    key: str
    rule: FilterRule


@dataclass(frozen=True, slots=True)
class NoMatch:
    pass


MatchResult = Excluded | MatchedGroup | NoMatch

EXCLUDED = Excluded()
NO_MATCH = NoMatch()


# ---------------------------------------------------------------------------
# Pattern handling
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a delimited or bare regex.  Raises FilterError."""
    source, flags = pattern, 0
    if len(pattern) >= 2 and pattern[0] in _DELIMITERS:
        end = pattern.rfind(pattern[0])
        modifiers = pattern[end + 1 :]
        if end > 0 and all(c in _FLAG_MAP for c in modifiers):
            source = pattern[1:end]
            for c in modifiers:
                flags |= _FLAG_MAP[c]
    try:
        return re.compile(source, flags)
    except re.error as e:
        raise FilterError(f"invalid match pattern {pattern!r}: {e}", pattern=pattern) from e


def _normalize(entry: MatchEntry) -> MatchString:
    if isinstance(entry, MatchString):
        return entry
    return MatchString(string=entry)


def entry_matches(entry: MatchEntry, subject: str) -> bool:
    """True if a single entry matches.  Malformed regexes are logged and never match."""
    ms = _normalize(entry)
    if not ms.regex:
        return ms.string in subject
    try:
        return compile_pattern(ms.string).search(subject) is not None
    except FilterError as e:
        logger.warning("Skipping malformed match rule: %s", e)
        return False


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate_rules(subject: str, rules: Iterable[FilterRule]) -> MatchResult:
    """Evaluate an ordered rule list against *subject*.

    The first positive match assigns the group.  After that only exclude
    entries are still tested, and any of them matching wins.
    """
    matched: FilterRule | None = None
    for rule in rules:
        for entry in rule.match:
            ms = _normalize(entry)
            excluding = ms.exclude or rule.exclude
            if matched is not None and not excluding:
                continue
            if not entry_matches(ms, subject):
                continue
            if excluding:
                return EXCLUDED
            matched = rule
    if matched is None:
        return NO_MATCH
    return MatchedGroup(key=matched.fingerprint(), rule=matched)


def filter_list_match(subject: str, entries: Iterable[MatchEntry], filter_type: FilterType = "include") -> bool:
    """Plain list filter.

    ``include``: True only if an entry matches.  ``exclude``: True unless an
    entry matches.  A matching entry flagged ``exclude`` always yields False.
    """
    hit = False
    for entry in entries:
        ms = _normalize(entry)
        if not entry_matches(ms, subject):
            continue
        if ms.exclude:
            return False
        hit = True
    return hit if filter_type == "include" else not hit


def filter_config_match(subject: str, rules: Iterable[FilterRule], filter_type: FilterType = "include") -> bool | FilterRule:
    """Rule filter returning either a boolean or the matched rule (structured override).

    ``include``: unmatched subjects are rejected, a match returns its rule.
    ``exclude``: unmatched subjects pass, a match rejects.
    """
    result = evaluate_rules(subject, rules)
    match result:
        case Excluded():
            return False
        case MatchedGroup(rule=rule):
            return rule if filter_type == "include" else False
        case _:
            return filter_type == "exclude"
