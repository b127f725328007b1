# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic configuration models for the script pipeline.

One ``ScriptFlowConfig`` is validated at setup time and shared read-only by
every document processed afterwards.  Validation failures (unknown keys,
wrong types, an enabled CDN without URL, a broken replace regex) surface as
``ConfigError`` before any document is touched.

Match rules are *not* compiled here: a malformed match regex is a
``FilterError`` at evaluation time and only disables that one match string.
"""

from __future__ import annotations

import hashlib
import json
import re
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError

# ---------------------------------------------------------------------------
# Policy value types
# ---------------------------------------------------------------------------


class LoadPosition(StrEnum):
    """Document anchor at which the client loader fetches a script."""

    HEADER = "header"
    FOOTER = "footer"
    TIMED = "timed"


class AsyncExecType(StrEnum):
    """When a script body executes on the client."""

    DOM_READY = "domReady"
    ANIMATION_FRAME = "requestAnimationFrame"
    IDLE = "requestIdleCallback"
    INVIEW = "inview"
    MEDIA = "media"


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class AsyncExec(_Model):
    """Async-exec descriptor (also used for load/exec timing)."""

    type: AsyncExecType
    frame: int | None = None  # requestAnimationFrame
    timeout: int | None = None  # requestIdleCallback
    set_timeout: int | None = Field(None, alias="setTimeout")  # requestIdleCallback fallback
    selector: str | None = None  # inview
    offset: int | None = None  # inview
    media: str | None = None  # media


class LocalStorageConfig(_Model):
    """localStorage cache policy for async-loaded scripts."""

    max_size: int | None = None
    expire: int | None = None
    update_interval: int | None = None
    head_update: bool = False


LocalStoragePolicy = bool | LocalStorageConfig


# ---------------------------------------------------------------------------
# Match rules
# ---------------------------------------------------------------------------


class MatchString(_Model):
    """A single match entry with per-string flags."""

    string: str
    regex: bool = False
    exclude: bool = False


MatchEntry = str | MatchString


class GroupInfo(_Model):
    """Stable identity of a concatenation group."""

    key: str


class FilterRule(_Model):
    """Ordered filter rule: match entries plus the policy it assigns on match."""

    match: list[MatchEntry] = Field(default_factory=list)
    exclude: bool = False
    match_concat: bool = False  # async filter: apply to group keys, not tags

    load_async: bool | None = Field(None, alias="async")
    load_position: LoadPosition | None = None
    async_exec: AsyncExec | None = None
    rel_preload: bool | None = None
    abide: bool | None = None
    trycatch: bool | None = None
    local_storage: LocalStoragePolicy | None = Field(None, alias="localStorage")
    minify: bool | None = None
    title: str | None = None
    group: GroupInfo | None = None

    @property
    def stable_key(self) -> str | None:
        return self.group.key if self.group else None

    def fingerprint(self) -> str:
        """md5 of the canonical JSON form; distinct rules never collide."""
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return hashlib.md5(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


FilterType = Literal["include", "exclude"]


class ListFilter(_Model):
    """Plain allow/deny list evaluated against tag markup."""

    type: FilterType = "include"
    match: list[MatchEntry] = Field(default_factory=list)


class RuleFilter(_Model):
    """Ordered rule list with a default (``type``) for unmatched subjects."""

    type: FilterType = "include"
    rules: list[FilterRule] = Field(default_factory=list)


class ReplaceRule(_Model):
    """Textual substitution applied to script text before minification."""

    search: str
    replace: str = ""
    regex: bool = False

    @model_validator(mode="after")
    def _check_regex(self) -> ReplaceRule:
        if self.regex:
            try:
                re.compile(self.search)
            except re.error as e:
                raise ValueError(f"invalid replace regex {self.search!r}: {e}") from e
        return self


class UrlFilterRule(_Model):
    """Pre-resolution rule against the raw script URL."""

    url: str
    regex: bool = False
    ignore: bool = False
    delete: bool = False
    replace: str | None = None


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class MinifyConfig(_Model):
    enabled: bool = False
    filter: ListFilter | None = None
    source_map: bool = False
    replace: list[ReplaceRule] = Field(default_factory=list)

    @field_validator("replace", mode="before")
    @classmethod
    def _drop_empty(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [r for r in value if not isinstance(r, dict) or str(r.get("search", "")).strip()]
        return value


class ConcatConfig(_Model):
    enabled: bool = False
    minify: bool = True
    trycatch: bool = False
    inline: bool = False
    inline_filter: ListFilter | None = None
    filter: RuleFilter | None = None

    @field_validator("filter")
    @classmethod
    def _sanitize_groups(cls, value: RuleFilter | None) -> RuleFilter | None:
        """Drop rules without match entries; a repeated ``group.key`` replaces the earlier rule in place."""
        if value is None:
            return None
        by_key: dict[str | int, FilterRule] = {}
        for n, rule in enumerate(value.rules):
            if not rule.match:
                continue
            by_key[rule.stable_key if rule.stable_key is not None else n] = rule
        return value.model_copy(update={"rules": list(by_key.values())})


class AsyncConfig(_Model):
    enabled: bool = False
    rel_preload: bool = False
    load_position: LoadPosition = LoadPosition.HEADER
    load_timing: AsyncExec | None = None
    exec_timing: AsyncExec | None = None
    exec_: AsyncExec | None = Field(None, alias="exec")
    local_storage: LocalStorageConfig | None = Field(None, alias="localStorage")
    filter: RuleFilter | None = None
    jquery_stub: bool = False

    @field_validator("load_position")
    @classmethod
    def _page_position(cls, value: LoadPosition) -> LoadPosition:
        # page-level loading is either in the header or timed
        return LoadPosition.TIMED if value == LoadPosition.TIMED else LoadPosition.HEADER

    @property
    def script_rules(self) -> list[FilterRule]:
        if self.filter is None:
            return []
        return [r for r in self.filter.rules if not r.match_concat]

    @property
    def concat_rules(self) -> list[FilterRule]:
        if self.filter is None:
            return []
        return [r for r in self.filter.rules if r.match_concat]


class ProxyConfig(_Model):
    enabled: bool = False
    include: list[MatchEntry] = Field(default_factory=list)


class CdnConfig(_Model):
    enabled: bool = False
    url: str = ""
    mask: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_url(self) -> CdnConfig:
        if self.enabled and not self.url:
            raise ValueError("cdn.url is required when cdn.enabled is true")
        return self


class ScriptFlowConfig(_Model):
    """Root configuration."""

    minify: MinifyConfig = Field(default_factory=MinifyConfig)
    concat: ConcatConfig = Field(default_factory=ConcatConfig)
    async_: AsyncConfig = Field(default_factory=AsyncConfig, alias="async")
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    cdn: CdnConfig = Field(default_factory=CdnConfig)
    url_filter: list[UrlFilterRule] = Field(default_factory=list)

    site_url: str = ""  # URLs under this prefix resolve to document_root
    document_root: str | None = None
    cache_url: str = "/cache/js"
    runtime_global: str = "scriptflow"
    debug: bool = False

    @property
    def concat_enabled(self) -> bool:
        return self.minify.enabled and self.concat.enabled

    @property
    def any_enabled(self) -> bool:
        return self.minify.enabled or self.async_.enabled or self.proxy.enabled

    def transform_fingerprint(self) -> str:
        """Digest of every setting that changes script text before minification."""
        payload = [r.model_dump(mode="json") for r in self.minify.replace]
        return hashlib.md5(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_config(data: dict[str, Any] | None) -> ScriptFlowConfig:
    """Validate a raw mapping.  Raises ConfigError."""
    try:
        return ScriptFlowConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def load_config(path: str | Path) -> ScriptFlowConfig:
    """Load and validate a YAML configuration file.  Raises ConfigError."""
    import yaml

    p = Path(path)
    try:
        with open(p, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read configuration {p}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"configuration {p} must be a mapping")
    return parse_config(data)
