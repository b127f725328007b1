# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ScriptFlow exception hierarchy.

All ScriptFlow-specific errors inherit from ScriptFlowError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling.

Only CacheWriteError and ConfigError reach the caller.  The others are
scoped to a single script or group and are logged by the pipeline.
"""

from __future__ import annotations


class ScriptFlowError(Exception):
    """Base exception for all ScriptFlow errors."""


class FilterError(ScriptFlowError):
    """A match rule is malformed (e.g. invalid regular expression)."""

    def __init__(self, message: str, *, pattern: str = "") -> None:
        super().__init__(message)
        self.pattern = pattern


class FetchError(ScriptFlowError):
    """A remote or local script could not be retrieved."""

    def __init__(self, message: str, *, url: str = "", status_code: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class MinifyError(ScriptFlowError):
    """The minifier failed to transform a script or bundle."""


class CacheWriteError(ScriptFlowError):
    """Persisting an artifact to the content cache failed."""

    def __init__(self, message: str, *, namespace: str = "", key: str = "") -> None:
        super().__init__(message)
        self.namespace = namespace
        self.key = key


class ConfigError(ScriptFlowError):
    """Filter, group or pipeline configuration is invalid (raised at setup)."""
